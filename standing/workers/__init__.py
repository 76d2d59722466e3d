"""arq worker jobs and settings."""
