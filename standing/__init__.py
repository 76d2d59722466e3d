"""
Standing Engine — trust & safety standing for a two-sided marketplace.
"""
__version__ = "1.0.0"
