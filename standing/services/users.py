"""
User directory lookups.

User documents belong to the identity provider; the engine only reads them
to check that an id is real and to learn the user's role.
"""
from typing import Any, Dict

from standing.errors import NotFoundError, ValidationError
from standing.store.documents import DocumentStore

# Collections
USERS = "users"
REPORTS = "reports"
STANDINGS = "standings"
SUPPLIERS = "suppliers"
DOCUMENTS = "verificationDocuments"
APPEALS = "appeals"
METRICS = "metrics"

USER_ROLES = ("client", "supplier", "admin")


def get_user(store: DocumentStore, user_id: str) -> Dict[str, Any]:
    user = store.get(USERS, user_id) if user_id else None
    if user is None:
        raise NotFoundError("user", user_id)
    return user


def register_user(store: DocumentStore, user_id: str, role: str) -> Dict[str, Any]:
    """Mirror a user from the identity provider. Idempotent for the same role."""
    if role not in USER_ROLES:
        raise ValidationError(f"Unknown role: {role!r}")
    existing = store.get(USERS, user_id)
    if existing is not None and existing.get("role") == role:
        return existing
    doc = {"user_id": user_id, "role": role}
    store.put(USERS, user_id, doc)
    return doc
