"""
Standing Engine — Storage package
Re-exports for convenience.
"""
from standing.store.documents import (
    DocumentStore,
    MemoryDocumentStore,
    RedisDocumentStore,
)
from standing.store.history import StandingHistory

__all__ = [
    "DocumentStore",
    "MemoryDocumentStore",
    "RedisDocumentStore",
    "StandingHistory",
]
