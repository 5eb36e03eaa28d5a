"""
Data repositories module.
Exports the document store contract and its in-memory backend.
"""

from .document_store import DocumentStore, Subscription, Filter, matches
from .memory_store import MemoryDocumentStore

__all__ = [
    "DocumentStore",
    "Subscription",
    "Filter",
    "matches",
    "MemoryDocumentStore"
]
