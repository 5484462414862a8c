"""Record store backends."""

from .base import COLLECTIONS, RecordStore
from .http import HttpRecordStore
from .memory import InMemoryRecordStore


def create_store(url: str = "") -> RecordStore:
    """HTTP store when a backend URL is configured, in-memory otherwise."""
    if url:
        return HttpRecordStore(url)
    return InMemoryRecordStore()


__all__ = [
    "COLLECTIONS",
    "HttpRecordStore",
    "InMemoryRecordStore",
    "RecordStore",
    "create_store",
]
