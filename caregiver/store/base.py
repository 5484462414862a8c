"""Abstract base class for record stores.

A record store persists the caregiver collections as plain JSON-shaped
dicts in their wire form (camelCase keys, string ``id``).  Any backend
(in-process, remote REST service) implements this ABC.
"""

from abc import ABC, abstractmethod

COLLECTIONS = ("patients", "medicines", "reminders", "doctornotes")


class RecordStore(ABC):
    """CRUD keyed by string id over the four record collections.

    Every method raises RecordStoreError when the backend rejects the
    operation or cannot be reached.
    """

    @abstractmethod
    async def list(self, collection: str) -> list[dict]:
        """Return every record in ``collection``."""

    @abstractmethod
    async def create(self, collection: str, record: dict) -> dict:
        """Store a new record and return it as stored."""

    @abstractmethod
    async def update(self, collection: str, record: dict) -> dict:
        """Replace the record whose id is ``record["id"]``."""

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        """Remove a record by id."""

    async def close(self) -> None:
        """Release any held connections."""
