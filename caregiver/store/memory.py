"""In-process record store (the default when no backend URL is configured)."""

from __future__ import annotations

import copy
import logging

from caregiver.errors import RecordStoreError
from caregiver.store.base import COLLECTIONS, RecordStore

log = logging.getLogger("caregiver.store.memory")


class InMemoryRecordStore(RecordStore):
    def __init__(self, seed: dict[str, list[dict]] | None = None) -> None:
        self._data: dict[str, dict[str, dict]] = {c: {} for c in COLLECTIONS}
        for collection, records in (seed or {}).items():
            for record in records:
                self._table(collection)[record["id"]] = copy.deepcopy(record)

    def _table(self, collection: str) -> dict[str, dict]:
        if collection not in self._data:
            raise RecordStoreError(f"Unknown collection: {collection}")
        return self._data[collection]

    async def list(self, collection: str) -> list[dict]:
        return [copy.deepcopy(r) for r in self._table(collection).values()]

    async def create(self, collection: str, record: dict) -> dict:
        table = self._table(collection)
        if record.get("id") in table:
            raise RecordStoreError(f"{collection}/{record['id']} already exists")
        table[record["id"]] = copy.deepcopy(record)
        log.debug("Created %s/%s", collection, record["id"])
        return copy.deepcopy(record)

    async def update(self, collection: str, record: dict) -> dict:
        table = self._table(collection)
        if record.get("id") not in table:
            raise RecordStoreError(f"{collection}/{record.get('id')} not found")
        table[record["id"]] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def delete(self, collection: str, record_id: str) -> None:
        table = self._table(collection)
        if table.pop(record_id, None) is None:
            raise RecordStoreError(f"{collection}/{record_id} not found")
        log.debug("Deleted %s/%s", collection, record_id)
