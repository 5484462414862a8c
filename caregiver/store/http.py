"""Record store backed by a remote REST service.

Routes, relative to ``base_url``::

    GET    /api/<collection>          list
    POST   /api/<collection>          create (body: full record)
    PUT    /api/<collection>/<id>     replace (body: full record)
    DELETE /api/<collection>/<id>     delete
"""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from caregiver.errors import RecordStoreError
from caregiver.store.base import COLLECTIONS, RecordStore

log = logging.getLogger("caregiver.store.http")


class HttpRecordStore(RecordStore):
    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _url(self, collection: str, record_id: str = "") -> str:
        if collection not in COLLECTIONS:
            raise RecordStoreError(f"Unknown collection: {collection}")
        url = f"{self._base_url}/api/{collection}"
        return f"{url}/{record_id}" if record_id else url

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _request(self, method: str, url: str, body: dict | None = None):
        try:
            async with self._client().request(method, url, json=body) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    log.error("%s %s failed (%d): %s", method, url, resp.status, text)
                    raise RecordStoreError(f"{method} {url} returned {resp.status}")
                if resp.content_type == "application/json":
                    return await resp.json()
                return None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error("%s %s failed: %s", method, url, e)
            raise RecordStoreError(f"{method} {url} failed: {e}") from e

    async def list(self, collection: str) -> list[dict]:
        data = await self._request("GET", self._url(collection))
        return list(data or [])

    async def create(self, collection: str, record: dict) -> dict:
        data = await self._request("POST", self._url(collection), record)
        return data if isinstance(data, dict) else record

    async def update(self, collection: str, record: dict) -> dict:
        data = await self._request("PUT", self._url(collection, record["id"]), record)
        return data if isinstance(data, dict) else record

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", self._url(collection, record_id))

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
