"""Base storage class and helpers.

Contains initialization, collection management, per-key locking and the
low-level point operations shared by the subscription and delivery stores.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import UnexpectedResponse

from hookline.config import settings
from hookline.exceptions import StorageError

from .retry import qdrant_retry

COLLECTION_NAMES = {
    "subscriptions": "subscriptions",
    "deliveries": "deliveries",
}

# Keyword payload fields indexed per collection
INDEXED_FIELDS = {
    "subscriptions": ("status", "owner_id", "deleted"),
    "deliveries": ("status", "subscription_id"),
}

# Records are addressed by id and filtered by payload, never searched by
# similarity, so every point carries the same one-dimensional vector.
PLACEHOLDER_VECTOR = [1.0]

SCROLL_PAGE_SIZE = 256


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class StorageBase:
    """Base class for Hookline storage with initialization and helpers.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Point ID conversion and raw point operations
    - Per-key asyncio locks serializing conditional updates
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL, or ":memory:" for local mode.
                Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._client: AsyncQdrantClient | None = None
        self._collections_initialized = False
        self._locks: dict[str, _KeyLock] = {}

    @property
    def is_initialized(self) -> bool:
        return self._client is not None and self._collections_initialized

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Initialize the storage client and ensure collections exist.

        Raises:
            StorageError: If Qdrant cannot be reached after retries.
        """
        if self._url == ":memory:":
            self._client = AsyncQdrantClient(location=":memory:")
        else:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        try:
            await self._ensure_collections()
        except (httpx.HTTPError, UnexpectedResponse) as e:
            raise StorageError(f"Cannot initialize Qdrant storage at {self._url}: {e}") from e
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _collection_name(self, kind: str) -> str:
        """Get full collection name with prefix."""
        suffix = COLLECTION_NAMES.get(kind, kind)
        return f"{self._prefix}_{suffix}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a record id to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers.
        We hash the key to create a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    @asynccontextmanager
    async def _lock_for(self, key: str) -> AsyncIterator[None]:
        """Hold the lock serializing read-check-write sequences on one record.

        The entry is dropped once no task holds or waits for it, so the map
        only grows with the number of records being mutated concurrently.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @qdrant_retry
    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist with proper schemas."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name in existing:
                continue
            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            await self._create_indexes(kind, collection_name)

    async def _create_indexes(self, kind: str, collection_name: str) -> None:
        """Create payload indexes for efficient filtering."""
        for field_name in INDEXED_FIELDS.get(kind, ()):
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=(
                    models.PayloadSchemaType.BOOL
                    if field_name == "deleted"
                    else models.PayloadSchemaType.KEYWORD
                ),
            )

    @qdrant_retry
    async def _upsert_payload(self, kind: str, record_id: str, payload: dict[str, Any]) -> None:
        """Write the full payload of one record."""
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=self._key_to_point_id(record_id),
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    @qdrant_retry
    async def _retrieve_payload(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Read the payload of one record, or None if it does not exist."""
        results = await self.client.retrieve(
            collection_name=self._collection_name(kind),
            ids=[self._key_to_point_id(record_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return dict(results[0].payload)

    @qdrant_retry
    async def _set_payload(self, kind: str, record_id: str, values: dict[str, Any]) -> None:
        """Overwrite selected payload keys of one record."""
        await self.client.set_payload(
            collection_name=self._collection_name(kind),
            payload=values,
            points=[self._key_to_point_id(record_id)],
        )

    async def _scroll_payloads(
        self,
        kind: str,
        query_filter: models.Filter | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Iterate over the payloads of every record matching a filter."""
        offset: Any = None
        while True:
            points, offset = await self.client.scroll(
                collection_name=self._collection_name(kind),
                scroll_filter=query_filter,
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=True,
            )
            for point in points:
                if point.payload is not None:
                    yield dict(point.payload)
            if offset is None:
                break

    @staticmethod
    def _match(key: str, value: Any) -> models.FieldCondition:
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))

    @staticmethod
    def _match_any(key: str, values: list[str]) -> models.FieldCondition:
        return models.FieldCondition(key=key, match=models.MatchAny(any=values))
