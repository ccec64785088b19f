from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import fields
from typing import Dict, Optional, Sequence

from pymongo import AsyncMongoClient, UpdateOne
from pymongo.errors import PyMongoError

from .errors import StoreError
from .models import CatalogEntry, Collection, Partition, RecencyMarker, UpsertResult

logger = logging.getLogger(__name__)

UPSERT_KEYS = frozenset(f.name for f in fields(CatalogEntry))


def _check_unique_field(unique_field: str) -> None:
    if unique_field not in UPSERT_KEYS:
        raise ValueError(f"Cannot upsert on {unique_field!r}; expected one of {sorted(UPSERT_KEYS)}")


class CatalogStore(ABC):
    """Persistence for catalog entries and per-partition recency markers."""

    @abstractmethod
    async def upsert_entries(
        self,
        entries: Sequence[CatalogEntry],
        unique_field: str = "entry_id",
        collection: Collection = Collection.CATALOG,
    ) -> UpsertResult:
        """Insert or replace each entry keyed by ``unique_field``. Idempotent."""

    @abstractmethod
    async def get_marker(self, partition: Partition) -> Optional[RecencyMarker]:
        """Return the partition's marker, or None when no row exists."""

    @abstractmethod
    async def set_marker(self, partition: Partition, item_id: str) -> None:
        """Advance an existing marker row. A missing row is a StoreError."""

    @abstractmethod
    async def seed_marker(self, partition: Partition, item_id: str) -> None:
        """Create or overwrite the marker row for ``partition``."""

    async def close(self) -> None:
        return None


class InMemoryCatalogStore(CatalogStore):
    """Dictionary-backed store for dry runs and tests."""

    def __init__(self) -> None:
        self._collections: Dict[Collection, Dict[str, dict]] = {c: {} for c in Collection}

    async def upsert_entries(
        self,
        entries: Sequence[CatalogEntry],
        unique_field: str = "entry_id",
        collection: Collection = Collection.CATALOG,
    ) -> UpsertResult:
        _check_unique_field(unique_field)
        docs = self._collections[collection]
        inserted = matched = 0
        for entry in entries:
            doc = entry.to_document()
            key = doc[unique_field]
            if key in docs:
                matched += 1
            else:
                inserted += 1
            docs[key] = doc
        return UpsertResult(inserted_count=inserted, matched_count=matched)

    async def get_marker(self, partition: Partition) -> Optional[RecencyMarker]:
        doc = self._collections[Collection.MARKERS].get(partition.key)
        if doc is None:
            return None
        return RecencyMarker(partition=partition, last_seen_item_id=doc["last_seen_item_id"])

    async def set_marker(self, partition: Partition, item_id: str) -> None:
        markers = self._collections[Collection.MARKERS]
        if partition.key not in markers:
            raise StoreError(f"No marker row for partition {partition.key}")
        markers[partition.key]["last_seen_item_id"] = item_id

    async def seed_marker(self, partition: Partition, item_id: str) -> None:
        self._collections[Collection.MARKERS][partition.key] = {
            "partition": partition.key,
            "last_seen_item_id": item_id,
        }

    def entries(self, collection: Collection = Collection.CATALOG) -> Dict[str, CatalogEntry]:
        return {k: CatalogEntry.from_document(v) for k, v in self._collections[collection].items()}


class MongoCatalogStore(CatalogStore):
    """MongoDB-backed store using pymongo's asyncio client.

    Catalog documents are keyed by the upsert field; marker documents are
    keyed by ``partition`` (the partition's key string).
    """

    def __init__(self, uri: str, db_name: str, client: Optional[AsyncMongoClient] = None) -> None:
        self._client = client if client is not None else AsyncMongoClient(uri)
        self._db = self._client[db_name]

    def _collection(self, collection: Collection):
        return self._db[collection.value]

    async def upsert_entries(
        self,
        entries: Sequence[CatalogEntry],
        unique_field: str = "entry_id",
        collection: Collection = Collection.CATALOG,
    ) -> UpsertResult:
        _check_unique_field(unique_field)
        if not entries:
            return UpsertResult(inserted_count=0, matched_count=0)

        operations = []
        for entry in entries:
            doc = entry.to_document()
            operations.append(UpdateOne({unique_field: doc[unique_field]}, {"$set": doc}, upsert=True))

        try:
            result = await self._collection(collection).bulk_write(operations, ordered=False)
        except PyMongoError as exc:
            raise StoreError(f"Bulk upsert into {collection.value} failed: {exc}") from exc
        return UpsertResult(inserted_count=result.upserted_count, matched_count=result.matched_count)

    async def get_marker(self, partition: Partition) -> Optional[RecencyMarker]:
        try:
            doc = await self._collection(Collection.MARKERS).find_one({"partition": partition.key})
        except PyMongoError as exc:
            raise StoreError(f"Could not read marker for {partition.key}: {exc}") from exc
        if doc is None:
            return None
        return RecencyMarker(partition=partition, last_seen_item_id=doc["last_seen_item_id"])

    async def set_marker(self, partition: Partition, item_id: str) -> None:
        try:
            result = await self._collection(Collection.MARKERS).update_one(
                {"partition": partition.key},
                {"$set": {"last_seen_item_id": item_id}},
            )
        except PyMongoError as exc:
            raise StoreError(f"Could not update marker for {partition.key}: {exc}") from exc
        if result.matched_count == 0:
            raise StoreError(f"No marker row for partition {partition.key}")

    async def seed_marker(self, partition: Partition, item_id: str) -> None:
        try:
            await self._collection(Collection.MARKERS).update_one(
                {"partition": partition.key},
                {"$set": {"partition": partition.key, "last_seen_item_id": item_id}},
                upsert=True,
            )
        except PyMongoError as exc:
            raise StoreError(f"Could not seed marker for {partition.key}: {exc}") from exc
        logger.info("seeded marker for %s at %s", partition.key, item_id)

    async def ensure_indexes(self) -> None:
        try:
            await self._collection(Collection.CATALOG).create_index("entry_id", unique=True)
            await self._collection(Collection.MARKERS).create_index("partition", unique=True)
        except PyMongoError as exc:
            raise StoreError(f"Could not create indexes: {exc}") from exc

    async def close(self) -> None:
        await self._client.close()
