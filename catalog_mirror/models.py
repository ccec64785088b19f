from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class Variant(str, Enum):
    ORIGINAL = "original"
    ALTERNATE_AUDIO = "alternate-audio"


class Partition(int, Enum):
    """Language partitions of the recent-release feed.

    The value is the ``type`` query parameter the feed expects."""

    ENGLISH_SUB = 1
    ENGLISH_DUB = 2
    CHINESE = 3

    @property
    def key(self) -> str:
        return self.name.lower().replace("_", "-")

    @classmethod
    def from_key(cls, key: str) -> "Partition":
        for member in cls:
            if member.key == key:
                return member
        raise ValueError(f"Unknown partition: {key}")


class Collection(str, Enum):
    CATALOG = "catalog_entries"
    MARKERS = "recency_markers"


@dataclass(frozen=True)
class CatalogEntry:
    entry_id: str
    title: str
    variant: Variant
    aliases: Tuple[str, ...] = ()

    def to_document(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "title": self.title,
            "variant": self.variant.value,
            "aliases": list(self.aliases),
        }

    @classmethod
    def from_document(cls, doc: dict) -> "CatalogEntry":
        return cls(
            entry_id=doc["entry_id"],
            title=doc["title"],
            variant=Variant(doc["variant"]),
            aliases=tuple(doc.get("aliases") or ()),
        )


@dataclass(frozen=True)
class RecencyMarker:
    partition: Partition
    last_seen_item_id: str


@dataclass(frozen=True)
class EntryRef:
    """A link to a catalog entry found on a listing page."""

    entry_id: str


@dataclass(frozen=True)
class ListingPage:
    page: int
    refs: Tuple[EntryRef, ...]
    has_next_page: bool


@dataclass(frozen=True)
class FeedPage:
    page: int
    item_ids: Tuple[str, ...]
    has_next_page: bool


@dataclass(frozen=True)
class UpsertResult:
    inserted_count: int
    matched_count: int


@dataclass
class CrawlProgress:
    """Caller-owned progress of one full crawl."""

    pages_crawled: int = 0
    entries_seen: int = 0
    batches_delivered: int = 0
    entries_delivered: int = 0
    last_page: Optional[int] = None


class SyncState(str, Enum):
    CHECKING = "CHECKING"
    UP_TO_DATE = "UP_TO_DATE"
    SYNCING = "SYNCING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class PartitionReport:
    partition: Partition
    state: SyncState
    new_item_count: int = 0
    inserted_count: int = 0
    matched_count: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class FetchEvent:
    url: str
    ok: bool
    status_code: Optional[int]
    attempts: int
    latency_ms: int
    error_type: Optional[str]


@dataclass(frozen=True)
class FetchStats:
    total_requests: int
    success_count: int
    failure_count: int
    retried_count: int
    avg_latency_ms: float
    error_types: List[str] = field(default_factory=list)
