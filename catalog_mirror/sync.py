from __future__ import annotations

import json
import logging
from typing import Iterable, List, Optional

from .config import DEFAULT_PAGE_LIMIT
from .errors import ConfigurationError, ExtractionError
from .executor import BoundedExecutor, gather_ordered
from .extractor import CatalogSite
from .fetcher import PageFetcher
from .models import CatalogEntry, FeedPage, Partition, PartitionReport, SyncState
from .storage import CatalogStore

logger = logging.getLogger(__name__)


class IncrementalSyncEngine:
    """Back-fills catalog entries for feed items published since the last pass.

    Each partition runs CHECKING -> UP_TO_DATE, or CHECKING -> SYNCING -> DONE.
    Any error moves that partition to FAILED with its marker untouched; the
    other partitions carry on.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        site: CatalogSite,
        executor: BoundedExecutor,
        store: CatalogStore,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        partitions: Optional[Iterable[Partition]] = None,
    ) -> None:
        if page_limit < 1:
            raise ValueError("page_limit must be at least 1")
        self._fetcher = fetcher
        self._site = site
        self._executor = executor
        self._store = store
        self._page_limit = page_limit
        self._partitions = list(partitions) if partitions is not None else list(Partition)

    async def run(self) -> List[PartitionReport]:
        """One pass over every partition, in enumeration order."""
        reports = []
        for partition in self._partitions:
            reports.append(await self.sync_partition(partition))
        return reports

    async def sync_partition(self, partition: Partition) -> PartitionReport:
        self._log_state(partition, SyncState.CHECKING)
        try:
            stored_id, scraped_id = await gather_ordered([
                self._stored_item_id(partition),
                self.scrape_most_recent_id(partition),
            ])
            if stored_id == scraped_id:
                self._log_state(partition, SyncState.UP_TO_DATE, item_id=scraped_id)
                return PartitionReport(partition=partition, state=SyncState.UP_TO_DATE)

            self._log_state(partition, SyncState.SYNCING, sentinel=stored_id, scraped=scraped_id)
            entries = await self.walk_back(stored_id, partition)

            # The marker only advances once the entries are durable.
            result = await self._store.upsert_entries(entries, "entry_id")
            await self._store.set_marker(partition, scraped_id)
        except Exception as exc:
            logger.error(
                json.dumps(
                    {
                        "partition": partition.key,
                        "state": SyncState.FAILED.value,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                    ensure_ascii=False,
                ),
                exc_info=exc,
            )
            return PartitionReport(
                partition=partition,
                state=SyncState.FAILED,
                error=f"{type(exc).__name__}: {exc}",
            )

        self._log_state(
            partition,
            SyncState.DONE,
            new_items=len(entries),
            inserted=result.inserted_count,
            matched=result.matched_count,
        )
        return PartitionReport(
            partition=partition,
            state=SyncState.DONE,
            new_item_count=len(entries),
            inserted_count=result.inserted_count,
            matched_count=result.matched_count,
        )

    async def scrape_most_recent_id(self, partition: Partition) -> str:
        feed = await self._executor.submit(self.fetch_feed_page, partition, 1)
        if not feed.item_ids:
            raise ExtractionError(
                f"feed for {partition.key} is empty",
                url=self._site.feed_url_for(partition, 1),
            )
        return feed.item_ids[0]

    async def walk_back(self, sentinel: str, partition: Partition, start_page: int = 1) -> List[CatalogEntry]:
        """Collect entries for feed items newer than ``sentinel``.

        Stops on the page where the sentinel appears, at the page limit, or
        on the last feed page, whichever comes first. Output is most recent
        first; the same entry may appear more than once.
        """
        collected: List[CatalogEntry] = []
        page = start_page
        while True:
            feed = await self._executor.submit(self.fetch_feed_page, partition, page)
            try:
                sentinel_index: Optional[int] = feed.item_ids.index(sentinel)
            except ValueError:
                sentinel_index = None
            new_items = feed.item_ids[:sentinel_index]

            collected.extend(await gather_ordered(self._entry_for_item(item_id) for item_id in new_items))
            logger.debug("%s feed page %d: %d new item(s)", partition.key, page, len(new_items))

            if sentinel_index is not None or page >= self._page_limit or not feed.has_next_page:
                return collected
            page += 1

    async def fetch_feed_page(self, partition: Partition, page: int) -> FeedPage:
        url = self._site.feed_url_for(partition, page)
        html = await self._fetcher.fetch(url)
        return self._site.parse_feed(html, page, url=url)

    async def fetch_parent_entry_id(self, item_id: str) -> str:
        url = self._site.episode_url(item_id)
        html = await self._fetcher.fetch(url)
        return self._site.parse_episode_parent(html, item_id, url=url)

    async def fetch_entry(self, entry_id: str) -> CatalogEntry:
        url = self._site.detail_url(entry_id)
        html = await self._fetcher.fetch(url)
        return self._site.parse_detail(html, entry_id, url=url)

    async def _entry_for_item(self, item_id: str) -> CatalogEntry:
        # Each fetch takes its own slot; none is held while waiting for another.
        entry_id = await self._executor.submit(self.fetch_parent_entry_id, item_id)
        return await self._executor.submit(self.fetch_entry, entry_id)

    async def _stored_item_id(self, partition: Partition) -> str:
        marker = await self._store.get_marker(partition)
        if marker is None:
            raise ConfigurationError(
                f"No recency marker for partition {partition.key}; seed one before the first sync"
            )
        return marker.last_seen_item_id

    @staticmethod
    def _log_state(partition: Partition, state: SyncState, **details) -> None:
        logger.info(json.dumps({"partition": partition.key, "state": state.value, **details}, ensure_ascii=False))
