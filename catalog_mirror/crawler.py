from __future__ import annotations

import inspect
import json
import logging
from typing import Awaitable, Callable, List, Optional, Union

from .executor import BoundedExecutor
from .extractor import CatalogSite
from .fetcher import PageFetcher
from .models import CatalogEntry, CrawlProgress, EntryRef, ListingPage

logger = logging.getLogger(__name__)

BatchSink = Callable[[List[CatalogEntry]], Union[None, Awaitable[None]]]


class CatalogCrawler:
    """Walks every listing page of the catalog and delivers entries in batches.

    Detail pages for one listing page are fetched concurrently through the
    executor, then reassembled in document order. Batches are handed to the
    sink one at a time, in order. Any fetch or extraction error aborts the
    crawl; nothing is skipped.
    """

    def __init__(self, fetcher: PageFetcher, site: CatalogSite, executor: BoundedExecutor) -> None:
        self._fetcher = fetcher
        self._site = site
        self._executor = executor

    async def crawl(
        self,
        on_batch: BatchSink,
        batch_size: int,
        start_page: int = 1,
        progress: Optional[CrawlProgress] = None,
    ) -> List[CatalogEntry]:
        """Crawl from ``start_page`` until the last listing page.

        Returns the final partial batch (already delivered to ``on_batch``),
        or an empty list when the entry count was a multiple of ``batch_size``.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if start_page < 1:
            raise ValueError("start_page must be at least 1")
        if progress is None:
            progress = CrawlProgress()

        batch: List[CatalogEntry] = []
        page = start_page
        while True:
            listing = await self._executor.submit(self.fetch_listing, page)
            entries = await self._executor.map(self.fetch_entry, listing.refs)
            progress.pages_crawled += 1
            progress.entries_seen += len(entries)
            progress.last_page = page
            logger.info("listing page %d: %d entries", page, len(entries))

            for entry in entries:
                batch.append(entry)
                if len(batch) >= batch_size:
                    await self._deliver(on_batch, batch, progress)
                    batch = []

            if not listing.has_next_page:
                break
            page += 1

        if batch:
            await self._deliver(on_batch, batch, progress)
        return batch

    async def fetch_listing(self, page: int) -> ListingPage:
        url = self._site.listing_url(page)
        html = await self._fetcher.fetch(url)
        return self._site.parse_listing(html, page, url=url)

    async def fetch_entry(self, ref: EntryRef) -> CatalogEntry:
        url = self._site.detail_url(ref.entry_id)
        html = await self._fetcher.fetch(url)
        return self._site.parse_detail(html, ref.entry_id, url=url)

    @staticmethod
    async def _deliver(on_batch: BatchSink, batch: List[CatalogEntry], progress: CrawlProgress) -> None:
        result = on_batch(batch)
        if inspect.isawaitable(result):
            await result
        progress.batches_delivered += 1
        progress.entries_delivered += len(batch)
        logger.info(
            json.dumps(
                {
                    "event": "batch_delivered",
                    "batch_no": progress.batches_delivered,
                    "size": len(batch),
                    "first": batch[0].entry_id,
                    "last": batch[-1].entry_id,
                    "total_delivered": progress.entries_delivered,
                },
                ensure_ascii=False,
            )
        )
