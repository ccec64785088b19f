from __future__ import annotations

import argparse
import asyncio
import json
import logging
import time
from dataclasses import asdict
from typing import List, Optional

from catalog_mirror.backoff import BackoffStrategy
from catalog_mirror.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FETCHER,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_LIMIT,
    DEFAULT_TIMEOUT_SECS,
    Settings,
)
from catalog_mirror.crawler import BatchSink, CatalogCrawler
from catalog_mirror.errors import CatalogMirrorError, StoreError
from catalog_mirror.executor import BoundedExecutor
from catalog_mirror.extractor import CatalogSite
from catalog_mirror.fetcher import FETCHER_BACKENDS, PageFetcher, create_fetcher
from catalog_mirror.logging_setup import configure_logging
from catalog_mirror.metrics import FetchMetrics
from catalog_mirror.models import CatalogEntry, CrawlProgress, Partition, PartitionReport, SyncState
from catalog_mirror.storage import CatalogStore, InMemoryCatalogStore, MongoCatalogStore
from catalog_mirror.sync import IncrementalSyncEngine

logger = logging.getLogger("catalog_mirror.main")

STORE_BACKENDS = ("mongo", "memory")


def build_store(settings: Settings, backend: str = "mongo") -> CatalogStore:
    if backend == "memory":
        return InMemoryCatalogStore()
    if backend == "mongo":
        return MongoCatalogStore(settings.require_mongodb_uri(), settings.db_name)
    raise ValueError(f"Unknown store backend: {backend}")


async def open_store(settings: Settings, backend: str = "mongo") -> CatalogStore:
    """Build the store and make sure its unique indexes exist."""
    store = build_store(settings, backend)
    if isinstance(store, MongoCatalogStore):
        try:
            await store.ensure_indexes()
        except StoreError:
            await store.close()
            raise
    return store


def format_elapsed(elapsed_secs: float) -> str:
    """Format a duration as ``hh:mm:ss``."""
    total = int(elapsed_secs)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


async def run_full_crawl(
    batch_size: int,
    on_batch: Optional[BatchSink] = None,
    settings: Optional[Settings] = None,
    store: Optional[CatalogStore] = None,
    fetcher: Optional[PageFetcher] = None,
    start_page: int = 1,
) -> CrawlProgress:
    """Crawl the whole catalog. Without ``on_batch``, batches are upserted into ``store``."""
    settings = settings or Settings.from_env()
    owned_fetcher = fetcher is None
    fetcher = fetcher or create_fetcher(DEFAULT_FETCHER)

    if on_batch is None:
        if store is None:
            raise ValueError("run_full_crawl needs either on_batch or a store")
        target = store

        async def upsert_batch(batch: List[CatalogEntry]) -> None:
            await target.upsert_entries(batch, "entry_id")

        on_batch = upsert_batch

    crawler = CatalogCrawler(fetcher, CatalogSite(settings.base_url, settings.feed_url), BoundedExecutor(settings.concurrency))
    progress = CrawlProgress()
    try:
        await crawler.crawl(on_batch, batch_size, start_page=start_page, progress=progress)
    finally:
        if owned_fetcher:
            await fetcher.close()
    return progress


async def run_incremental_sync(
    settings: Optional[Settings] = None,
    store: Optional[CatalogStore] = None,
    fetcher: Optional[PageFetcher] = None,
    page_limit: int = DEFAULT_PAGE_LIMIT,
) -> List[PartitionReport]:
    """One incremental pass over every partition."""
    settings = settings or Settings.from_env()
    owned_store = store is None
    owned_fetcher = fetcher is None
    store = store or await open_store(settings)
    fetcher = fetcher or create_fetcher(DEFAULT_FETCHER)

    engine = IncrementalSyncEngine(
        fetcher,
        CatalogSite(settings.base_url, settings.feed_url),
        BoundedExecutor(settings.concurrency),
        store,
        page_limit=page_limit,
    )
    try:
        return await engine.run()
    finally:
        if owned_fetcher:
            await fetcher.close()
        if owned_store:
            await store.close()


async def _crawl_command(args: argparse.Namespace, settings: Settings, metrics: FetchMetrics) -> int:
    store = await open_store(settings, args.store)
    fetcher = _build_fetcher(args, metrics)
    start = time.monotonic()
    logger.info("starting full catalog crawl from page %d", args.start_page)
    try:
        progress = await run_full_crawl(
            args.batch_size, settings=settings, store=store, fetcher=fetcher, start_page=args.start_page
        )
    except CatalogMirrorError:
        logger.exception("crawl aborted; restart with --start-page to resume from a known page")
        return 1
    finally:
        await fetcher.close()
        await store.close()

    logger.info(json.dumps({"event": "crawl_finished", **asdict(progress)}, ensure_ascii=False))
    logger.info("crawl completed in %s", format_elapsed(time.monotonic() - start))
    return 0


async def _sync_command(args: argparse.Namespace, settings: Settings, metrics: FetchMetrics) -> int:
    store = await open_store(settings, args.store)
    fetcher = _build_fetcher(args, metrics)
    try:
        reports = await run_incremental_sync(settings, store=store, fetcher=fetcher, page_limit=args.page_limit)
    finally:
        await fetcher.close()
        await store.close()

    for report in reports:
        print(json.dumps({**asdict(report), "partition": report.partition.key}, ensure_ascii=False, default=str))
    return 1 if any(r.state is SyncState.FAILED for r in reports) else 0


async def _seed_command(args: argparse.Namespace, settings: Settings) -> int:
    store = await open_store(settings, args.store)
    try:
        await store.seed_marker(Partition.from_key(args.partition), args.item_id)
    finally:
        await store.close()
    return 0


def _build_fetcher(args: argparse.Namespace, metrics: FetchMetrics) -> PageFetcher:
    return create_fetcher(
        args.fetcher,
        backoff=BackoffStrategy(),
        metrics=metrics,
        max_retries=args.max_retries,
        timeout=args.timeout,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mirror the media catalog into a local store")
    parser.add_argument("--store", choices=STORE_BACKENDS, default="mongo", help="Storage backend")
    parser.add_argument("--fetcher", choices=sorted(FETCHER_BACKENDS), default=DEFAULT_FETCHER, help="HTTP backend")
    parser.add_argument("--concurrency", type=int, default=None, help="Max in-flight page fetches")
    parser.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES, help="Attempts per page")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_SECS, help="Per-request timeout seconds")
    parser.add_argument("--log-level", default=None, help="Logging level (default from CATALOG_LOG_LEVEL)")

    sub = parser.add_subparsers(dest="cmd", required=True)

    crawl = sub.add_parser("crawl", help="Crawl the entire catalog listing")
    crawl.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Entries per upsert batch")
    crawl.add_argument("--start-page", type=int, default=1, help="Listing page to start from")

    sync = sub.add_parser("sync", help="Back-fill entries for newly released episodes")
    sync.add_argument("--page-limit", type=int, default=DEFAULT_PAGE_LIMIT, help="Max feed pages per partition")

    seed = sub.add_parser("seed-marker", help="Create or overwrite a partition's recency marker")
    seed.add_argument("partition", choices=[p.key for p in Partition], help="Partition key")
    seed.add_argument("item_id", help="Feed item id to record as last seen")

    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    if args.concurrency is not None:
        settings = Settings(**{**asdict(settings), "concurrency": args.concurrency})
    configure_logging(args.log_level or settings.log_level)

    metrics = FetchMetrics()
    try:
        if args.cmd == "crawl":
            code = asyncio.run(_crawl_command(args, settings, metrics))
        elif args.cmd == "sync":
            code = asyncio.run(_sync_command(args, settings, metrics))
        else:
            code = asyncio.run(_seed_command(args, settings))
    except CatalogMirrorError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1

    if args.cmd != "seed-marker":
        logger.info(json.dumps({"event": "fetch_stats", **asdict(metrics.snapshot())}, ensure_ascii=False))
    return code


if __name__ == "__main__":
    raise SystemExit(main())
