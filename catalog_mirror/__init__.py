"""Incremental mirror of a media catalog site.

Provides a full-catalog crawl over the paginated listing and a recurring
incremental sync driven by per-partition recency markers.

Key modules:
    crawler         -- CatalogCrawler, paginated crawl with batch delivery
    sync            -- IncrementalSyncEngine, sentinel-bounded backward walk
    executor        -- BoundedExecutor, the only concurrency limiter
    fetcher         -- PageFetcher and its curl_cffi / requests backends
    extractor       -- CatalogSite, page parsing with selectolax
    storage         -- CatalogStore, MongoDB and in-memory backends
    backoff         -- BackoffStrategy for exponential retry delays
    metrics         -- FetchMetrics for per-run fetch statistics
    models          -- CatalogEntry, Partition and other dataclasses
    errors          -- TransportError, ExtractionError, ConfigurationError, StoreError
    config          -- Settings loaded from the environment
"""
