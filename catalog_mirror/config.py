from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_BASE_URL = "https://anitaku.pe"
DEFAULT_FEED_URL = "https://ajax.gogocdn.net/ajax"
DEFAULT_DB_NAME = "catalog_mirror"

DEFAULT_CONCURRENCY = 10
DEFAULT_BATCH_SIZE = 500
DEFAULT_PAGE_LIMIT = 5
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECS = 20.0
DEFAULT_FETCHER = "impersonate"


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    mongodb_uri: Optional[str] = None
    db_name: str = DEFAULT_DB_NAME
    base_url: str = DEFAULT_BASE_URL
    feed_url: str = DEFAULT_FEED_URL
    concurrency: int = DEFAULT_CONCURRENCY
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read settings from the environment, loading ``.env`` first."""
        if env is None:
            load_dotenv()
            env = os.environ
        return cls(
            mongodb_uri=env.get("MONGODB_URI") or None,
            db_name=env.get("CATALOG_DB_NAME") or DEFAULT_DB_NAME,
            base_url=env.get("CATALOG_BASE_URL") or DEFAULT_BASE_URL,
            feed_url=env.get("CATALOG_FEED_URL") or DEFAULT_FEED_URL,
            concurrency=_int_env(env, "CATALOG_CONCURRENCY", DEFAULT_CONCURRENCY),
            log_level=(env.get("CATALOG_LOG_LEVEL") or "INFO").upper(),
        )

    def require_mongodb_uri(self) -> str:
        if not self.mongodb_uri:
            raise ConfigurationError("MONGODB_URI is not defined in the environment.")
        return self.mongodb_uri
