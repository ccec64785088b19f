from __future__ import annotations

from typing import Optional


class CatalogMirrorError(Exception):
    """Base class for every error raised by the mirror."""


class TransportError(CatalogMirrorError):
    """A page could not be fetched, after retries where they apply."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ExtractionError(CatalogMirrorError):
    """Page content did not have the expected structure."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message if url is None else f"{message} ({url})")
        self.url = url


class ConfigurationError(CatalogMirrorError):
    """Required configuration or seeded state is missing."""


class StoreError(CatalogMirrorError):
    """A read or write against the persistence layer failed."""
