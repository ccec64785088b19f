"""Tests for the PageFetcher retry loop and the backend factory."""

import unittest
from typing import List, Tuple

from catalog_mirror.errors import TransportError
from catalog_mirror.fetcher import (
    ImpersonatingFetcher,
    PageFetcher,
    PlainFetcher,
    create_fetcher,
)
from catalog_mirror.metrics import FetchMetrics

from fakes import no_wait_backoff


class ScriptedFetcher(PageFetcher):
    """Plays back a list of responses; exceptions in the list are raised."""

    def __init__(self, script: List, **kwargs) -> None:
        kwargs.setdefault("backoff", no_wait_backoff())
        super().__init__(**kwargs)
        self._script = list(script)
        self.calls = 0

    async def _request(self, url: str) -> Tuple[int, str]:
        self.calls += 1
        step = self._script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


class TestPageFetcherRetries(unittest.IsolatedAsyncioTestCase):
    """Verify retry, give-up and error translation behaviour."""

    async def test_returns_body_on_success(self):
        fetcher = ScriptedFetcher([(200, "<html>ok</html>")])
        self.assertEqual(await fetcher.fetch("https://catalog.test/"), "<html>ok</html>")
        self.assertEqual(fetcher.calls, 1)

    async def test_retries_server_error_then_succeeds(self):
        fetcher = ScriptedFetcher([(503, ""), (502, ""), (200, "body")], max_retries=3)
        self.assertEqual(await fetcher.fetch("https://catalog.test/"), "body")
        self.assertEqual(fetcher.calls, 3)

    async def test_retries_transport_exception(self):
        fetcher = ScriptedFetcher([ConnectionResetError("reset"), (200, "body")])
        self.assertEqual(await fetcher.fetch("https://catalog.test/"), "body")

    async def test_gives_up_after_max_retries(self):
        fetcher = ScriptedFetcher([(500, "")] * 5, max_retries=3)
        with self.assertRaises(TransportError) as ctx:
            await fetcher.fetch("https://catalog.test/x")
        self.assertEqual(fetcher.calls, 3)
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.url, "https://catalog.test/x")

    async def test_not_found_fails_without_retry(self):
        fetcher = ScriptedFetcher([(404, ""), (200, "never")], max_retries=3)
        with self.assertRaises(TransportError) as ctx:
            await fetcher.fetch("https://catalog.test/missing")
        self.assertEqual(fetcher.calls, 1)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_exhausted_transport_errors_are_chained(self):
        fetcher = ScriptedFetcher([TimeoutError("slow")] * 2, max_retries=2)
        with self.assertRaises(TransportError) as ctx:
            await fetcher.fetch("https://catalog.test/")
        self.assertIsInstance(ctx.exception.__cause__, TimeoutError)
        self.assertIsNone(ctx.exception.status_code)

    async def test_unexpected_exceptions_propagate_untouched(self):
        fetcher = ScriptedFetcher([KeyError("bug")])
        with self.assertRaises(KeyError):
            await fetcher.fetch("https://catalog.test/")

    async def test_records_one_event_per_fetch(self):
        metrics = FetchMetrics()
        fetcher = ScriptedFetcher([(503, ""), (200, "ok"), (404, "")], metrics=metrics)
        await fetcher.fetch("https://catalog.test/a")
        with self.assertRaises(TransportError):
            await fetcher.fetch("https://catalog.test/b")
        events = metrics.export_json()
        self.assertEqual(len(events), 2)
        self.assertEqual((events[0]["ok"], events[0]["attempts"]), (True, 2))
        self.assertEqual((events[1]["ok"], events[1]["error_type"]), (False, "HTTP_404"))


class TestCreateFetcher(unittest.IsolatedAsyncioTestCase):
    """Verify that the factory creates the correct fetcher type."""

    async def test_creates_impersonating_fetcher(self):
        fetcher = create_fetcher("impersonate")
        self.assertIsInstance(fetcher, ImpersonatingFetcher)
        await fetcher.close()

    async def test_creates_plain_fetcher(self):
        fetcher = create_fetcher("plain")
        self.assertIsInstance(fetcher, PlainFetcher)
        await fetcher.close()

    async def test_unknown_backend_raises_error(self):
        with self.assertRaises(ValueError) as ctx:
            create_fetcher("carrier-pigeon")
        self.assertIn("carrier-pigeon", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
