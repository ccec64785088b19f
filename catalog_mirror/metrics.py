from __future__ import annotations

from collections import Counter, deque
from dataclasses import asdict
from typing import Deque, Dict, List

from .models import FetchEvent, FetchStats


class FetchMetrics:
    """Collects one FetchEvent per page fetch and summarises them.

    Only touched from the event loop, so no locking is needed."""

    def __init__(self, max_events: int = 10000) -> None:
        self._events: Deque[FetchEvent] = deque(maxlen=max_events)

    def record(self, event: FetchEvent) -> None:
        self._events.append(event)

    def snapshot(self) -> FetchStats:
        """Aggregate every retained event."""
        events = list(self._events)
        total = len(events)
        success_count = sum(1 for e in events if e.ok)
        retried_count = sum(1 for e in events if e.attempts > 1)
        avg_latency_ms = (sum(e.latency_ms for e in events) / total) if total else 0.0
        errors = Counter(e.error_type for e in events if e.error_type)

        return FetchStats(
            total_requests=total,
            success_count=success_count,
            failure_count=total - success_count,
            retried_count=retried_count,
            avg_latency_ms=avg_latency_ms,
            error_types=[name for name, _ in errors.most_common()],
        )

    def export_json(self) -> List[Dict]:
        return [asdict(e) for e in self._events]
