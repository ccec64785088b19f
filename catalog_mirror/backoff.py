from __future__ import annotations

import random
from typing import Optional

# Request timeouts and throttling are worth retrying; other client errors are not.
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


class BackoffStrategy:
    """Exponential backoff with jitter for fetch retries.

    Delay for retry ``n`` is ``base * 2^n`` seconds, capped at ``max_seconds``,
    plus up to ``jitter_ratio`` of that delay at random."""

    def __init__(
        self,
        base_seconds: float = 0.1,
        max_seconds: float = 10.0,
        jitter_ratio: float = 0.2,
    ) -> None:
        self._base = base_seconds
        self._max = max_seconds
        self._jitter_ratio = max(0.0, jitter_ratio)

    def get_sleep(self, attempt: int, error_type: Optional[str] = None) -> float:
        """Seconds to wait before retrying after failed ``attempt`` (1-based)."""
        exp = min(self._max, self._base * (2 ** max(attempt, 0)))
        # Throttled responses get the full cap straight away.
        if error_type == "HTTP_429":
            exp = self._max
        return exp + random.uniform(0, exp * self._jitter_ratio)

    @staticmethod
    def is_retryable_status(status_code: Optional[int]) -> bool:
        if status_code is None:
            return True
        if status_code >= 500:
            return True
        return status_code in RETRYABLE_CLIENT_STATUSES
