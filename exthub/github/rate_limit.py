"""GitHub rate-limit bookkeeping."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional

UNAUTHENTICATED_LIMIT = 60


@dataclass
class RateLimitState:
    """Last known rate-limit window, taken from response headers."""

    limit: int = UNAUTHENTICATED_LIMIT
    remaining: int = UNAUTHENTICATED_LIMIT
    reset: int = field(default_factory=lambda: int(time.time()))  # epoch seconds
    reset_date: Optional[datetime] = None

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Apply ``x-ratelimit-*`` headers. Missing or garbled values are ignored."""
        limit = _int_header(headers, "x-ratelimit-limit")
        if limit is not None:
            self.limit = limit
        remaining = _int_header(headers, "x-ratelimit-remaining")
        if remaining is not None:
            self.remaining = remaining
        reset = _int_header(headers, "x-ratelimit-reset")
        if reset is not None:
            self.set_reset(reset)

    def update_from_payload(self, rate: Mapping[str, int]) -> None:
        """Apply the ``rate`` block of a ``/rate_limit`` response."""
        self.limit = int(rate.get("limit", self.limit))
        self.remaining = int(rate.get("remaining", self.remaining))
        if "reset" in rate:
            self.set_reset(int(rate["reset"]))

    def set_reset(self, epoch_seconds: int) -> None:
        self.reset = epoch_seconds
        self.reset_date = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)

    def minutes_until_reset(self, now: Optional[float] = None) -> int:
        """Whole minutes until the window resets (an hour if unknown)."""
        now = time.time() if now is None else now
        reset_at = self.reset_date.timestamp() if self.reset_date else now + 3600
        return max(0, math.ceil((reset_at - now) / 60))

    def as_dict(self) -> dict[str, object]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset,
            "resetDate": self.reset_date.isoformat() if self.reset_date else None,
        }


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
