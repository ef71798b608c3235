"""Retry, rate-limit and cache settings for the Bubble data API and file downloads."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Final, Literal

import httpx

ShouldCacheHook = Callable[[object], bool]

# Bubble answers 429 when the app's capacity is exhausted and 502/503 while it restarts
# workers; both clear up on their own.
BUBBLE_RETRY_STATUSES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})
# CDN hosts serving attachments also time out at the gateway (408) under load.
DOWNLOAD_RETRY_STATUSES: Final[frozenset[int]] = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_RETRY_TOTAL: Final[int] = 4
DOWNLOAD_RETRY_TOTAL: Final[int] = 2


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    total: int = DEFAULT_RETRY_TOTAL
    backoff_factor: float = 0.5
    max_backoff_wait: float = 60.0
    respect_retry_after_header: bool = True
    # GET only: neither the data API nor the file hosts are ever written to.
    allowed_methods: frozenset[str] = field(default_factory=lambda: frozenset({"GET", "HEAD"}))
    status_forcelist: frozenset[int] = BUBBLE_RETRY_STATUSES
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    backoff_jitter: float = 1.0

    @classmethod
    def for_downloads(cls, total: int = DOWNLOAD_RETRY_TOTAL) -> RetryPolicy:
        return cls(total=total, status_forcelist=DOWNLOAD_RETRY_STATUSES)


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float

    @classmethod
    def per_second(cls, calls: float) -> RateLimit:
        """Express ``calls`` per second as a whole number of calls per window.

        Rates below one call per second widen the window instead of rounding up.
        """

        if calls <= 0:
            raise ValueError(f"Rate must be positive, got {calls}")
        if calls < 1:
            return cls(max_calls=1, per_seconds=1 / calls)
        return cls(max_calls=int(calls), per_seconds=1.0)


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache for by-id lookups; list pages are never cached."""

    enabled: bool = True
    backend: Literal["sqlite", "memory"] = "memory"
    sqlite_path: str | None = None
    default_ttl_seconds: float | None = None
    should_cache: ShouldCacheHook | None = None


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    follow_redirects: bool = False
