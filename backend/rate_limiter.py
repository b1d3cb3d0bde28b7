"""Sliding window rate limiter for the REST API.

This module limits how many requests a single client may make within a
time window (100 requests per 15 minutes by default). Each client key keeps a
deque of request timestamps, and only entries inside the window count.

Usage:
    >>> from rate_limiter import RequestRateLimiter
    >>> limiter = RequestRateLimiter(max_requests=100, window_seconds=900)
    >>> limiter.hit("203.0.113.7")
"""

import threading
import time
from collections import deque

import structlog
from fastapi import HTTPException, Request, status

logger = structlog.get_logger(__name__)


class RateLimitExceededError(Exception):
    """Raised when a client has used up its request quota for the window.

    Attributes:
        retry_after: Seconds until the oldest request leaves the window.
    """

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Rate limit exceeded, retry after {retry_after:.0f}s")
        self.retry_after = retry_after


class RequestRateLimiter:
    """Per-client sliding window request limiter.

    Attributes:
        max_requests: Maximum requests allowed per key within one window.
        window_seconds: Length of the sliding window.
    """

    def __init__(self, max_requests: int = 100, window_seconds: float = 900.0) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests: Maximum requests per key per window.
            window_seconds: Window length in seconds.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds

        # key -> deque of request timestamps (monotonic)
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = 0.0
        self._lock = threading.Lock()

        logger.info(
            "rate_limiter_initialized",
            max_requests=max_requests,
            window_seconds=window_seconds,
        )

    def _prune_old_entries(self, log: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while log and log[0] <= cutoff:
            log.popleft()

    def _sweep_idle_keys(self, now: float) -> None:
        """Drop keys with no request left in the window. Runs at most once per window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            log = self._hits[key]
            self._prune_old_entries(log, now)
            if not log:
                del self._hits[key]

    def hit(self, key: str, now: float | None = None) -> int:
        """Record one request for ``key`` if the quota allows it.

        Args:
            key: Client identifier (usually the remote host).
            now: Current monotonic time; defaults to ``time.monotonic()``.

        Returns:
            Requests remaining in the current window.

        Raises:
            RateLimitExceededError: If the key has no quota left. The
                rejected request is not recorded.
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            self._sweep_idle_keys(now)
            log = self._hits.setdefault(key, deque())
            self._prune_old_entries(log, now)

            if len(log) >= self.max_requests:
                retry_after = max(log[0] + self.window_seconds - now, 0.0)
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    retry_after=round(retry_after, 2),
                )
                raise RateLimitExceededError(retry_after)

            log.append(now)
            return self.max_requests - len(log)

    def tracked_keys(self) -> int:
        """Number of client keys currently held in memory."""
        with self._lock:
            return len(self._hits)


def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency applying the app's rate limiter to a request.

    Raises:
        HTTPException: 429 with a ``Retry-After`` header when over quota.
    """
    limiter: RequestRateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return

    key = request.client.host if request.client else "unknown"
    try:
        limiter.hit(key)
    except RateLimitExceededError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please try again later",
            headers={"Retry-After": str(int(e.retry_after) + 1)},
        ) from e
