# foodsync/middleware/rate_limiter.py
# Rate limiting middleware to protect the sync API from abuse
# Uses in-memory sliding window counters and a progressive block for
# clients that keep failing sync requests (token guessing)

import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Tuple
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from foodsync.middleware.error_handler import RateLimitError

import logging

logger = logging.getLogger(__name__)

SYNC_PATH_PREFIX = "/api/sync"
# Statuses that count as a failed sync attempt
FAILURE_STATUSES = frozenset({400, 401, 403, 404})


def get_client_key(request: Request) -> str:
    """Extract client identifier from request."""
    # Try to get real IP from proxy headers
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take first IP (original client)
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    # Fallback to direct client
    if request.client:
        return request.client.host

    return "unknown"


def _too_many_requests(message: str, retry_after: int) -> JSONResponse:
    return RateLimitError(message, retry_after=retry_after).to_response()


class SlidingWindowCounter:
    """
    Sliding window rate limiter implementation.
    More accurate than fixed window, less memory than sliding log.
    """

    def __init__(self, window_size: int = 60, max_requests: int = 100, clock: Callable[[], float] = time.time):
        self.window_size = window_size  # seconds
        self.max_requests = max_requests
        self._clock = clock
        # key -> (prev_count, curr_count, window_start)
        self._counters: Dict[str, Tuple[int, int, float]] = defaultdict(lambda: (0, 0, 0.0))

    def is_allowed(self, key: str) -> Tuple[bool, int]:
        """
        Check if request is allowed for given key.
        Returns (is_allowed, remaining_requests).
        """
        now = self._clock()
        prev_count, curr_count, window_start = self._counters[key]

        current_window = now // self.window_size

        if window_start < current_window - 1:
            # More than one window has passed, reset
            prev_count = 0
            curr_count = 1
            window_start = current_window
        elif window_start < current_window:
            # Previous window, slide
            prev_count = curr_count
            curr_count = 1
            window_start = current_window
        else:
            curr_count += 1

        # Weighted count (sliding window approximation)
        elapsed_in_window = now % self.window_size
        weight = elapsed_in_window / self.window_size
        weighted_count = prev_count * (1 - weight) + curr_count

        self._counters[key] = (prev_count, curr_count, window_start)

        remaining = max(0, int(self.max_requests - weighted_count))
        is_allowed = weighted_count <= self.max_requests

        return is_allowed, remaining

    def cleanup_old_entries(self, max_age: int = 300):
        """Remove entries older than max_age seconds."""
        current_window = self._clock() // self.window_size
        keys_to_remove = [
            key for key, (_, _, window_start) in self._counters.items()
            if current_window - window_start > max_age // self.window_size
        ]
        for key in keys_to_remove:
            del self._counters[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for rate limiting.
    The sync endpoints get their own, tighter budget.
    """

    def __init__(
        self,
        app,
        api_limit: int = 600,
        sync_limit: int = 400,
        window_seconds: int = 900,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.api_limiter = SlidingWindowCounter(window_size=window_seconds, max_requests=api_limit, clock=clock)
        self.sync_limiter = SlidingWindowCounter(window_size=window_seconds, max_requests=sync_limit, clock=clock)
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_cleanup = clock()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith("/api/"):
            return await call_next(request)

        # Periodic cleanup (every 5 minutes); keep the previous window for the sliding weight
        now = self._clock()
        if now - self._last_cleanup > 300:
            self.api_limiter.cleanup_old_entries(max_age=2 * self.window_seconds)
            self.sync_limiter.cleanup_old_entries(max_age=2 * self.window_seconds)
            self._last_cleanup = now

        client_key = get_client_key(request)
        limiter = self.sync_limiter if path.startswith(SYNC_PATH_PREFIX) else self.api_limiter

        is_allowed, remaining = limiter.is_allowed(client_key)

        if not is_allowed:
            logger.warning(f"Rate limit exceeded for {client_key} on {path}")
            retry_after = int(self.window_seconds - now % self.window_seconds) + 1
            return _too_many_requests("Too many requests. Please slow down.", retry_after)

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Limit"] = str(limiter.max_requests)

        return response


@dataclass
class FailureEntry:
    failures: int = 0
    blocked_until: float = 0.0
    last_seen: float = 0.0


class ProgressiveFailBlocker:
    """
    Per-client failure counter with exponentially growing blocks.

    After ``threshold`` failures a client is blocked for
    ``base_seconds * 2 ** (failures - threshold)`` seconds, capped at
    ``max_seconds``. A success clears the entry; entries idle for longer
    than ``reset_seconds`` start over.
    """

    def __init__(
        self,
        threshold: int = 8,
        base_seconds: float = 60.0,
        max_seconds: float = 1800.0,
        reset_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.threshold = threshold
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._entries: Dict[str, FailureEntry] = {}

    def _entry(self, key: str, now: float) -> FailureEntry:
        entry = self._entries.get(key)
        if entry is None or now - entry.last_seen > self.reset_seconds:
            entry = FailureEntry(last_seen=now)
            self._entries[key] = entry
        return entry

    def retry_after(self, key: str) -> int:
        """Seconds the client still has to wait, 0 when not blocked."""
        entry = self._entries.get(key)
        if entry is None:
            return 0
        remaining = entry.blocked_until - self._clock()
        return int(remaining) + 1 if remaining > 0 else 0

    def record_failure(self, key: str) -> None:
        now = self._clock()
        entry = self._entry(key, now)
        entry.failures += 1
        entry.last_seen = now
        if entry.failures >= self.threshold:
            block = min(self.max_seconds, self.base_seconds * 2 ** (entry.failures - self.threshold))
            entry.blocked_until = now + block
            logger.warning(f"Blocking {key} for {block:.0f}s after {entry.failures} failed sync requests")

    def record_success(self, key: str) -> None:
        self._entries.pop(key, None)

    def cleanup_old_entries(self) -> None:
        now = self._clock()
        stale = [
            key for key, entry in self._entries.items()
            if now - entry.last_seen > self.reset_seconds and entry.blocked_until <= now
        ]
        for key in stale:
            del self._entries[key]


class FailBlockMiddleware(BaseHTTPMiddleware):
    """Apply a ProgressiveFailBlocker to the sync endpoints."""

    def __init__(self, app, blocker: ProgressiveFailBlocker = None, **blocker_options):
        super().__init__(app)
        self.blocker = blocker or ProgressiveFailBlocker(**blocker_options)
        self._last_cleanup = time.time()

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(SYNC_PATH_PREFIX):
            return await call_next(request)

        now = time.time()
        if now - self._last_cleanup > 300:
            self.blocker.cleanup_old_entries()
            self._last_cleanup = now

        client_key = get_client_key(request)
        retry_after = self.blocker.retry_after(client_key)
        if retry_after:
            return _too_many_requests("Too many failed sync attempts. Try again later.", retry_after)

        response = await call_next(request)
        if response.status_code in FAILURE_STATUSES:
            self.blocker.record_failure(client_key)
        elif response.status_code < 400:
            self.blocker.record_success(client_key)
        return response
