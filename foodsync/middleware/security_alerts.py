# foodsync/middleware/security_alerts.py
# Warn on every 403/429 answer and periodically summarize the noisy ones,
# so token guessing and throttled clients show up in the logs

import time
from collections import Counter
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from foodsync.middleware.rate_limiter import get_client_key

import logging

logger = logging.getLogger(__name__)

ALERT_STATUSES = frozenset({403, 429})


class SecurityAlertMiddleware(BaseHTTPMiddleware):
    """
    Logs ``[security] status=... method=... path=... ip=...`` for each 403/429.

    Counts are kept per ``status:method:path``; every ``summary_seconds`` the
    keys seen at least ``summary_threshold`` times are logged as one
    ``[security-summary]`` line and the counters start over.
    """

    def __init__(
        self,
        app,
        summary_seconds: float = 300.0,
        summary_threshold: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.summary_seconds = summary_seconds
        self.summary_threshold = summary_threshold
        self.counters: Counter = Counter()
        self._clock = clock
        self._last_summary = clock()

    def flush_summary(self) -> str:
        """Log and return the summary line (empty when nothing crossed the threshold)."""
        noisy = [(key, count) for key, count in self.counters.items() if count >= self.summary_threshold]
        self.counters.clear()
        self._last_summary = self._clock()
        if not noisy:
            return ""
        summary = " ".join(f"{key}={count}" for key, count in noisy)
        logger.warning(f"[security-summary] {summary}")
        return summary

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if response.status_code in ALERT_STATUSES:
            path = request.url.path
            self.counters[f"{response.status_code}:{request.method}:{path}"] += 1
            logger.warning(
                f"[security] status={response.status_code} method={request.method} "
                f"path={path} ip={get_client_key(request)}"
            )

        if self._clock() - self._last_summary >= self.summary_seconds:
            self.flush_summary()

        return response
