"""
In-process fixed-window rate limiting for sensitive endpoints.

Counters live in memory, so limits apply per worker process.
"""

import logging
import threading
import time
from typing import Dict, Tuple

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Allow at most ``limit`` requests per client address per ``window_seconds``.

    Use an instance directly as a FastAPI dependency:

        @router.post("/login", dependencies=[Depends(auth_limiter)])
    """

    def __init__(self, limit: int, window_seconds: int, name: str = "default", sweep_threshold: int = 1024):
        self.limit = limit
        self.window_seconds = window_seconds
        self.name = name
        self.sweep_threshold = sweep_threshold
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Record a request for ``key``; False once the window's budget is spent."""
        now = time.monotonic()
        with self._lock:
            if len(self._hits) >= self.sweep_threshold:
                self._evict_expired(now)
            window_start, count = self._hits.get(key, (now, 0))
            if now - window_start >= self.window_seconds:
                window_start, count = now, 0
            count += 1
            self._hits[key] = (window_start, count)
            return count <= self.limit

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (start, _) in self._hits.items() if now - start >= self.window_seconds]
        for key in expired:
            del self._hits[key]
        if expired:
            logger.debug(f"Rate limit '{self.name}' evicted {len(expired)} expired clients")

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __call__(self, request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        if not self.hit(client):
            logger.warning(f"Rate limit '{self.name}' exceeded for {client}")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
            )
