"""Request guards and response headers: API key check, rate limiting, security headers."""
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

import structlog
from quart import Quart, jsonify, request

logger = structlog.get_logger()


class RateLimiter:
    """Sliding-window request counter keyed by client address.

    Clients whose window has fully expired are forgotten, so memory is
    bounded by the clients seen within one window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def _prune(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        """Drop every client with no request left inside the window."""
        for key in list(self._hits):
            hits = self._hits[key]
            self._prune(hits, now)
            if not hits:
                del self._hits[key]
        self._last_sweep = now

    def allow(self, key: str) -> bool:
        """Record a request for key; False if the window is already full."""
        now = self._clock()

        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)

        hits = self._hits.get(key)
        if hits is not None:
            self._prune(hits, now)

        if len(hits or ()) >= self.max_requests:
            return False

        if hits is None:
            hits = self._hits[key] = deque()
        hits.append(now)
        return True

    def retry_after(self, key: str) -> int:
        """Seconds until the oldest request in the window expires."""
        hits = self._hits.get(key)
        if not hits:
            return 0
        return max(0, int(self.window_seconds - (self._clock() - hits[0])) + 1)

    def __len__(self) -> int:
        return len(self._hits)


def register_api_guards(
    app: Quart,
    api_key: Optional[str] = None,
    rate_limiter: Optional[RateLimiter] = None,
    prefix: str = "/api",
) -> None:
    """Install before_request hooks protecting routes under prefix."""

    @app.before_request
    async def guard_api():
        # CORS preflights carry no credentials
        if request.method == "OPTIONS" or not request.path.startswith(prefix):
            return None

        if api_key and request.headers.get("X-API-Key") != api_key:
            logger.warning("api_key_rejected", path=request.path)
            return jsonify({"error": "Unauthorized: Invalid API Key"}), 401

        if rate_limiter is not None:
            client = request.remote_addr or "unknown"
            if not rate_limiter.allow(client):
                logger.warning("rate_limit_exceeded", client=client, path=request.path)
                return (
                    jsonify({"error": "Too many requests, please try again later."}),
                    429,
                    {"Retry-After": str(rate_limiter.retry_after(client))},
                )

        return None


def register_security_headers(app: Quart, content_security_policy: Optional[str] = None) -> None:
    """Add browser hardening headers to every response."""
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "SAMEORIGIN",
        "Referrer-Policy": "no-referrer",
    }
    if content_security_policy:
        headers["Content-Security-Policy"] = content_security_policy

    @app.after_request
    async def add_security_headers(response):
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response
