"""
Per-client sliding window rate limiting for the proxy route.

Applied as a FastAPI route dependency; only the proxy endpoint is limited, the
health and metrics endpoints are not.
"""
import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional

from fastapi import Request

from ..core.config import cfg
from ..core.errors import RateLimited
from ..models.schemas import MediaKind
from ..proxy.classifier import kind_from_url
from ..proxy.utils import get_client_ip
from .metrics import relay_rate_limited

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding window limiter keyed by client IP."""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, Deque[float]] = {}
        self.lock = threading.Lock()

    def check_limit(self, client_ip: str, now: Optional[float] = None) -> Optional[int]:
        """Record a request for ``client_ip``.

        Returns:
            None when the request is allowed, otherwise the number of seconds
            until the oldest request in the window expires.
        """
        now = time.monotonic() if now is None else now
        cutoff = now - self.window_seconds

        with self.lock:
            hits = self.requests.setdefault(client_ip, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                return max(1, int(hits[0] + self.window_seconds - now + 0.999))

            hits.append(now)
            return None

    def prune(self, now: Optional[float] = None):
        """Drop clients with no requests left in the window."""
        now = time.monotonic() if now is None else now
        cutoff = now - self.window_seconds
        with self.lock:
            stale = [ip for ip, hits in self.requests.items() if not hits or hits[-1] <= cutoff]
            for ip in stale:
                del self.requests[ip]

    def reset(self):
        with self.lock:
            self.requests.clear()


rate_limiter = RateLimiter(cfg.RATE_LIMIT_MAX_REQUESTS, cfg.RATE_LIMIT_WINDOW_S)

_PRUNE_EVERY = 500
_calls = 0


async def enforce_rate_limit(request: Request):
    """Route dependency raising RateLimited when the client is over its budget."""
    global _calls

    if not cfg.RATE_LIMIT_ENABLED:
        return

    if cfg.RATE_LIMIT_EXEMPT_SUBTITLES:
        target = request.query_params.get("url")
        if target and kind_from_url(target) == MediaKind.SUBTITLE_TEXT:
            return

    client_ip = get_client_ip(request)
    retry_after = rate_limiter.check_limit(client_ip)

    _calls += 1
    if _calls % _PRUNE_EVERY == 0:
        rate_limiter.prune()

    if retry_after is not None:
        relay_rate_limited.inc()
        logger.warning(f"Rate limit exceeded for client {client_ip}, retry after {retry_after}s")
        raise RateLimited(retry_after)
