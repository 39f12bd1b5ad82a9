import math
import time
from collections import defaultdict, deque
from typing import Deque

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or "unknown"
    xrip = request.headers.get("x-real-ip")
    if xrip:
        return xrip.strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding window per client IP and path on the public wizard. Reads are free; only
    writes (step saves, uploads, finalize) count against the limit.
    """

    def __init__(
        self,
        app,
        *,
        limit: int,
        window_seconds: int,
        path_prefixes: tuple[str, ...] = ("/apply",),
        methods: frozenset[str] = WRITE_METHODS,
    ) -> None:
        super().__init__(app)
        self.limit = max(int(limit), 1)
        self.window_seconds = max(int(window_seconds), 1)
        self.path_prefixes = path_prefixes
        self.methods = methods
        self._hits: dict[str, Deque[float]] = defaultdict(deque)

    def _retry_after(self, hits: Deque[float], now: float) -> int:
        return max(1, math.ceil(hits[0] + self.window_seconds - now))

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if request.method not in self.methods or not path.startswith(self.path_prefixes):
            return await call_next(request)

        now = time.time()
        key = f"{_client_ip(request)}:{path}"
        hits = self._hits[key]
        cutoff = now - self.window_seconds
        while hits and hits[0] < cutoff:
            hits.popleft()
        if len(hits) >= self.limit:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "rate_limited", "detail": "Too many requests. Please retry shortly."},
                headers={"Retry-After": str(self._retry_after(hits, now))},
            )
        hits.append(now)
        return await call_next(request)
