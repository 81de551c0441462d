"""
MODULE OVERVIEW:
HTTP middleware: request timing and per-IP rate limiting.
Middleware runs on *every* HTTP request, wrapping our endpoints. WebSocket
traffic is not affected; BaseHTTPMiddleware only sees HTTP scopes.

WHAT IS HAPPENING HERE:
`TimingMiddleware` adds an `X-Process-Time-Ms` header so the dashboard can tell
server overhead apart from network latency.
`RateLimitMiddleware` applies a moving-window limit per client IP using the
`limits` library (the engine behind Flask-Limiter) and answers 429 once the
window is full.
"""

import time
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger


class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"

        if request.url.path != "/health":
            logger.debug(f"{request.method} {request.url.path} completed in {process_time_ms:.2f}ms")

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, window_s: float, max_requests: int, storage: Storage | None = None):
        super().__init__(app)
        self.limit = RateLimitItemPerSecond(max_requests, max(1, int(window_s)))
        # MemoryStorage expires idle keys on its own, so per-IP state does not pile up.
        self.limiter = MovingWindowRateLimiter(storage or MemoryStorage())

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"
        if not self.limiter.hit(self.limit, "http", client_ip):
            logger.warning(f"client_ip={client_ip} event=rate_limited path={request.url.path}")
            return JSONResponse(
                status_code=429,
                content={"error": {"code": "RATE_LIMITED", "message": "Too many requests"}},
            )
        return await call_next(request)
