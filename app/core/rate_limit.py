"""In-memory sliding-window rate limiting for single-instance deployments.

Limits (production only):
  /auth/*        -> 10 requests/minute per IP
  /sessions*     -> 30 requests/minute per session token
  /anonymous/*   -> 60 requests/minute per session token
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.core.auth import SESSION_TOKEN_HEADER

# (path prefix, max_requests, window_seconds)
_IP_RULES: list[tuple[str, int, int]] = [
    ("/auth/", 10, 60),
]

_TOKEN_RULES: list[tuple[str, int, int]] = [
    ("/sessions", 30, 60),
    ("/anonymous/", 60, 60),
]


class SlidingWindowCounter:
    """Per-key hit timestamps, pruned to the window on every check.

    Idle keys are swept at most once per window, so memory holds only
    recently active clients.
    """

    def __init__(self) -> None:
        self._hits: dict[str, list[float]] = {}
        self._last_sweep = time.monotonic()

    def __len__(self) -> int:
        return len(self._hits)

    def is_allowed(self, key: str, max_requests: int, window: int) -> bool:
        now = time.monotonic()
        cutoff = now - window
        if now - self._last_sweep >= window:
            self._sweep(cutoff)
            self._last_sweep = now

        hits = [t for t in self._hits.get(key, ()) if t > cutoff]
        if len(hits) >= max_requests:
            self._hits[key] = hits
            return False
        hits.append(now)
        self._hits[key] = hits
        return True

    def _sweep(self, cutoff: float) -> None:
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    def clear(self) -> None:
        self._hits.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, enabled: bool | None = None) -> None:
        super().__init__(app)
        self._enabled = enabled
        self._by_ip = SlidingWindowCounter()
        self._by_token = SlidingWindowCounter()

    def _is_enabled(self) -> bool:
        if self._enabled is not None:
            return self._enabled
        from app.config import settings
        return settings.is_production

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._is_enabled():
            return await call_next(request)

        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        for prefix, max_req, window in _IP_RULES:
            if path.startswith(prefix):
                if not self._by_ip.is_allowed(f"ip:{client_ip}:{prefix}", max_req, window):
                    return _rate_limit_response(request, window)

        # Token rules run before auth resolves, so key on the raw token.
        token = request.headers.get(SESSION_TOKEN_HEADER)
        if token:
            for prefix, max_req, window in _TOKEN_RULES:
                if path.startswith(prefix):
                    if not self._by_token.is_allowed(f"token:{token}:{prefix}", max_req, window):
                        return _rate_limit_response(request, window)

        return await call_next(request)


def _rate_limit_response(request: Request, retry_after: int) -> JSONResponse:
    message = "Rate limit exceeded. Please try again later."
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": True,
            "status_code": 429,
            "message": message,
            "detail": message,
            "request_id": getattr(request.state, "request_id", None),
        },
        headers={"Retry-After": str(retry_after)},
    )
