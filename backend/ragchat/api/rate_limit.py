"""
Request admission middleware.

Every request under the configured path prefix costs one token from its
caller's bucket. An empty bucket short-circuits the request with 429 before
any route (and so any archive access) runs.

Caller key: the X-User-ID header when present, otherwise the client address.
"""

import json
from typing import Optional

import structlog

from ragchat.core.rate_limiter import ANONYMOUS_KEY, RateLimiter, get_rate_limiter

logger = structlog.get_logger(__name__)

USER_ID_HEADER = b"x-user-id"
THROTTLED_BODY = json.dumps({"detail": "Too Many Requests"}).encode("utf-8")


def resolve_caller_key(scope) -> str:
    """Prefer the caller's identity header, fall back to its network origin."""
    for name, value in scope.get("headers", []):
        if name == USER_ID_HEADER:
            user_id = value.decode("latin-1").strip()
            if user_id:
                return user_id
            break

    client = scope.get("client")
    if client and client[0]:
        return client[0]
    return ANONYMOUS_KEY


class RateLimitMiddleware:
    """ASGI middleware that throttles callers with a per-key token bucket."""

    def __init__(self, app, limiter: Optional[RateLimiter] = None, path_prefix: str = "/api/"):
        self.app = app
        self._limiter = limiter
        self.path_prefix = path_prefix

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter or get_rate_limiter()

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not scope.get("path", "").startswith(self.path_prefix):
            await self.app(scope, receive, send)
            return

        key = resolve_caller_key(scope)
        if self.limiter.try_consume(key):
            await self.app(scope, receive, send)
            return

        logger.warning("Request throttled", caller_key=key, path=scope.get("path"))
        await send({
            "type": "http.response.start",
            "status": 429,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(THROTTLED_BODY)).encode("latin-1")),
            ],
        })
        await send({"type": "http.response.body", "body": THROTTLED_BODY})
