"""FastAPI dependencies: service lookup, bearer authentication, and rate limiting."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from fastapi import Header, Request, Response

from ..config import Settings
from ..domain.account import AccountProfile
from ..domain.contracts import ClientInfo
from ..domain.errors import TooManyRequestsError, UnauthorizedError
from ..domain.service import SessionManager
from ..security.rate_limiter import FixedWindowRateLimiter, RateLimitDecision
from ..security.redis_rate_limiter import RedisFixedWindowRateLimiter

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def hit(self, key: str) -> RateLimitDecision: ...


def build_rate_limiter(
    settings: Settings, *, max_requests: int, window_seconds: int, key_prefix: str
) -> FixedWindowRateLimiter | RedisFixedWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter %s configured for redis backend", key_prefix)
            return RedisFixedWindowRateLimiter(
                client,
                max_requests=max_requests,
                window_seconds=window_seconds,
                key_prefix=f"rate:{key_prefix}",
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter %s using in-memory backend", key_prefix)
    return FixedWindowRateLimiter(max_requests=max_requests, window_seconds=window_seconds)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def client_info(request: Request) -> ClientInfo:
    """Capture diagnostic client metadata stored alongside a new session."""
    return ClientInfo(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def get_app_settings(request: Request) -> Settings:
    """Resolve the `Settings` the application was built with."""
    settings: Settings = request.app.state.settings
    return settings


def get_session_manager(request: Request) -> SessionManager:
    """Resolve the `SessionManager` stored on the FastAPI application state."""
    manager: SessionManager = request.app.state.session_manager
    return manager


def get_current_account(
    request: Request,
    authorization: str | None = Header(default=None),
) -> AccountProfile:
    """Authenticate the ``Authorization: Bearer`` access token on the request."""
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Access token is required")
    token = authorization[len("Bearer "):].strip()
    return get_session_manager(request).authenticate(token)


def rate_limited(
    limiter_name: str,
    message: str,
    key_func: Callable[[Request], str] = client_ip,
) -> Callable[[Request, Response], None]:
    """Build a dependency that counts the request against ``app.state.<limiter_name>``."""

    def dependency(request: Request, response: Response) -> None:
        limiter: RateLimiter = getattr(request.app.state, limiter_name)
        decision = limiter.hit(key_func(request))
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": datetime.fromtimestamp(decision.reset_at, tz=timezone.utc).isoformat(),
        }
        if not decision.allowed:
            logger.warning("rate limit exceeded limiter=%s path=%s", limiter_name, request.url.path)
            raise TooManyRequestsError(message, retry_after=decision.retry_after, headers=headers)
        response.headers.update(headers)

    return dependency


auth_rate_limit = rate_limited(
    "auth_rate_limiter",
    "Too many authentication attempts, please try again in 15 minutes",
)
api_rate_limit = rate_limited(
    "api_rate_limiter",
    "Too many requests, please try again later",
)
