from __future__ import annotations

import logging
import math
import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .errors import ClientBlocked, PayloadTooLarge, RateLimitExceeded, RequestValidationFailed, SquaresError

logger = logging.getLogger(__name__)


class CounterStore:
    """Where rate limiters keep their per-client counters."""

    def increment(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        """Count one hit for ``key``; returns (hits in window, window start)."""
        raise NotImplementedError

    def cleanup(self, now: float) -> None:
        pass


class InMemoryCounterStore(CounterStore):
    """
    Process-local counters; fine for a single worker.

    Expired windows are swept from inside ``increment`` at most once every
    ``sweep_interval`` seconds, so clients that stop calling do not stay
    in memory.
    """

    def __init__(self, sweep_interval: float = 60.0) -> None:
        # key -> (count, window_start_time, window_seconds)
        self.requests: Dict[str, Tuple[int, float, float]] = {}
        self.sweep_interval = sweep_interval
        self._last_sweep: Optional[float] = None
        self._lock = Lock()

    def increment(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        with self._lock:
            if self._last_sweep is None:
                self._last_sweep = now
            elif now - self._last_sweep >= self.sweep_interval:
                self._drop_expired(now)
                self._last_sweep = now

            count, start_time, _ = self.requests.get(key, (0, now, window_seconds))
            if now - start_time >= window_seconds:
                count, start_time = 0, now
            self.requests[key] = (count + 1, start_time, window_seconds)
            return count + 1, start_time

    def _drop_expired(self, now: float) -> None:
        expired = [k for k, (_, start, window) in self.requests.items() if now - start >= window]
        for k in expired:
            del self.requests[k]

    def cleanup(self, now: float) -> None:
        """Drop expired windows to keep memory bounded."""
        with self._lock:
            self._drop_expired(now)


class BlockList:
    """Where temporarily blocked client identifiers are kept."""

    def block(self, identifier: str, now: float, duration: float) -> None:
        raise NotImplementedError

    def blocked_until(self, identifier: str, now: float) -> Optional[float]:
        """End of the active block for ``identifier``, or None."""
        raise NotImplementedError


class InMemoryBlockList(BlockList):
    def __init__(self) -> None:
        # identifier -> block expiry time
        self.blocked: Dict[str, float] = {}
        self._lock = Lock()

    def block(self, identifier: str, now: float, duration: float) -> None:
        with self._lock:
            self.blocked = {k: until for k, until in self.blocked.items() if until > now}
            self.blocked[identifier] = now + duration

    def blocked_until(self, identifier: str, now: float) -> Optional[float]:
        with self._lock:
            until = self.blocked.get(identifier)
            if until is not None and until <= now:
                del self.blocked[identifier]
                return None
            return until


class RateLimiter:
    """
    Fixed window rate limiter.

    Allows ``limit`` requests per identifier (client IP) within each window
    of ``window_seconds``.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        counters: Optional[CounterStore] = None,
        clock: Callable[[], float] = time.time,
        name: str = "general",
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.counters = counters or InMemoryCounterStore()
        self.clock = clock
        self.name = name

    def check(self, identifier: str) -> Tuple[bool, int]:
        """Record a request; returns (allowed, seconds until the window resets)."""
        now = self.clock()
        count, start_time = self.counters.increment(f"{self.name}:{identifier}", self.window_seconds, now)
        retry_after = max(0, math.ceil(start_time + self.window_seconds - now))
        return count <= self.limit, retry_after

    def is_allowed(self, identifier: str) -> bool:
        allowed, _ = self.check(identifier)
        return allowed

    def cleanup(self) -> None:
        self.counters.cleanup(self.clock())


class FloodGuard:
    """
    Short-window flood limiter that blocks the clients it catches.

    A client going over ``limiter`` gets a 429 and is then refused with 403
    for ``block_seconds``, whatever it requests.
    """

    def __init__(self, limiter: RateLimiter, block_seconds: float = 3600, blocklist: Optional[BlockList] = None):
        self.limiter = limiter
        self.block_seconds = block_seconds
        self.blocklist = blocklist or InMemoryBlockList()

    def check(self, identifier: str) -> None:
        """
        Raises:
            ClientBlocked: While ``identifier`` is blocked
            RateLimitExceeded: When this request trips the flood limit
        """
        now = self.limiter.clock()
        until = self.blocklist.blocked_until(identifier, now)
        if until is not None:
            logger.warning(f"Blocked client attempted access: ip={identifier}")
            raise ClientBlocked(retry_after=max(1, math.ceil(until - now)))

        allowed, retry_after = self.limiter.check(identifier)
        if not allowed:
            logger.error(f"Flood protection triggered: ip={identifier}; blocking for {self.block_seconds}s")
            self.blocklist.block(identifier, now, self.block_seconds)
            raise RateLimitExceeded(
                "Too many requests detected, please slow down.",
                retry_after=retry_after,
                limit=self.limiter.limit,
            )


def client_identifier(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(limiter: Optional[RateLimiter], request: Request, message: str) -> None:
    """Raise ``RateLimitExceeded`` when ``request`` is over ``limiter``'s budget."""
    if limiter is None:
        return
    identifier = client_identifier(request)
    allowed, retry_after = limiter.check(identifier)
    if not allowed:
        logger.warning(
            f"Rate limit '{limiter.name}' exceeded: ip={identifier} "
            f"endpoint={request.url.path} method={request.method}"
        )
        raise RateLimitExceeded(message, retry_after=retry_after, limit=limiter.limit)


def error_response(error: SquaresError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_response(), headers=error.headers() or None)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Flood guard and service-wide limit, applied before any route runs."""

    def __init__(self, app, limiter_name: str = "general"):
        super().__init__(app)
        self.limiter_name = limiter_name

    async def dispatch(self, request: Request, call_next):
        state = request.app.state
        flood_guard: Optional[FloodGuard] = getattr(state, "flood_guard", None)
        limiters = getattr(state, "rate_limiters", {})
        try:
            if flood_guard is not None:
                flood_guard.check(client_identifier(request))
            enforce_rate_limit(
                limiters.get(self.limiter_name),
                request,
                "Too many requests from this IP, please try again later.",
            )
        except (ClientBlocked, RateLimitExceeded) as exc:
            return error_response(exc)
        return await call_next(request)


class RequestGuardMiddleware(BaseHTTPMiddleware):
    """
    Reject oversized bodies (413) and non-JSON bodies on POST/PUT (400).

    Requests without a body, such as starting a contest, pass through
    regardless of their content type.
    """

    def __init__(self, app, max_request_bytes: int):
        super().__init__(app)
        self.max_request_bytes = max_request_bytes

    async def dispatch(self, request: Request, call_next):
        try:
            content_length = int(request.headers.get("content-length") or 0)
        except ValueError:
            content_length = 0

        if content_length > self.max_request_bytes:
            logger.warning(f"Request too large: {content_length} bytes from {client_identifier(request)}")
            error = PayloadTooLarge(self.max_request_bytes)
            return error_response(error)

        if request.method in ("POST", "PUT") and content_length > 0:
            content_type = request.headers.get("content-type", "")
            if "application/json" not in content_type:
                logger.warning(f"Invalid Content-Type '{content_type}' for {request.method} {request.url.path}")
                error = RequestValidationFailed("Content-Type must be application/json")
                return error_response(error)

        return await call_next(request)


def build_security_headers(
    hsts_enabled: bool = True,
    hsts_max_age: int = 31536000,
    referrer_policy: str = "strict-origin-when-cross-origin",
) -> Dict[str, str]:
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": referrer_policy,
        "Content-Security-Policy": "default-src 'self'; object-src 'none'; frame-ancestors 'none'",
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    }
    if hsts_enabled:
        headers["Strict-Transport-Security"] = f"max-age={hsts_max_age}; includeSubDomains"
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, headers: Dict[str, str]):
        super().__init__(app)
        self.headers = headers

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for key, value in self.headers.items():
            response.headers[key] = value
        return response
