"""Authentication guards for the HTTP surface.

Two callers share this module:

- The operator API (``/api/*``) is guarded by ``maybe_require_api_key``
  when OPMS_SYNC_API_KEY is set. Every operator has the same privileges.
- The NetSuite webhook verifies its own bearer secret in the route, but
  counts failures against the same per-IP limiter, so a client probing
  either surface is blocked on both.
"""

from __future__ import annotations

import hmac
import logging
import os
import threading
import time
from collections.abc import Callable

from fastapi import Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

API_KEY_ENV = "OPMS_SYNC_API_KEY"
API_KEY_HEADER = "X-API-Key"

# /health and the OpenAPI docs stay reachable without a key
_PUBLIC_PATH_PREFIXES = ("/health", "/docs", "/redoc", "/openapi.json")


class AuthFailureLimiter:
    """Sliding-window count of failed authentications per client IP.

    Clients whose newest failure has left the window are dropped whenever a
    failure is recorded, so addresses that never return do not accumulate.

    Attributes:
        max_failures: Failures tolerated inside the window.
        window_seconds: Length of the sliding window.
    """

    def __init__(
        self,
        max_failures: int = 10,
        window_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self._clock = clock
        self._failures: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._failures)

    def _prune(self, now: float) -> None:
        expired = [
            ip for ip, times in self._failures.items() if now - times[-1] >= self.window_seconds
        ]
        for ip in expired:
            del self._failures[ip]

    def is_blocked(self, client_ip: str) -> bool:
        with self._lock:
            now = self._clock()
            recent = [
                t for t in self._failures.get(client_ip, []) if now - t < self.window_seconds
            ]
            if recent:
                self._failures[client_ip] = recent
            else:
                self._failures.pop(client_ip, None)
            return len(recent) >= self.max_failures

    def record(self, client_ip: str) -> None:
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._failures.setdefault(client_ip, []).append(now)

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()


auth_failures = AuthFailureLimiter()


def reset_rate_limiter() -> None:
    """Forget all recorded failures. Used by tests."""
    auth_failures.reset()


def get_client_ip(request: Request) -> str:
    """Client address, honoring X-Forwarded-For only behind a trusted proxy.

    Set OPMS_SYNC_TRUST_PROXY=true when a load balancer terminates the
    connection.
    """
    if os.environ.get("OPMS_SYNC_TRUST_PROXY", "").strip().lower() in ("1", "true"):
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def too_many_failures_response(client_ip: str, error_key: str = "detail") -> JSONResponse:
    logger.warning("Auth rate limit exceeded for IP %s", client_ip)
    return JSONResponse(
        status_code=429,
        content={error_key: "Too many authentication failures. Try again later."},
    )


def _requires_api_key(path: str) -> bool:
    return path.startswith("/api/") and not path.startswith(_PUBLIC_PATH_PREFIXES)


async def maybe_require_api_key(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the operator API key.

    Passes everything through when no key is configured, for CORS
    preflights and for paths outside ``/api/``.
    """
    expected_key = os.environ.get(API_KEY_ENV, "").strip()
    if (
        not expected_key
        or request.method.upper() == "OPTIONS"
        or not _requires_api_key(request.url.path)
    ):
        return await call_next(request)

    client_ip = get_client_ip(request)
    if auth_failures.is_blocked(client_ip):
        return too_many_failures_response(client_ip)

    provided_key = request.headers.get(API_KEY_HEADER, "")
    if not provided_key or not hmac.compare_digest(provided_key, expected_key):
        auth_failures.record(client_ip)
        return JSONResponse(
            status_code=401,
            content={"detail": "Invalid or missing API key"},
        )
    return await call_next(request)
