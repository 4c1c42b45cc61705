"""Pure ASGI middleware for the pagelab API.

Provides request logging, error handling, admin API-key checks, analytics
rate limiting, and a request body size cap.
"""

import asyncio
import collections
import hmac
import json
import logging
import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from pagelab.config import get_settings

from .errors import ErrorCode, error_response

logger = logging.getLogger(__name__)

ADMIN_PREFIX = "/api/admin/"
ANALYTICS_PREFIX = "/api/analytics/"


def _get_access_logger() -> logging.Logger:
    """Return a logger that writes one JSON object per line."""
    log = logging.getLogger("pagelab.access")
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(handler)
        log.setLevel(logging.INFO)
        log.propagate = False
    return log


_access_logger = _get_access_logger()


async def _send_json(send: Send, status: int, body: dict, extra_headers: list | None = None) -> None:
    payload = json.dumps(body).encode()
    headers = [
        (b"content-type", b"application/json"),
        (b"content-length", str(len(payload)).encode()),
    ]
    await send({"type": "http.response.start", "status": status, "headers": headers + (extra_headers or [])})
    await send({"type": "http.response.body", "body": payload})


class RequestLoggingMiddleware:
    """Injects X-Request-ID, emits a JSON access log line per request,
    and adds X-Response-Time-Ms.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())[:8]
        start_time = time.monotonic()
        status_code: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                duration_ms = (time.monotonic() - start_time) * 1000
                message["headers"] = list(message.get("headers", [])) + [
                    (b"x-request-id", request_id.encode()),
                    (b"x-response-time-ms", f"{duration_ms:.1f}".encode()),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            _access_logger.info(
                json.dumps(
                    {
                        "severity": "INFO",
                        "request_id": request_id,
                        "method": scope.get("method", "?"),
                        "path": scope.get("path", "/"),
                        "status": status_code,
                        "duration_ms": round(duration_ms, 1),
                    }
                )
            )


class ErrorHandlingMiddleware:
    """Turn unhandled exceptions into a structured 500 without a stack trace."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except asyncio.CancelledError:
            logger.info("Client disconnected: %s %s", scope.get("method", "?"), scope.get("path", "/"))
        except Exception:
            logger.exception("Unhandled exception on %s %s", scope.get("method", "?"), scope.get("path", "/"))
            if not response_started:
                await _send_json(
                    send, 500, error_response(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred."),
                )


class ApiKeyMiddleware:
    """Require ``X-API-Key`` on ``/api/admin/*`` when ``API_KEY`` is configured.

    The key is read per request so rotating the environment value (and
    clearing the settings cache) takes effect without a restart.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope.get("path", "").startswith(ADMIN_PREFIX):
            await self.app(scope, receive, send)
            return

        expected = get_settings().API_KEY.get_secret_value()
        if not expected:
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        provided = headers.get(b"x-api-key", b"").decode()
        if provided and hmac.compare_digest(provided, expected):
            await self.app(scope, receive, send)
            return

        logger.warning("Rejected admin request without valid API key: %s", scope.get("path"))
        await _send_json(send, 401, error_response(ErrorCode.UNAUTHORIZED, "Invalid or missing API key."))


class RateLimitMiddleware:
    """Sliding-window limiter per client IP on ``/api/analytics/*``.

    Returns 429 with ``Retry-After`` when the limit is exceeded.
    """

    # Tracked clients above which every idle bucket is swept, not just the caller's.
    _SWEEP_THRESHOLD = 1_000

    def __init__(self, app: ASGIApp) -> None:
        self.app = app
        self.max_requests = get_settings().RATE_LIMIT_ANALYTICS
        self.window_seconds = 60.0
        # {ip: deque of request timestamps}
        self._requests: dict[str, collections.deque] = {}

    def _is_allowed(self, client_ip: str) -> bool:
        now = time.monotonic()
        window_start = now - self.window_seconds
        if len(self._requests) >= self._SWEEP_THRESHOLD:
            for ip in list(self._requests):
                self._evict_expired(ip, window_start)
        else:
            self._evict_expired(client_ip, window_start)

        bucket = self._requests.get(client_ip)
        if bucket is None:
            bucket = self._requests[client_ip] = collections.deque()

        if len(bucket) >= self.max_requests:
            return False

        bucket.append(now)
        return True

    def _evict_expired(self, client_ip: str, window_start: float) -> None:
        bucket = self._requests.get(client_ip)
        if bucket is None:
            return
        while bucket and bucket[0] < window_start:
            bucket.popleft()
        # Clean up empty buckets to prevent unbounded dict growth
        if not bucket:
            del self._requests[client_ip]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope.get("path", "").startswith(ANALYTICS_PREFIX):
            await self.app(scope, receive, send)
            return

        client = scope.get("client")
        client_ip = client[0] if client else "unknown"
        if self._is_allowed(client_ip):
            await self.app(scope, receive, send)
            return

        await _send_json(
            send, 429, error_response(ErrorCode.RATE_LIMITED, "Too many requests."),
            extra_headers=[(b"retry-after", b"60")],
        )


class RequestBodyLimitMiddleware:
    """Reject requests whose declared Content-Length exceeds ``MAX_REQUEST_BODY_SIZE``."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app
        self.max_size = get_settings().MAX_REQUEST_BODY_SIZE

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        content_length = headers.get(b"content-length")
        if content_length is not None:
            try:
                size = int(content_length)
            except ValueError:
                size = 0
            if size > self.max_size:
                await _send_json(
                    send, 413, error_response(ErrorCode.PAYLOAD_TOO_LARGE, "Request body too large."),
                )
                return

        await self.app(scope, receive, send)
