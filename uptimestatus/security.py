"""Access control for the public gateway: CORS, rate limiting and API keys."""

import logging
import threading
import time
from collections.abc import Callable, Mapping

from .config import GatewayConfig

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60

ORIGIN_REJECTED_MESSAGE = "不允许的源"
RATE_LIMITED_MESSAGE = "请求过于频繁，请稍后再试"
MISSING_KEY_MESSAGE = "缺少 API 密钥，请在请求头中添加 X-API-Key"
INVALID_KEY_MESSAGE = "无效的 API 密钥"
NO_KEYS_CONFIGURED_MESSAGE = "服务器未配置允许的 API 密钥，请联系管理员"


class GatewayError(Exception):
    """Base class for request rejections; carries the HTTP status."""

    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class OriginError(GatewayError):
    """Raised when the request origin is not allowed."""

    status = 403


class RateLimitError(GatewayError):
    """Raised when a client exceeds its per-minute request budget."""

    status = 429


class AuthError(GatewayError):
    """Raised when an API key is required and missing or not accepted."""

    status = 401


class RateLimiter:
    """Fixed window rate limiter by client identifier.

    Counts requests per (client, calendar minute). Counters for minutes
    older than the previous one are purged on each check. Thread-safe for
    use in multi-threaded HTTP server.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._counts: dict[tuple[str, int], int] = {}
        self._lock = threading.Lock()

    def is_allowed(self, client_id: str) -> bool:
        """Check if a request from the given client is allowed.

        Args:
            client_id: The client's IP address or other identifier.

        Returns:
            True if the request is allowed, False if rate limited.
        """
        window = int(self._clock() // self._window_seconds)
        key = (client_id, window)

        with self._lock:
            count = self._counts.get(key, 0)
            if count >= self._max_requests:
                return False

            self._counts[key] = count + 1

            stale = [k for k in self._counts if k[1] < window - 1]
            for k in stale:
                del self._counts[k]

            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)


def cors_headers(origin: str | None, allowed_origins: list[str]) -> dict[str, str] | None:
    """Return CORS response headers, or None if the origin is not allowed."""
    if "*" in allowed_origins:
        allow_origin = "*"
    elif origin and origin in allowed_origins:
        allow_origin = origin
    else:
        return None

    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, X-API-Key",
        "Access-Control-Max-Age": "86400",
    }


def check_origin(origin: str | None, config: GatewayConfig) -> dict[str, str]:
    """Return CORS headers for an allowed origin.

    Raises:
        OriginError: If the origin is not in the allow-list.
    """
    headers = cors_headers(origin, config.allowed_origins)
    if headers is None:
        logger.warning("Rejected request from origin %r", origin)
        raise OriginError(ORIGIN_REJECTED_MESSAGE)
    return headers


def check_rate_limit(limiter: RateLimiter, client_id: str) -> None:
    """Raises RateLimitError once a client exceeds its budget."""
    if not limiter.is_allowed(client_id):
        logger.warning("Rate limit exceeded for %s", client_id)
        raise RateLimitError(RATE_LIMITED_MESSAGE)


def check_api_key(api_key: str | None, config: GatewayConfig) -> None:
    """Validate a request-supplied API key when enforcement is enabled.

    Raises:
        AuthError: With a message telling apart a missing key, a server
            with no keys configured, and a key that is not accepted.
    """
    if not config.require_api_key:
        return

    if not api_key:
        raise AuthError(MISSING_KEY_MESSAGE)

    if not config.allowed_api_keys:
        logger.error("API key required but no allowed keys are configured")
        raise AuthError(NO_KEYS_CONFIGURED_MESSAGE)

    if api_key not in config.allowed_api_keys:
        logger.warning("Rejected invalid API key")
        raise AuthError(INVALID_KEY_MESSAGE)


def get_client_ip(headers: Mapping[str, str], remote_addr: str | None = None) -> str:
    """Resolve the client address behind Cloudflare or another proxy.

    Header names are expected lower-cased.
    """
    cf_ip = headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    return remote_addr or "unknown"
