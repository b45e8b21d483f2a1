"""Public HTTP gateway re-exposing aggregated monitor data."""

import json
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlsplit

from . import __version__
from .config import DEFAULT_DAYS, VALID_DAYS, Config, ConfigError, normalize_days
from .merger import Fetcher, merge_results, run_cycle
from .security import (
    GatewayError,
    RateLimiter,
    check_api_key,
    check_origin,
    check_rate_limit,
    cors_headers,
    get_client_ip,
)
from .upstream import UpstreamError, fetch_monitors

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "未找到端点"
METHOD_NOT_ALLOWED_MESSAGE = "方法不允许"
FETCH_FAILED_MESSAGE = "获取数据失败"


class ApiError(Exception):
    """Raised when the gateway server fails to start."""

    pass


@dataclass
class GatewayResponse:
    """Status, headers and JSON body (None for an empty body)."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None
    indent: int | None = None

    def encode(self) -> bytes:
        if self.body is None:
            return b""
        return json.dumps(self.body, indent=self.indent, ensure_ascii=False).encode("utf-8")


@dataclass
class CacheEntry:
    """The single shared response cache slot."""

    payload: dict[str, Any]
    fetched_at: int  # epoch milliseconds


class GatewayService:
    """Request handling state shared by every gateway request.

    Owns the response cache slot and the rate limit table. Neither is
    locked across a request: two requests may both find the cache stale
    and both refresh it, and the last write wins.
    """

    def __init__(
        self,
        config: Config,
        fetcher: Fetcher = fetch_monitors,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._fetcher = fetcher
        self._clock = clock
        self._cache: CacheEntry | None = None
        self._rate_limiter = RateLimiter(config.gateway.rate_limit, clock=clock)

    @property
    def cache(self) -> CacheEntry | None:
        return self._cache

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def handle(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        remote_addr: str | None = None,
    ) -> GatewayResponse:
        """Route one request and build its response."""
        lowered = {name.lower(): value for name, value in headers.items()}
        try:
            return self._route(method.upper(), path, lowered, remote_addr)
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            return _error_response(500, "Internal server error")

    def _route(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        remote_addr: str | None,
    ) -> GatewayResponse:
        parts = urlsplit(path)
        route = parts.path or "/"
        origin = headers.get("origin")

        if method == "OPTIONS":
            return self._handle_preflight(origin)

        if route == "/health":
            if method != "GET":
                return _error_response(405, METHOD_NOT_ALLOWED_MESSAGE)
            return GatewayResponse(200, body={"status": "ok"})

        try:
            cors = check_origin(origin, self.config.gateway)
        except GatewayError as e:
            return _error_response(e.status, e.message)

        if route == "/":
            if method != "GET":
                return _error_response(405, METHOD_NOT_ALLOWED_MESSAGE, cors)
            return self._handle_docs(cors)

        if route == "/api/monitors":
            if method != "GET":
                return _error_response(405, METHOD_NOT_ALLOWED_MESSAGE, cors)
            return self._handle_monitors(parts.query, headers, remote_addr, cors)

        return _error_response(404, NOT_FOUND_MESSAGE, cors)

    def _handle_preflight(self, origin: str | None) -> GatewayResponse:
        """Handle OPTIONS on any path."""
        headers = cors_headers(origin, self.config.gateway.allowed_origins)
        if headers is None:
            logger.warning("Rejected preflight from origin %r", origin)
            return GatewayResponse(403)
        return GatewayResponse(204, headers=headers)

    def _handle_monitors(
        self,
        query: str,
        headers: dict[str, str],
        remote_addr: str | None,
        cors: dict[str, str],
    ) -> GatewayResponse:
        """Handle GET /api/monitors."""
        client_ip = get_client_ip(headers, remote_addr)
        try:
            check_rate_limit(self._rate_limiter, client_ip)
            check_api_key(headers.get("x-api-key"), self.config.gateway)
        except GatewayError as e:
            return _error_response(e.status, e.message, cors)

        params = parse_qs(query)
        days = normalize_days(params.get("days", [DEFAULT_DAYS])[0])

        try:
            payload = self._cached_or_fetch(days)
        except (UpstreamError, ConfigError) as e:
            logger.error("Monitor fetch failed: %s", e)
            body = {"success": False, "error": str(e) or FETCH_FAILED_MESSAGE, "timestamp": self._now_ms()}
            return GatewayResponse(500, headers=dict(cors), body=body)

        response_headers = dict(cors)
        response_headers["Cache-Control"] = f"public, max-age={self.config.gateway.cache_time}"
        return GatewayResponse(200, headers=response_headers, body=payload)

    def _cached_or_fetch(self, days: int) -> dict[str, Any]:
        """Serve the cache slot while it is younger than the TTL, else refresh it.

        The slot is not keyed by ``days``; a fresh entry is served as-is.
        A failed refresh leaves the existing entry untouched.
        """
        now_ms = self._now_ms()
        entry = self._cache
        if entry is not None and now_ms - entry.fetched_at < self.config.gateway.cache_time * 1000:
            logger.debug("Serving monitors from cache (age %dms)", now_ms - entry.fetched_at)
            return entry.payload

        upstream = self.config.upstream
        tz = self.config.aggregation.tzinfo
        now = datetime.fromtimestamp(now_ms / 1000, UTC)
        result = merge_results(
            [self.config.gateway.upstream_api_key],
            lambda api_key: run_cycle(api_key, days, upstream, tz, fetcher=self._fetcher, now=now),
        )

        payload = {
            "success": True,
            "data": [monitor.to_dict() for monitor in result.monitors],
            "timestamp": now_ms,
        }
        self._cache = CacheEntry(payload, now_ms)
        logger.info("Refreshed monitor cache: %d monitors, %d days", len(result.monitors), days)
        return payload

    def _handle_docs(self, cors: dict[str, str]) -> GatewayResponse:
        """Handle GET / - self-describing API documentation."""
        gateway = self.config.gateway
        docs = {
            "name": "Uptime Status Public API",
            "version": __version__,
            "description": "提供公开的监控状态数据 API",
            "endpoints": {
                "/api/monitors": {
                    "method": "GET",
                    "description": "获取所有监控项的状态数据",
                    "parameters": {
                        "days": {
                            "type": "number",
                            "description": "获取天数（" + ", ".join(str(d) for d in VALID_DAYS) + "）",
                            "default": DEFAULT_DAYS,
                        },
                    },
                    "headers": {
                        "X-API-Key": {
                            "description": "API 密钥（如果启用）",
                            "required": gateway.require_api_key,
                        },
                    },
                    "response": {
                        "success": "boolean",
                        "data": "Array<Monitor>",
                        "timestamp": "number",
                    },
                },
            },
            "monitor": {
                "id": "number",
                "name": "string",
                "url": "string",
                "status": "'ok' | 'down' | 'paused' | 'unknown'",
                "average": "number",
                "daily": "Array<{ date, uptime, down }>",
                "total": "{ times, duration }",
                "avgResponseTime": "number | undefined",
            },
            "authentication": "需要 API 密钥，请在请求头中添加 X-API-Key" if gateway.require_api_key else "无需认证",
            "rateLimit": f"每分钟 {gateway.rate_limit} 次请求",
            "cache": f"缓存时间 {gateway.cache_time} 秒",
        }
        return GatewayResponse(200, headers=dict(cors), body=docs, indent=2)


def _error_response(status: int, message: str, cors: dict[str, str] | None = None) -> GatewayResponse:
    """Uniform JSON error shape."""
    return GatewayResponse(status, headers=dict(cors or {}), body={"success": False, "error": message})


class GatewayHandler(BaseHTTPRequestHandler):
    """HTTP request handler delegating to a GatewayService."""

    # Class-level reference set by factory
    service: GatewayService | None = None

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("API %s - %s", self.address_string(), format % args)

    def _dispatch(self) -> None:
        if self.service is None:
            response = _error_response(503, "Service not available")
        else:
            response = self.service.handle(self.command, self.path, self.headers, self.client_address[0])
        self._send(response)

    def _send(self, response: GatewayResponse) -> None:
        body = response.encode()
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        if response.body is not None:
            self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if body:
            self.wfile.write(body)

    do_GET = _dispatch
    do_POST = _dispatch
    do_PUT = _dispatch
    do_PATCH = _dispatch
    do_DELETE = _dispatch
    do_OPTIONS = _dispatch


def _create_handler_class(service: GatewayService) -> type:
    """Create a handler class with the service bound."""

    class BoundGatewayHandler(GatewayHandler):
        pass

    BoundGatewayHandler.service = service
    return BoundGatewayHandler


class GatewayServer:
    """Threaded HTTP server for the public gateway."""

    def __init__(self, config: Config, service: GatewayService | None = None) -> None:
        """Initialize the gateway server.

        Args:
            config: Full configuration; the gateway section picks host and port.
            service: Request handling state, built from config if omitted.
        """
        self.config = config
        self.service = service or GatewayService(config)
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    @property
    def port(self) -> int:
        """Bound port, once started; the configured port before that."""
        if self._server is not None:
            return self._server.server_address[1]
        return self.config.gateway.port

    def start(self) -> None:
        """Start the gateway server in a background thread.

        Raises:
            ApiError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Gateway server is already running")
            return

        gateway = self.config.gateway
        try:
            handler_class = _create_handler_class(self.service)
            self._server = ThreadingHTTPServer((gateway.host, gateway.port), handler_class)
            self._server.daemon_threads = True
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="gateway-server",
                daemon=True,
            )
            self._thread.start()

            logger.info("Gateway server started on port %d", self.port)

        except OSError as e:
            self._server = None
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ApiError(
                    f"Port {gateway.port} is already in use. "
                    f"Another process may be using this port, or uptimestatus is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ApiError(
                    f"Permission denied for port {gateway.port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise ApiError(f"Failed to start gateway server on port {gateway.port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            server = self._server
            if server is None:
                break
            server.handle_request()

    def stop(self) -> None:
        """Stop the gateway server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping gateway server...")
        self._shutdown_event.set()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        if self._server:
            self._server.server_close()

        self._server = None
        self._thread = None
        logger.info("Gateway server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
