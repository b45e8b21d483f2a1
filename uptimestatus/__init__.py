"""uptimestatus - Daily availability timelines and a public API for uptime provider data."""

import argparse
import json
import logging
import signal
import sys
from threading import Event
from typing import Optional, TextIO

__version__ = "1.0.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False, stream: TextIO = sys.stdout) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=stream,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _cmd_serve(args: argparse.Namespace) -> None:
    """Execute the serve command - start the public gateway."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("uptimestatus %s starting...", __version__)

    # Import here to avoid circular imports and allow logging setup first
    from .config import load_config, ConfigError
    from .gateway import GatewayServer, ApiError

    # 1. Load configuration
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    gateway = config.gateway
    if not gateway.enabled:
        logger.error("Gateway is disabled in configuration")
        sys.exit(1)
    if not gateway.upstream_api_key:
        logger.warning("UPTIMEROBOT_API_KEY is not set; monitor requests will fail until it is")
    if gateway.require_api_key and not gateway.allowed_api_keys:
        logger.warning("REQUIRE_API_KEY is enabled but ALLOWED_API_KEYS is empty; every key will be rejected")
    logger.info(
        "Rate limit %d/min, cache %ds, API key %s",
        gateway.rate_limit,
        gateway.cache_time,
        "required" if gateway.require_api_key else "not required",
    )

    # 2. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 3. Start server
    server = GatewayServer(config)
    try:
        server.start()
    except ApiError as e:
        logger.error("Failed to start gateway: %s", e)
        sys.exit(1)

    try:
        logger.info("Gateway started, waiting for shutdown signal...")
        _shutdown_event.wait()
    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        server.stop()
        logger.info("Shutdown complete")


def _cmd_fetch(args: argparse.Namespace) -> None:
    """Execute the fetch command - merge every configured key once and print it."""
    # stdout carries the report
    _setup_logging(args.verbose, stream=sys.stderr)

    from .config import load_config, normalize_days, ConfigError
    from .merger import MonitorStore, collect_incidents, filter_monitors
    from .report import render_report
    from .upstream import UpstreamError

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    days = normalize_days(args.days) if args.days is not None else config.aggregation.days
    store = MonitorStore(config)

    try:
        result = store.refresh(days)
    except (ConfigError, UpstreamError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    monitors = filter_monitors(result.monitors, search=args.search, status=args.status, sort_by=args.sort)
    incidents = collect_incidents(result.monitors)

    if args.json:
        document = {
            "days": days,
            "monitors": [m.to_dict(include_logs=True) for m in monitors],
            "stats": result.stats.to_dict(),
            "incidents": [incident.to_dict() for incident in incidents],
            "errors": result.errors,
            "lastUpdated": store.last_updated,
        }
        print(json.dumps(document, indent=2, ensure_ascii=False))
    else:
        print(render_report(result, monitors, incidents, config.aggregation.tzinfo))

    if result.errors:
        sys.exit(1)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to YAML configuration file (default: environment only)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the uptimestatus package."""
    parser = argparse.ArgumentParser(
        description="uptimestatus - daily availability timelines from uptime provider data"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"uptimestatus {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Serve subcommand (default behavior)
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the public API gateway (default)",
    )
    _add_common_arguments(serve_parser)
    serve_parser.set_defaults(func=_cmd_serve)

    # Fetch subcommand
    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch and merge monitors for every configured key",
    )
    _add_common_arguments(fetch_parser)
    fetch_parser.add_argument(
        "--days",
        type=int,
        help="Window size: 7, 30, 60 or 90 days (default: from config)",
    )
    fetch_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the merged result as JSON",
    )
    fetch_parser.add_argument(
        "--status",
        choices=["all", "ok", "down", "paused", "unknown"],
        default="all",
        help="Only show monitors with this status",
    )
    fetch_parser.add_argument(
        "--search",
        default="",
        help="Only show monitors whose name or URL contains this text",
    )
    fetch_parser.add_argument(
        "--sort",
        choices=["name", "status", "uptime"],
        default="name",
        help="Sort order (default: name)",
    )
    fetch_parser.set_defaults(func=_cmd_fetch)

    args = parser.parse_args(argv)

    # Default to 'serve' if no command specified
    if args.command is None:
        args.config = None
        args.verbose = False
        args.func = _cmd_serve

    args.func(args)
