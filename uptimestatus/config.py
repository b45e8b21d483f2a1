"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


DEFAULT_API_URL = "https://api.uptimerobot.com/v2/getMonitors"

# Window sizes the dashboard and the public API accept.
VALID_DAYS = (7, 30, 60, 90)
DEFAULT_DAYS = 30

DEFAULT_RATE_LIMIT = 60  # requests per minute per client
DEFAULT_CACHE_TIME = 300  # seconds


def normalize_days(value: object) -> int:
    """Clamp a requested day count to one of VALID_DAYS.

    Unrecognized values (including non-numeric strings) silently become
    DEFAULT_DAYS instead of being rejected.
    """
    try:
        days = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return DEFAULT_DAYS
    return days if days in VALID_DAYS else DEFAULT_DAYS


def split_list(raw: str | None) -> list[str]:
    """Split a comma separated value, dropping blanks."""
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class UpstreamConfig:
    """Configuration for the uptime provider API."""

    api_url: str = DEFAULT_API_URL
    api_keys: list[str] = field(default_factory=list)  # one fetch cycle per key
    timeout: int = 15  # seconds
    response_times_limit: int = 12

    def __post_init__(self) -> None:
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigError(f"Upstream api_url must start with http:// or https://, got '{self.api_url}'")
        if not isinstance(self.api_keys, list):
            raise ConfigError("Upstream api_keys must be a list")
        if self.timeout < 1:
            raise ConfigError(f"Upstream timeout must be at least 1 second (got {self.timeout})")
        if self.response_times_limit < 0:
            raise ConfigError(f"response_times_limit must be non-negative (got {self.response_times_limit})")


@dataclass(frozen=True)
class AggregationConfig:
    """Configuration for turning provider logs into daily buckets."""

    days: int = DEFAULT_DAYS
    timezone: str = "UTC"  # reference timezone for calendar-day boundaries
    partial_results: bool = False  # False: one failing key fails the whole batch
    stale_seconds: int = 120  # per-key results younger than this are reused

    def __post_init__(self) -> None:
        if self.days not in VALID_DAYS:
            raise ConfigError(f"Aggregation days must be one of {VALID_DAYS} (got {self.days})")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown timezone '{self.timezone}'")
        if self.stale_seconds < 0:
            raise ConfigError(f"stale_seconds must be non-negative (got {self.stale_seconds})")

    @property
    def tzinfo(self) -> ZoneInfo:
        """Return the reference timezone object."""
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class GatewayConfig:
    """Configuration for the public JSON API gateway."""

    enabled: bool = True
    host: str = ""
    port: int = 8787
    upstream_api_key: str = ""  # empty: every monitor request fails until set
    allowed_api_keys: list[str] = field(default_factory=list)
    require_api_key: bool = False
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    rate_limit: int = DEFAULT_RATE_LIMIT
    cache_time: int = DEFAULT_CACHE_TIME

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Gateway port must be between 1 and 65535, got {self.port}")
        if self.rate_limit < 1:
            raise ConfigError(f"Gateway rate_limit must be at least 1 request per minute, got {self.rate_limit}")
        if self.cache_time < 0:
            raise ConfigError(f"Gateway cache_time must be non-negative, got {self.cache_time}")
        if not isinstance(self.allowed_origins, list):
            raise ConfigError("Gateway allowed_origins must be a list")
        if not isinstance(self.allowed_api_keys, list):
            raise ConfigError("Gateway allowed_api_keys must be a list")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)


def _as_list(value: object, name: str) -> list[str]:
    """Accept either a YAML list or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return split_list(value)
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    raise ConfigError(f"'{name}' must be a list or a comma separated string")


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _section(data: dict, name: str) -> dict:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return section


def _parse_upstream_config(data: dict) -> UpstreamConfig:
    """Parse upstream configuration section."""
    return UpstreamConfig(
        api_url=str(data.get("api_url", DEFAULT_API_URL)),
        api_keys=_as_list(data.get("api_keys"), "upstream.api_keys"),
        timeout=int(data.get("timeout", 15)),
        response_times_limit=int(data.get("response_times_limit", 12)),
    )


def _parse_aggregation_config(data: dict) -> AggregationConfig:
    """Parse aggregation configuration section."""
    return AggregationConfig(
        days=normalize_days(data.get("days", DEFAULT_DAYS)),
        timezone=str(data.get("timezone", "UTC")),
        partial_results=_as_bool(data.get("partial_results", False)),
        stale_seconds=int(data.get("stale_seconds", 120)),
    )


def _parse_gateway_config(data: dict) -> GatewayConfig:
    """Parse gateway configuration section."""
    origins = _as_list(data.get("allowed_origins"), "gateway.allowed_origins") or ["*"]

    return GatewayConfig(
        enabled=_as_bool(data.get("enabled", True)),
        host=str(data.get("host", "")),
        port=int(data.get("port", 8787)),
        upstream_api_key=str(data.get("upstream_api_key") or ""),
        allowed_api_keys=_as_list(data.get("allowed_api_keys"), "gateway.allowed_api_keys"),
        require_api_key=_as_bool(data.get("require_api_key", False)),
        allowed_origins=origins,
        rate_limit=int(data.get("rate_limit", DEFAULT_RATE_LIMIT)),
        cache_time=int(data.get("cache_time", DEFAULT_CACHE_TIME)),
    )


def _int_or_default(raw: str, default: int) -> int:
    """Parse an integer environment value, falling back on garbage."""
    try:
        return int(raw)
    except ValueError:
        return default


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - UPTIMEROBOT_API_KEY: Override gateway.upstream_api_key
    - ALLOWED_API_KEYS: Override gateway.allowed_api_keys (comma separated)
    - REQUIRE_API_KEY: Override gateway.require_api_key (true/false)
    - ALLOWED_ORIGINS: Override gateway.allowed_origins (comma separated)
    - RATE_LIMIT: Override gateway.rate_limit (non-numeric values use the default)
    - CACHE_TIME: Override gateway.cache_time (non-numeric values use the default)
    - UPTIMESTATUS_PORT: Override gateway.port
    - UPTIME_API_KEYS: Override upstream.api_keys (comma separated)
    - UPTIMESTATUS_API_URL: Override upstream.api_url
    - UPTIMESTATUS_TIMEZONE: Override aggregation.timezone
    - UPTIMESTATUS_DAYS: Override aggregation.days
    """
    for name in ("upstream", "aggregation", "gateway"):
        config_data[name] = _section(config_data, name)

    gateway = config_data["gateway"]
    upstream = config_data["upstream"]
    aggregation = config_data["aggregation"]

    upstream_key = os.environ.get("UPTIMEROBOT_API_KEY")
    if upstream_key is not None:
        gateway["upstream_api_key"] = upstream_key.strip()

    allowed_keys = os.environ.get("ALLOWED_API_KEYS")
    if allowed_keys is not None:
        gateway["allowed_api_keys"] = split_list(allowed_keys)

    require_key = os.environ.get("REQUIRE_API_KEY")
    if require_key is not None:
        gateway["require_api_key"] = require_key.lower() in ("true", "1", "yes")

    origins = os.environ.get("ALLOWED_ORIGINS")
    if origins is not None:
        gateway["allowed_origins"] = split_list(origins) or ["*"]

    rate_limit = os.environ.get("RATE_LIMIT")
    if rate_limit is not None:
        gateway["rate_limit"] = _int_or_default(rate_limit, DEFAULT_RATE_LIMIT)

    cache_time = os.environ.get("CACHE_TIME")
    if cache_time is not None:
        gateway["cache_time"] = _int_or_default(cache_time, DEFAULT_CACHE_TIME)

    port = os.environ.get("UPTIMESTATUS_PORT")
    if port is not None:
        try:
            gateway["port"] = int(port)
        except ValueError:
            raise ConfigError(f"UPTIMESTATUS_PORT must be an integer, got '{port}'")

    api_keys = os.environ.get("UPTIME_API_KEYS")
    if api_keys is not None:
        upstream["api_keys"] = split_list(api_keys)

    api_url = os.environ.get("UPTIMESTATUS_API_URL")
    if api_url:
        upstream["api_url"] = api_url

    timezone = os.environ.get("UPTIMESTATUS_TIMEZONE")
    if timezone:
        aggregation["timezone"] = timezone

    days = os.environ.get("UPTIMESTATUS_DAYS")
    if days is not None:
        aggregation["days"] = days

    return config_data


def load_config(config_path: str | None = None) -> Config:
    """Load and validate configuration from an optional YAML file and the environment.

    Args:
        config_path: Path to the YAML configuration file, or None to build
            the configuration from environment variables and defaults only.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    data: dict = {}

    if config_path is not None:
        path = Path(config_path)

        if not path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}")

        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError("Configuration must be a YAML dictionary")
            data = loaded

    data = _apply_env_overrides(data)

    try:
        return Config(
            upstream=_parse_upstream_config(_section(data, "upstream")),
            aggregation=_parse_aggregation_config(_section(data, "aggregation")),
            gateway=_parse_gateway_config(_section(data, "gateway")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
