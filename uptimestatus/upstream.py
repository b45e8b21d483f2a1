"""Client for the uptime provider's getMonitors endpoint."""

import logging
from collections.abc import Sequence
from typing import Any

import requests

from .config import DEFAULT_API_URL, ConfigError
from .models import DateRange
from .ranges import encode_ranges

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15  # seconds
DEFAULT_RESPONSE_TIMES_LIMIT = 12

MISSING_KEY_MESSAGE = "UptimeRobot API Key 未配置，请在环境变量中设置 UPTIMEROBOT_API_KEY"
DEFAULT_ERROR_MESSAGE = "API 请求失败"


class UpstreamError(Exception):
    """Raised when the provider cannot be reached or reports a failure.

    The message is the provider's own text where one was given.
    """

    pass


def mask_key(api_key: str) -> str:
    """Mask a credential for logging."""
    if len(api_key) <= 8:
        return "***"
    return api_key[:6] + "***"


def build_request_payload(
    api_key: str,
    ranges: Sequence[DateRange],
    response_times_limit: int = DEFAULT_RESPONSE_TIMES_LIMIT,
) -> dict[str, str]:
    """Build the form body for one fetch cycle.

    Args:
        api_key: Provider credential.
        ranges: Daily ranges followed by the combined range (see plan_ranges).
        response_times_limit: Number of response time samples per monitor.
    """
    window = ranges[-1]
    return {
        "api_key": api_key,
        "format": "json",
        "logs": "1",
        "log_types": "1-2",
        "logs_start_date": str(window.start),
        "logs_end_date": str(window.end),
        "custom_uptime_ranges": encode_ranges(ranges),
        "response_times": "1",
        "response_times_limit": str(response_times_limit),
    }


def fetch_monitors(
    api_key: str,
    ranges: Sequence[DateRange],
    *,
    api_url: str = DEFAULT_API_URL,
    timeout: float = DEFAULT_TIMEOUT,
    response_times_limit: int = DEFAULT_RESPONSE_TIMES_LIMIT,
) -> list[dict[str, Any]]:
    """Fetch raw monitor records for one credential.

    Returns:
        The provider's monitor list.

    Raises:
        ConfigError: If no credential was supplied.
        UpstreamError: On network failure, timeout, a malformed body or a
            non-"ok" stat.
    """
    if not api_key:
        raise ConfigError(MISSING_KEY_MESSAGE)

    payload = build_request_payload(api_key, ranges, response_times_limit)

    try:
        # requests form-encodes dict bodies
        response = requests.post(api_url, data=payload, timeout=timeout)
    except requests.Timeout:
        logger.warning("Upstream request timed out after %ss for key %s", timeout, mask_key(api_key))
        raise UpstreamError(f"Upstream request timed out after {timeout}s")
    except requests.RequestException as e:
        logger.warning("Upstream request failed for key %s: %s", mask_key(api_key), e)
        raise UpstreamError(f"Upstream request failed: {e}")

    try:
        data = response.json()
    except ValueError:
        logger.warning("Upstream returned non-JSON body (HTTP %d)", response.status_code)
        raise UpstreamError(f"Upstream returned an invalid response (HTTP {response.status_code})")

    if not isinstance(data, dict) or data.get("stat") != "ok":
        error = data.get("error") if isinstance(data, dict) else None
        message = error.get("message") if isinstance(error, dict) else None
        logger.warning("Upstream reported failure for key %s: %s", mask_key(api_key), message)
        raise UpstreamError(message or DEFAULT_ERROR_MESSAGE)

    monitors = data.get("monitors") or []
    logger.debug("Fetched %d monitors for key %s", len(monitors), mask_key(api_key))
    return monitors
