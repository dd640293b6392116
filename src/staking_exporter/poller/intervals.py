"""Poll interval parsing and node client construction."""

from __future__ import annotations

import re

from substrateinterface import SubstrateInterface

from ..config import ChainConfig
from ..logging import build_log_extra, get_logger
from ..settings import get_settings

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

DURATION_PATTERN = re.compile(r"^\s*(?P<amount>\d+)\s*(?P<unit>[smh]?)\s*$", re.IGNORECASE)
UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}

DEFAULT_POLL_INTERVAL = SETTINGS.poller.default_interval
DEFAULT_RPC_TIMEOUT_SECONDS = SETTINGS.poller.rpc_request_timeout_seconds
DEFAULT_RPC_MAX_ATTEMPTS = SETTINGS.poller.rpc_max_attempts
MAX_FAILURE_BACKOFF_SECONDS = SETTINGS.poller.max_failure_backoff_seconds


def parse_duration_to_seconds(value: str) -> int | None:
    """``"30s"``, ``"5m"``, ``"1h"`` or a bare ``"30"``; ``None`` when unparseable."""

    match = DURATION_PATTERN.match(value)

    if match is None:
        return None

    return int(match["amount"]) * UNIT_SECONDS[match["unit"].lower()]


DEFAULT_POLL_INTERVAL_SECONDS = parse_duration_to_seconds(DEFAULT_POLL_INTERVAL or "") or 30


def determine_poll_interval_seconds(chain: ChainConfig) -> int:
    raw_value = chain.poll_interval or DEFAULT_POLL_INTERVAL
    seconds = parse_duration_to_seconds(raw_value)

    if seconds and seconds > 0:
        return seconds

    LOGGER.warning(
        "Invalid poll_interval '%s' for %s. Falling back to %s seconds.",
        raw_value,
        chain.name,
        DEFAULT_POLL_INTERVAL_SECONDS,
        extra=build_log_extra(chain=chain),
    )

    return DEFAULT_POLL_INTERVAL_SECONDS


def determine_rpc_timeout_seconds() -> float:
    return DEFAULT_RPC_TIMEOUT_SECONDS


def create_substrate_interface(chain: ChainConfig) -> SubstrateInterface:
    """Open a websocket client whose socket timeout bounds every query."""

    return SubstrateInterface(
        url=chain.ws_url,
        ws_options={"timeout": determine_rpc_timeout_seconds()},
    )


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "DEFAULT_RPC_MAX_ATTEMPTS",
    "DEFAULT_RPC_TIMEOUT_SECONDS",
    "MAX_FAILURE_BACKOFF_SECONDS",
    "create_substrate_interface",
    "determine_poll_interval_seconds",
    "determine_rpc_timeout_seconds",
    "parse_duration_to_seconds",
]
