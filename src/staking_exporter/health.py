"""Health and readiness reports derived from the per-chain poll outcomes."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Tuple

from fastapi import status

from .metrics import CHAIN_HEALTH_STATUS, CHAIN_LAST_SUCCESS, CONFIGURED_CHAINS
from .settings import get_settings

SETTINGS = get_settings()
READINESS_STALE_THRESHOLD_SECONDS = SETTINGS.health.readiness_stale_threshold_seconds

ChainEntry = Dict[str, str]

_EXPONENT_SAMPLE = re.compile(r"^(?P<series>[^#\s].*) (?P<value>[-+]?\d+(?:\.\d+)?[eE][-+]?\d+)$")


def _format_timestamp(value: float) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def _overall_status(outcomes: List[bool]) -> Tuple[str, int]:
    if all(outcomes):
        return "ok", status.HTTP_200_OK

    if any(outcomes):
        return "degraded", status.HTTP_200_OK

    return "unhealthy", status.HTTP_503_SERVICE_UNAVAILABLE


def generate_health_report(include_details: bool = False) -> Tuple[str, int, List[ChainEntry]]:
    """Summarise the latest cycle of every chain.

    ``ok`` when every chain's latest cycle was fully fresh, ``degraded`` when
    only some were, ``unhealthy`` when none were. Before any cycle has
    finished the exporter reports ``initializing``; with no chains configured
    it is trivially ``ok``.

    Args:
        include_details: Add each chain's ``last_success_timestamp`` when known.

    Returns:
        ``(status, http_status_code, chain_entries)``.
    """

    if not CONFIGURED_CHAINS:
        return "ok", status.HTTP_200_OK, []

    if not CHAIN_HEALTH_STATUS:
        return "initializing", status.HTTP_503_SERVICE_UNAVAILABLE, []

    outcomes = sorted(CHAIN_HEALTH_STATUS.items())
    entries: List[ChainEntry] = []

    for chain, healthy in outcomes:
        entry = {"chain": chain, "status": "ok" if healthy else "unhealthy"}
        last_success = CHAIN_LAST_SUCCESS.get(chain)

        if include_details and last_success is not None:
            entry["last_success_timestamp"] = _format_timestamp(last_success)

        entries.append(entry)

    overall, code = _overall_status([healthy for _chain, healthy in outcomes])

    return overall, code, entries


def generate_readiness_report() -> Tuple[bool, List[ChainEntry]]:
    """Ready once at least one chain had a fully fresh cycle recently enough."""

    if not CONFIGURED_CHAINS:
        return True, []

    cutoff = time.time() - READINESS_STALE_THRESHOLD_SECONDS
    entries: List[ChainEntry] = []

    for chain, healthy in sorted(CHAIN_HEALTH_STATUS.items()):
        last_success = CHAIN_LAST_SUCCESS.get(chain)
        ready = healthy and last_success is not None and last_success >= cutoff

        entry = {"chain": chain, "status": "ready" if ready else "not_ready"}
        if last_success is not None:
            entry["last_success_timestamp"] = _format_timestamp(last_success)

        entries.append(entry)

    return any(entry["status"] == "ready" for entry in entries), entries


def _expand_exponent(line: str) -> str:
    match = _EXPONENT_SAMPLE.match(line)

    if match is None:
        return line

    try:
        value = Decimal(match["value"])
    except InvalidOperation:
        return line

    return f"{match['series']} {value:f}"


def format_metrics_payload(payload: bytes) -> bytes:
    """Render exponent-notation samples (``1.7e+09``) as plain decimals.

    Comment lines and special values such as ``NaN`` or ``+Inf`` pass through
    unchanged.
    """

    formatted = "\n".join(_expand_exponent(line) for line in payload.decode().splitlines())

    if payload.endswith(b"\n"):
        formatted += "\n"

    return formatted.encode()


__all__ = [
    "READINESS_STALE_THRESHOLD_SECONDS",
    "format_metrics_payload",
    "generate_health_report",
    "generate_readiness_report",
]
