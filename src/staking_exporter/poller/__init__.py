"""Polling package for staking metrics."""

from .collect import collect_staking_metrics_sync
from .control import collect_chain_metrics, connect_state_source, poll_chain
from .intervals import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_INTERVAL_SECONDS,
    MAX_FAILURE_BACKOFF_SECONDS,
)
from .manager import PollerManager, get_poller_manager, reset_poller_manager

__all__ = [
    "collect_chain_metrics",
    "collect_staking_metrics_sync",
    "connect_state_source",
    "poll_chain",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "MAX_FAILURE_BACKOFF_SECONDS",
    "PollerManager",
    "get_poller_manager",
    "reset_poller_manager",
]
