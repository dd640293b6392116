"""Prometheus metric registry and helpers for staking exporter state."""

from __future__ import annotations

import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Dict, Iterable, Protocol, runtime_checkable

from prometheus_client import CollectorRegistry, Gauge

from .config import ChainConfig

CHAIN_LABELS = ("chain",)
NOMINATOR_POOL_LABELS = ("chain", "nominator_pool_id", "nominator_pool_name")
VALIDATOR_STATUS_LABELS = ("chain", "validator_address", "status")


@dataclass(slots=True)
class ExporterMetrics:
    up: Gauge
    configured_chains: Gauge


@dataclass(slots=True)
class StakingMetrics:
    active_validators: Gauge
    waiting_validators: Gauge
    active_nominators: Gauge
    total_staked_percentage: Gauge
    missed_prevotes: Gauge
    pool_nominators: Gauge
    validator_status: Gauge


@dataclass(slots=True)
class PollMetrics:
    poll_success: Gauge
    poll_timestamp: Gauge


@runtime_checkable
class MetricsStoreProtocol(Protocol):
    registry: CollectorRegistry
    exporter: ExporterMetrics
    staking: StakingMetrics
    poll: PollMetrics


@dataclass(slots=True)
class MetricsBundle(MetricsStoreProtocol):
    registry: CollectorRegistry
    exporter: ExporterMetrics
    staking: StakingMetrics
    poll: PollMetrics


def create_metrics(registry: CollectorRegistry | None = None) -> MetricsBundle:
    """Build every gauge in a fresh registry (or the one supplied)."""

    registry = registry or CollectorRegistry()

    def gauge(name: str, documentation: str, labels: tuple[str, ...] = ()) -> Gauge:
        return Gauge(name, documentation, labelnames=labels, registry=registry)

    return MetricsBundle(
        registry=registry,
        exporter=ExporterMetrics(
            up=gauge("staking_exporter_up", "1 while the exporter is serving, 0 once it shuts down."),
            configured_chains=gauge("staking_exporter_configured_chains", "Number of enabled chains in the configuration."),
        ),
        staking=StakingMetrics(
            active_validators=gauge(
                "staking_active_validator_count",
                "Validators in the current session validator set.",
                CHAIN_LABELS,
            ),
            waiting_validators=gauge(
                "staking_waiting_validator_count",
                "Validators queued for the next session that are not currently active.",
                CHAIN_LABELS,
            ),
            active_nominators=gauge(
                "staking_active_nominator_count",
                "Distinct nominators backing at least one validator in the active era.",
                CHAIN_LABELS,
            ),
            total_staked_percentage=gauge(
                "staking_total_staked_percentage",
                "Stake of the previous era as a percentage of total issuance.",
                CHAIN_LABELS,
            ),
            missed_prevotes=gauge(
                "staking_watchlist_missed_prevote_count",
                "Watch-list validators that have not prevoted in the current GRANDPA round.",
                CHAIN_LABELS,
            ),
            pool_nominators=gauge(
                "staking_pool_nominator_count",
                "Members of a nomination pool.",
                NOMINATOR_POOL_LABELS,
            ),
            validator_status=gauge(
                "staking_validator_status",
                "1 for each validator, labelled active or waiting.",
                VALIDATOR_STATUS_LABELS,
            ),
        ),
        poll=PollMetrics(
            poll_success=gauge(
                "staking_poll_success",
                "1 when the latest cycle derived every value fresh, 0 otherwise.",
                CHAIN_LABELS,
            ),
            poll_timestamp=gauge(
                "staking_poll_timestamp_seconds",
                "Unix time of the latest cycle that derived every value fresh.",
                CHAIN_LABELS,
            ),
        ),
    )


CONFIGURED_CHAINS: set[str] = set()

# Per chain: whether the latest cycle was fully fresh, and when that last happened.
CHAIN_HEALTH_STATUS: dict[str, bool] = {}
CHAIN_LAST_SUCCESS: Dict[str, float] = {}

_METRICS: MetricsStoreProtocol = create_metrics()


def get_metrics() -> MetricsStoreProtocol:
    return _METRICS


def set_metrics(bundle: MetricsStoreProtocol) -> None:
    global _METRICS
    _METRICS = bundle


def reset_metrics_state(registry: CollectorRegistry | None = None) -> MetricsStoreProtocol:
    """Install a fresh bundle and forget every chain's health history."""

    for state in (CONFIGURED_CHAINS, CHAIN_HEALTH_STATUS, CHAIN_LAST_SUCCESS):
        state.clear()

    bundle = create_metrics(registry)
    set_metrics(bundle)

    return bundle


def set_configured_chains(chains: Iterable[ChainConfig]) -> None:
    CONFIGURED_CHAINS.clear()
    CONFIGURED_CHAINS.update(chain.name for chain in chains)

    get_metrics().exporter.configured_chains.set(len(CONFIGURED_CHAINS))


def safe_remove_metric(gauge: Gauge, labels: tuple[str, ...]) -> None:
    """Drop one labelled series; unknown label sets are ignored."""

    with suppress(KeyError):
        gauge.remove(*labels)


def record_poll_success(
    chain: ChainConfig,
    *,
    timestamp: float | None = None,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    poll = (metrics or get_metrics()).poll
    finished_at = time.time() if timestamp is None else timestamp

    poll.poll_success.labels(chain.name).set(1)
    poll.poll_timestamp.labels(chain.name).set(finished_at)

    CHAIN_HEALTH_STATUS[chain.name] = True
    CHAIN_LAST_SUCCESS[chain.name] = finished_at


def record_poll_failure(
    chain: ChainConfig,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    """Mark a skipped or partly stale cycle; staking gauges keep their last values."""

    (metrics or get_metrics()).poll.poll_success.labels(chain.name).set(0)
    CHAIN_HEALTH_STATUS[chain.name] = False



__all__ = [
    "CHAIN_HEALTH_STATUS",
    "CHAIN_LABELS",
    "CHAIN_LAST_SUCCESS",
    "CONFIGURED_CHAINS",
    "ExporterMetrics",
    "MetricsBundle",
    "MetricsStoreProtocol",
    "NOMINATOR_POOL_LABELS",
    "VALIDATOR_STATUS_LABELS",
    "PollMetrics",
    "StakingMetrics",
    "create_metrics",
    "get_metrics",
    "record_poll_failure",
    "record_poll_success",
    "reset_metrics_state",
    "safe_remove_metric",
    "set_configured_chains",
    "set_metrics",
]
