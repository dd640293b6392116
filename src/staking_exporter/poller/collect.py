"""Synchronous aggregation cycle invoked by the poller."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..config import ChainConfig
from ..derivations import (
    derive_active_nominator_count,
    derive_active_validator_count,
    derive_missed_prevote_count,
    derive_pool_nominator_counts,
    derive_total_staked_percentage,
    derive_validator_statuses,
    derive_waiting_validator_count,
)
from ..logging import build_log_extra, get_logger, log_duration
from ..metrics import (
    MetricsStoreProtocol,
    get_metrics,
    record_poll_failure,
    record_poll_success,
)
from ..models import CycleReport, DerivedValue
from ..publisher import ChangeGatedPublisher, StakingMetric
from ..source import StateSourceProtocol

LOGGER = get_logger(__name__)

POOL_NOMINATORS = "pool_nominators"
VALIDATOR_STATUS = "validator_status"


def collect_staking_metrics_sync(
    chain: ChainConfig,
    source: StateSourceProtocol | None,
    publisher: ChangeGatedPublisher,
    metrics: MetricsStoreProtocol | None = None,
) -> CycleReport:
    """Run one aggregation cycle for a chain.

    Each derivation runs in turn and is routed through the publisher. A
    failing derivation falls back to its previous value and never stops the
    remaining ones; this function does not raise.
    """

    metrics_bundle = metrics or get_metrics()
    report = CycleReport(chain=chain.name)

    if source is None:
        LOGGER.warning(
            "State source for %s is not connected; skipping cycle.",
            chain.name,
            extra=build_log_extra(chain=chain),
        )

        report.skipped = True
        record_poll_failure(chain, metrics=metrics_bundle)

        return report

    state = publisher.state

    steps: tuple[tuple[StakingMetric, Callable[[], DerivedValue]], ...] = (
        (
            StakingMetric.ACTIVE_VALIDATORS,
            lambda: derive_active_validator_count(source, state.active_validators),
        ),
        (
            StakingMetric.WAITING_VALIDATORS,
            lambda: derive_waiting_validator_count(source, state.waiting_validators),
        ),
        (
            StakingMetric.ACTIVE_NOMINATORS,
            lambda: derive_active_nominator_count(source, state.active_nominators),
        ),
        (
            StakingMetric.TOTAL_STAKED_PERCENTAGE,
            lambda: derive_total_staked_percentage(source, state.total_staked_percentage),
        ),
        (
            StakingMetric.MISSED_PREVOTES,
            lambda: derive_missed_prevote_count(source, chain.watch_list, state.missed_prevotes),
        ),
    )

    with log_duration(
        LOGGER,
        "aggregation_cycle_completed",
        level=logging.INFO,
        extra=build_log_extra(chain=chain),
    ):
        for metric, derive in steps:
            try:
                derived = derive()
                _track(report, metric.value, derived)

                if publisher.publish(metric, derived.value):
                    report.published += 1
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception(
                    "Unexpected error while publishing %s for %s.",
                    metric.value,
                    chain.name,
                    exc_info=exc,
                    extra=build_log_extra(chain=chain, metric=metric.value),
                )
                report.stale.append(metric.value)

        series_steps: tuple[tuple[str, Callable[[], DerivedValue], Callable[[Any], int]], ...] = (
            (
                POOL_NOMINATORS,
                lambda: derive_pool_nominator_counts(source, state.pool_nominators),
                publisher.publish_pools,
            ),
            (
                VALIDATOR_STATUS,
                lambda: derive_validator_statuses(source, state.validator_statuses),
                publisher.publish_validator_statuses,
            ),
        )

        for name, derive_series, publish_series in series_steps:
            try:
                derived = derive_series()
                _track(report, name, derived)
                report.published += publish_series(derived.value)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception(
                    "Unexpected error while publishing %s for %s.",
                    name,
                    chain.name,
                    exc_info=exc,
                    extra=build_log_extra(chain=chain, metric=name),
                )
                report.stale.append(name)

    if report.healthy:
        record_poll_success(chain, metrics=metrics_bundle)
    else:
        record_poll_failure(chain, metrics=metrics_bundle)

        LOGGER.warning(
            "Cycle for %s served stale values for: %s.",
            chain.name,
            ", ".join(report.stale),
            extra=build_log_extra(
                chain=chain,
                additional={"stale_metrics": len(report.stale), "published": report.published},
            ),
        )

    return report


def _track(report: CycleReport, name: str, derived: DerivedValue) -> None:
    if derived.stale:
        report.stale.append(name)
    else:
        report.fresh.append(name)


__all__ = ["collect_staking_metrics_sync"]
