"""Change-gated publishing of derived values into the metric gauges."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Mapping

from prometheus_client import Gauge

from .config import ChainConfig
from .logging import build_log_extra, get_logger
from .metrics import StakingMetrics, safe_remove_metric

LOGGER = get_logger(__name__)

SeriesLabels = tuple[str, str, str]


class StakingMetric(str, Enum):
    """Scalar staking metrics; values match ``StakingMetricState`` attributes."""

    ACTIVE_VALIDATORS = "active_validators"
    WAITING_VALIDATORS = "waiting_validators"
    ACTIVE_NOMINATORS = "active_nominators"
    TOTAL_STAKED_PERCENTAGE = "total_staked_percentage"
    MISSED_PREVOTES = "missed_prevotes"


@dataclass(slots=True)
class StakingMetricState:
    """Last published value of every metric for one chain.

    ``None`` means nothing has been published yet.
    """

    active_validators: int | None = None
    waiting_validators: int | None = None
    active_nominators: int | None = None
    total_staked_percentage: Decimal | None = None
    missed_prevotes: int | None = None
    pool_nominators: dict[SeriesLabels, int] | None = None
    validator_statuses: dict[SeriesLabels, int] | None = None

    def get(self, metric: StakingMetric) -> int | Decimal | None:
        return getattr(self, metric.value)

    def set(self, metric: StakingMetric, value: int | Decimal) -> None:
        setattr(self, metric.value, value)


@dataclass(slots=True)
class ChangeGatedPublisher:
    """Writes a gauge only when the derived value differs from the last one.

    The publisher is the only writer of ``state``; an undefined previous
    value always counts as a change, and an undefined new value is never
    written.
    """

    chain: ChainConfig
    gauges: StakingMetrics
    state: StakingMetricState = field(default_factory=StakingMetricState)

    def _gauge(self, metric: StakingMetric) -> Gauge:
        return getattr(self.gauges, metric.value)

    def publish(self, metric: StakingMetric, value: int | Decimal | None) -> bool:
        if value is None:
            LOGGER.debug(
                "No value available for %s on %s; skipping publish.",
                metric.value,
                self.chain.name,
                extra=build_log_extra(chain=self.chain, metric=metric.value),
            )
            return False

        previous = self.state.get(metric)

        if previous is not None and previous == value:
            return False

        self._gauge(metric).labels(self.chain.name).set(float(value))
        self.state.set(metric, value)

        LOGGER.debug(
            "Published %s=%s for %s (previous %s).",
            metric.value,
            value,
            self.chain.name,
            previous,
            extra=build_log_extra(chain=self.chain, metric=metric.value),
        )

        return True

    def _publish_series(
        self,
        gauge: Gauge,
        previous: Mapping[SeriesLabels, int] | None,
        values: Mapping[SeriesLabels, int],
    ) -> int:
        """Write changed series, drop series absent from ``values``; returns the write count."""

        previous = previous or {}
        writes = 0

        for labels in previous.keys() - values.keys():
            safe_remove_metric(gauge, labels)

        for labels, value in values.items():
            if previous.get(labels) == value:
                continue

            gauge.labels(*labels).set(float(value))
            writes += 1

        return writes

    def publish_pools(self, values: Mapping[SeriesLabels, int] | None) -> int:
        """Publish per-pool member counts; returns the number of gauge writes."""

        if values is None:
            return 0

        writes = self._publish_series(self.gauges.pool_nominators, self.state.pool_nominators, values)
        self.state.pool_nominators = dict(values)

        return writes

    def publish_validator_statuses(self, values: Mapping[SeriesLabels, int] | None) -> int:
        if values is None:
            return 0

        writes = self._publish_series(self.gauges.validator_status, self.state.validator_statuses, values)
        self.state.validator_statuses = dict(values)

        return writes


__all__ = [
    "ChangeGatedPublisher",
    "StakingMetric",
    "StakingMetricState",
]
