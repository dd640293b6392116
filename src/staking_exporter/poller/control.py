"""Async control loop for chain polling."""

from __future__ import annotations

import asyncio
import time

from ..config import ChainConfig
from ..context import ApplicationContext, get_application_context
from ..logging import build_log_extra, get_logger
from ..metrics import MetricsStoreProtocol, record_poll_failure
from ..models import CycleReport
from ..publisher import ChangeGatedPublisher
from ..source import StateSourceProtocol
from .collect import collect_staking_metrics_sync
from .intervals import (
    MAX_FAILURE_BACKOFF_SECONDS,
    determine_poll_interval_seconds,
)

LOGGER = get_logger(__name__)


async def poll_chain(
    chain: ChainConfig,
    *,
    context: ApplicationContext | None = None,
) -> None:
    """Run aggregation cycles for a chain until cancelled.

    Each cycle is awaited before the next sleep starts, so cycles never
    overlap. Ticks without a connected state source are skipped and back off
    exponentially up to ``MAX_FAILURE_BACKOFF_SECONDS``.
    """

    context_obj = context or get_application_context()

    interval_seconds = determine_poll_interval_seconds(chain)
    LOGGER.info(
        "Polling %s every %s seconds.",
        chain.name,
        interval_seconds,
        extra=build_log_extra(chain=chain),
    )

    publisher = ChangeGatedPublisher(chain=chain, gauges=context_obj.metrics.staking)
    source: StateSourceProtocol | None = None
    consecutive_failures = 0

    try:
        while True:
            start_time = time.monotonic()

            try:
                if source is None:
                    source = await connect_state_source(chain, context_obj)

                report = await collect_chain_metrics(
                    chain,
                    source=source,
                    publisher=publisher,
                    metrics=context_obj.metrics,
                )
            except asyncio.CancelledError:
                LOGGER.debug(
                    "Polling task for %s cancelled.",
                    chain.name,
                    extra=build_log_extra(chain=chain),
                )
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception(
                    "Unexpected error while polling chain %s.",
                    chain.name,
                    exc_info=exc,
                    extra=build_log_extra(chain=chain),
                )
                record_poll_failure(chain, metrics=context_obj.metrics)
                consecutive_failures += 1
            else:
                if report.skipped:
                    consecutive_failures += 1
                else:
                    consecutive_failures = 0

                if report.all_stale and source is not None:
                    LOGGER.warning(
                        "Every query failed for %s; reconnecting on the next cycle.",
                        chain.name,
                        extra=build_log_extra(chain=chain),
                    )
                    _close_source(chain, source)
                    source = None

            elapsed = time.monotonic() - start_time

            if consecutive_failures > 0:
                failure_backoff = min(
                    interval_seconds * (2 ** (consecutive_failures - 1)),
                    MAX_FAILURE_BACKOFF_SECONDS,
                )
                sleep_duration = max(failure_backoff - elapsed, 0)

                LOGGER.debug(
                    "Backing off %.2f seconds before next poll for %s after %s consecutive failure(s).",
                    sleep_duration,
                    chain.name,
                    consecutive_failures,
                    extra=build_log_extra(
                        chain=chain,
                        elapsed=sleep_duration,
                        additional={"consecutive_failures": consecutive_failures},
                    ),
                )
            else:
                sleep_duration = max(interval_seconds - elapsed, 0)

            if sleep_duration > 0:
                await asyncio.sleep(sleep_duration)
    finally:
        if source is not None:
            _close_source(chain, source)


async def connect_state_source(
    chain: ChainConfig,
    context: ApplicationContext,
) -> StateSourceProtocol | None:
    """Open a state source in a worker thread; returns None when the node is unreachable."""

    try:
        source = await asyncio.to_thread(context.create_state_source, chain)
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning(
            "Unable to connect to %s (%s): %s",
            chain.name,
            chain.ws_url,
            exc,
            extra=build_log_extra(chain=chain),
        )
        return None

    LOGGER.info(
        "Connected to %s.",
        chain.name,
        extra=build_log_extra(chain=chain),
    )

    return source


async def collect_chain_metrics(
    chain: ChainConfig,
    *,
    source: StateSourceProtocol | None,
    publisher: ChangeGatedPublisher,
    metrics: MetricsStoreProtocol | None = None,
) -> CycleReport:
    """Execute one aggregation cycle inside a worker thread."""

    return await asyncio.to_thread(
        collect_staking_metrics_sync,
        chain,
        source,
        publisher,
        metrics,
    )


def _close_source(chain: ChainConfig, source: StateSourceProtocol) -> None:
    try:
        source.close()
    except Exception as exc:  # noqa: BLE001
        LOGGER.debug(
            "Error while closing state source for %s.",
            chain.name,
            exc_info=exc,
            extra=build_log_extra(chain=chain),
        )


__all__ = ["collect_chain_metrics", "connect_state_source", "poll_chain"]
