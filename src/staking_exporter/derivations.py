"""Derivations turning raw state queries into staking metric values.

Every ``derive_*`` function takes the state source and the metric's previous
published value. A failure in any query it depends on is logged and answered
with the previous value; nothing is raised to the caller.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable, Mapping, TypeVar

from substrateinterface.utils.ss58 import ss58_decode

from .logging import build_log_extra, get_logger
from .models import DerivedValue, EraExposure, PoolLabels
from .source import StateSourceProtocol

LOGGER = get_logger(__name__)

T = TypeVar("T")

STAKE_PERCENTAGE_SCALE = 1_000_000

PoolCounts = dict[tuple[str, str, str], int]
ValidatorStatuses = dict[tuple[str, str, str], int]

VALIDATOR_ACTIVE = "active"
VALIDATOR_WAITING = "waiting"


def count_waiting_validators(active: Iterable[str], next_elected: Iterable[str]) -> int:
    return len(set(next_elected) - set(active))


def count_unique_nominators(exposures: Iterable[EraExposure]) -> int:
    nominators: set[str] = set()

    for exposure in exposures:
        nominators.update(exposure.nominators)

    return len(nominators)


def compute_staked_percentage(total_stake: int, total_issuance: int) -> Decimal:
    """Return ``total_stake / total_issuance * 100`` using fixed-point division.

    The ratio is computed as an integer quotient scaled by
    ``STAKE_PERCENTAGE_SCALE`` so large balances never pass through float
    division; precision is bounded to six decimal places of the ratio.
    """
    if total_stake == 0 or total_issuance == 0:
        return Decimal(0)

    scaled_ratio = total_stake * STAKE_PERCENTAGE_SCALE // total_issuance

    return Decimal(scaled_ratio) / STAKE_PERCENTAGE_SCALE * 100


def account_key(address: str) -> str:
    """Return the public key behind an SS58 address.

    The same account encodes differently under each network prefix, so
    addresses are compared by key. Identifiers that are not SS58 are returned
    unchanged.
    """
    try:
        return ss58_decode(address).removeprefix("0x").lower()
    except ValueError:
        return address


def count_watched_missing(watch_list: Iterable[str], missing: Iterable[str]) -> int:
    missing_keys = {account_key(address) for address in missing}
    return len({account_key(address) for address in watch_list} & missing_keys)


def classify_validators(chain: str, active: Iterable[str], next_elected: Iterable[str]) -> ValidatorStatuses:
    """Label every active validator ``active`` and every next-elected one outside the set ``waiting``."""

    active = list(active)
    statuses: ValidatorStatuses = {(chain, address, VALIDATOR_ACTIVE): 1 for address in active}
    statuses.update(
        {(chain, address, VALIDATOR_WAITING): 1 for address in set(next_elected) - set(active)}
    )

    return statuses


def _derive(
    source: StateSourceProtocol,
    metric: str,
    previous: T | None,
    compute: Callable[[], T],
) -> DerivedValue[T]:
    try:
        return DerivedValue(compute())
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning(
            "Failed to derive %s for %s; keeping previous value %s.",
            metric,
            source.chain.name,
            previous,
            exc_info=exc,
            extra=build_log_extra(
                chain=source.chain,
                metric=metric,
                additional=getattr(exc, "context", None),
            ),
        )

        return DerivedValue(previous, stale=True, error=exc)


def derive_active_validator_count(
    source: StateSourceProtocol,
    previous: int | None,
) -> DerivedValue[int]:
    return _derive(
        source,
        "active_validators",
        previous,
        lambda: len(source.get_active_validators()),
    )


def derive_waiting_validator_count(
    source: StateSourceProtocol,
    previous: int | None,
) -> DerivedValue[int]:
    return _derive(
        source,
        "waiting_validators",
        previous,
        lambda: count_waiting_validators(source.get_active_validators(), source.get_next_elected()),
    )


def derive_validator_statuses(
    source: StateSourceProtocol,
    previous: Mapping[tuple[str, str, str], int] | None,
) -> DerivedValue[ValidatorStatuses]:
    """One series per validator, keyed ``(chain, validator_address, status)``."""

    return _derive(
        source,
        "validator_status",
        dict(previous) if previous is not None else None,
        lambda: classify_validators(
            source.chain.name,
            source.get_active_validators(),
            source.get_next_elected(),
        ),
    )


def derive_active_nominator_count(
    source: StateSourceProtocol,
    previous: int | None,
) -> DerivedValue[int]:
    def _compute() -> int:
        active_era = source.get_active_era_index()
        return count_unique_nominators(source.get_era_exposures(active_era))

    return _derive(source, "active_nominators", previous, _compute)


def derive_total_staked_percentage(
    source: StateSourceProtocol,
    previous: Decimal | None,
) -> DerivedValue[Decimal]:
    """Stake of the last completed era over the current total issuance.

    The active era's stake is not final until the era closes, so era
    ``active - 1`` is used. Era 0 has no completed predecessor and counts as
    missing era data.
    """

    def _compute() -> Decimal:
        active_era = source.get_active_era_index()

        if active_era < 1:
            raise LookupError(f"No completed era before active era {active_era}.")

        total_stake = source.get_era_total_stake(active_era - 1)
        total_issuance = source.get_total_issuance()

        return compute_staked_percentage(total_stake, total_issuance)

    return _derive(source, "total_staked_percentage", previous, _compute)


def derive_missed_prevote_count(
    source: StateSourceProtocol,
    watch_list: Iterable[str],
    previous: int | None,
) -> DerivedValue[int]:
    def _compute() -> int:
        round_state = source.get_consensus_round_state()
        return count_watched_missing(watch_list, round_state.missing_prevotes)

    return _derive(source, "missed_prevotes", previous, _compute)


def derive_pool_nominator_counts(
    source: StateSourceProtocol,
    previous: Mapping[tuple[str, str, str], int] | None,
) -> DerivedValue[PoolCounts]:
    def _compute() -> PoolCounts:
        chain_name = source.chain.name

        return {
            PoolLabels.for_pool(chain_name, pool).as_tuple(): pool.member_count
            for pool in source.get_nomination_pools()
        }

    return _derive(
        source,
        "pool_nominators",
        dict(previous) if previous is not None else None,
        _compute,
    )


__all__ = [
    "STAKE_PERCENTAGE_SCALE",
    "VALIDATOR_ACTIVE",
    "VALIDATOR_WAITING",
    "ValidatorStatuses",
    "account_key",
    "classify_validators",
    "compute_staked_percentage",
    "count_unique_nominators",
    "count_waiting_validators",
    "count_watched_missing",
    "derive_active_nominator_count",
    "derive_active_validator_count",
    "derive_missed_prevote_count",
    "derive_pool_nominator_counts",
    "derive_total_staked_percentage",
    "derive_validator_statuses",
    "derive_waiting_validator_count",
]
