"""Typed records produced at the state source boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class EraExposure:
    """Nominators backing one validator in a given era (the ``others`` list)."""

    validator: str
    nominators: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RoundState:
    """Best GRANDPA round as reported by ``grandpa_roundState``."""

    round: int
    set_id: int
    missing_prevotes: tuple[str, ...] = ()
    missing_precommits: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class NominationPool:
    pool_id: int
    name: str
    member_count: int


@dataclass(frozen=True, slots=True)
class DerivedValue(Generic[T]):
    """Result of one derivation: a fresh value, or the previous value when stale."""

    value: T | None
    stale: bool = False
    error: Exception | None = None


@dataclass(slots=True)
class PoolLabels:
    """Label values for a nomination pool series."""

    chain: str
    pool_id: str
    pool_name: str

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.chain, self.pool_id, self.pool_name)

    @classmethod
    def for_pool(cls, chain: str, pool: NominationPool) -> PoolLabels:
        return cls(chain=chain, pool_id=str(pool.pool_id), pool_name=pool.name)


@dataclass(slots=True)
class CycleReport:
    """Outcome of one aggregation cycle for a chain."""

    chain: str
    skipped: bool = False
    fresh: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    published: int = 0

    @property
    def healthy(self) -> bool:
        return not self.skipped and not self.stale

    @property
    def all_stale(self) -> bool:
        return not self.skipped and not self.fresh and bool(self.stale)


__all__ = [
    "CycleReport",
    "DerivedValue",
    "EraExposure",
    "NominationPool",
    "PoolLabels",
    "RoundState",
]
