from __future__ import annotations

from typing import Any, Callable

import pytest

from staking_exporter.config import ChainConfig
from staking_exporter.context import reset_application_context
from staking_exporter.metrics import reset_metrics_state
from staking_exporter.models import EraExposure, NominationPool, RoundState
from staking_exporter.poller.manager import reset_poller_manager
from staking_exporter.runtime_settings import reset_runtime_settings_cache


@pytest.fixture(autouse=True)
def reset_exporter_state() -> None:
    reset_metrics_state()
    reset_application_context()
    reset_runtime_settings_cache()
    reset_poller_manager()
    yield
    reset_metrics_state()
    reset_application_context()
    reset_runtime_settings_cache()
    reset_poller_manager()


class FakeStateSource:
    """In-memory state source; set an attribute to an exception to make that query fail."""

    def __init__(self, chain: ChainConfig, **overrides: Any) -> None:
        self._chain = chain
        self.active_validators: Any = ["A", "B", "C"]
        self.next_elected: Any = ["A", "B", "C", "D"]
        self.active_era: Any = 10
        self.exposures: Any = [
            EraExposure("A", ("n1", "n2")),
            EraExposure("B", ("n2", "n3")),
            EraExposure("C", ()),
        ]
        self.era_total_stake: Any = 250
        self.total_issuance: Any = 1000
        self.round_state: Any = RoundState(round=7, set_id=1, missing_prevotes=("A", "X"))
        self.pools: Any = [NominationPool(pool_id=1, name="Pool One", member_count=4)]
        self.calls: list[str] = []
        self.closed = False

        for key, value in overrides.items():
            setattr(self, key, value)

    @property
    def chain(self) -> ChainConfig:
        return self._chain

    def _answer(self, name: str, value: Any) -> Any:
        self.calls.append(name)

        if isinstance(value, Exception):
            raise value

        return value

    def get_active_validators(self) -> list[str]:
        return self._answer("active_validators", self.active_validators)

    def get_next_elected(self) -> list[str]:
        return self._answer("next_elected", self.next_elected)

    def get_active_era_index(self) -> int:
        return self._answer("active_era", self.active_era)

    def get_era_exposures(self, era: int) -> list[EraExposure]:
        return self._answer(f"exposures:{era}", self.exposures)

    def get_era_total_stake(self, era: int) -> int:
        return self._answer(f"era_total_stake:{era}", self.era_total_stake)

    def get_total_issuance(self) -> int:
        return self._answer("total_issuance", self.total_issuance)

    def get_consensus_round_state(self) -> RoundState:
        return self._answer("round_state", self.round_state)

    def get_nomination_pools(self) -> list[NominationPool]:
        return self._answer("pools", self.pools)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def chain() -> ChainConfig:
    return ChainConfig(
        name="creditcoin",
        ws_url="ws://127.0.0.1:9944",
        poll_interval="30s",
        watch_list=("A", "B"),
    )


@pytest.fixture
def make_source(chain: ChainConfig) -> Callable[..., FakeStateSource]:
    def _make(**overrides: Any) -> FakeStateSource:
        return FakeStateSource(chain, **overrides)

    return _make
