from __future__ import annotations

import asyncio
import importlib
import logging
from types import SimpleNamespace
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from staking_exporter.config import ChainConfig
from staking_exporter.metrics import create_metrics
from staking_exporter.models import CycleReport

control_module = importlib.import_module("staking_exporter.poller.control")


def _build_chain(name: str = "TestChain") -> ChainConfig:
    return ChainConfig(
        name=name,
        ws_url="ws://127.0.0.1:9944",
        poll_interval="1s",
    )


def _build_context(factory: Any = None) -> SimpleNamespace:
    return SimpleNamespace(
        metrics=create_metrics(CollectorRegistry()),
        create_state_source=factory or (lambda _chain: None),
    )


class _Source:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_poll_chain_backs_off_while_skipping(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    chain = _build_chain()
    context = _build_context()

    sleep_calls: list[float] = []
    call_count = 0

    async def _collect(chain_arg: ChainConfig, **kwargs: Any) -> CycleReport:
        nonlocal call_count

        call_count += 1

        if call_count >= 3:
            raise asyncio.CancelledError

        assert kwargs["source"] is None
        return CycleReport(chain=chain_arg.name, skipped=True)

    async def _sleep(duration: float) -> None:
        sleep_calls.append(duration)

    monkeypatch.setattr(control_module, "determine_poll_interval_seconds", lambda _chain: 1)
    monkeypatch.setattr(control_module, "collect_chain_metrics", _collect)
    monkeypatch.setattr(control_module.asyncio, "sleep", _sleep)

    caplog.set_level(logging.DEBUG)

    with pytest.raises(asyncio.CancelledError):
        await control_module.poll_chain(chain, context=context)

    assert sleep_calls == pytest.approx([1, 2], rel=0.05)

    messages = caplog.messages

    assert any("Polling TestChain every 1 seconds." in message for message in messages)
    assert not any("Unable to connect to TestChain" in message for message in messages)
    assert any("Backing off 1.00 seconds before next poll" in message for message in messages)
    assert any("Backing off 2.00 seconds before next poll" in message for message in messages)
    assert any("Polling task for TestChain cancelled." in message for message in messages)


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_poll_chain_caps_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    chain = _build_chain()
    context = _build_context()

    sleep_calls: list[float] = []
    call_count = 0

    async def _collect(chain_arg: ChainConfig, **_kwargs: Any) -> CycleReport:
        nonlocal call_count

        call_count += 1

        if call_count > 5:
            raise asyncio.CancelledError

        return CycleReport(chain=chain_arg.name, skipped=True)

    async def _sleep(duration: float) -> None:
        sleep_calls.append(duration)

    monkeypatch.setattr(control_module, "determine_poll_interval_seconds", lambda _chain: 10)
    monkeypatch.setattr(control_module, "MAX_FAILURE_BACKOFF_SECONDS", 25)
    monkeypatch.setattr(control_module, "collect_chain_metrics", _collect)
    monkeypatch.setattr(control_module.asyncio, "sleep", _sleep)

    with pytest.raises(asyncio.CancelledError):
        await control_module.poll_chain(chain, context=context)

    assert sleep_calls == pytest.approx([10, 20, 25, 25, 25], rel=0.05)


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_poll_chain_keeps_interval_on_stale_cycles(monkeypatch: pytest.MonkeyPatch) -> None:
    chain = _build_chain()
    source = _Source()
    context = _build_context(lambda _chain: source)

    sleep_calls: list[float] = []
    call_count = 0

    async def _collect(chain_arg: ChainConfig, **kwargs: Any) -> CycleReport:
        nonlocal call_count

        call_count += 1

        if call_count >= 3:
            raise asyncio.CancelledError

        assert kwargs["source"] is source
        return CycleReport(
            chain=chain_arg.name,
            fresh=["active_validators"],
            stale=["total_staked_percentage"],
        )

    async def _sleep(duration: float) -> None:
        sleep_calls.append(duration)

    monkeypatch.setattr(control_module, "determine_poll_interval_seconds", lambda _chain: 5)
    monkeypatch.setattr(control_module, "collect_chain_metrics", _collect)
    monkeypatch.setattr(control_module.asyncio, "sleep", _sleep)

    with pytest.raises(asyncio.CancelledError):
        await control_module.poll_chain(chain, context=context)

    assert sleep_calls == pytest.approx([5, 5], rel=0.05)
    assert source.closed is True


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_poll_chain_reconnects_after_all_stale_cycle(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    chain = _build_chain("StaleChain")
    created: list[_Source] = []

    def _factory(_chain: ChainConfig) -> _Source:
        source = _Source()
        created.append(source)
        return source

    context = _build_context(_factory)
    seen_sources: list[Any] = []

    async def _collect(chain_arg: ChainConfig, **kwargs: Any) -> CycleReport:
        seen_sources.append(kwargs["source"])

        if len(seen_sources) >= 2:
            raise asyncio.CancelledError

        return CycleReport(chain=chain_arg.name, stale=["active_validators", "waiting_validators"])

    async def _sleep(_duration: float) -> None:
        return None

    monkeypatch.setattr(control_module, "determine_poll_interval_seconds", lambda _chain: 1)
    monkeypatch.setattr(control_module, "collect_chain_metrics", _collect)
    monkeypatch.setattr(control_module.asyncio, "sleep", _sleep)

    caplog.set_level(logging.WARNING)

    with pytest.raises(asyncio.CancelledError):
        await control_module.poll_chain(chain, context=context)

    assert len(created) == 2
    assert seen_sources == created
    assert created[0].closed is True
    assert any("Every query failed for StaleChain; reconnecting on the next cycle." in message for message in caplog.messages)


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_poll_chain_records_failure_on_unexpected_error(monkeypatch: pytest.MonkeyPatch) -> None:
    chain = _build_chain()
    context = _build_context()

    failure_calls: list[ChainConfig] = []
    call_count = 0

    async def _collect(chain_arg: ChainConfig, **_kwargs: Any) -> CycleReport:
        nonlocal call_count

        call_count += 1

        if call_count >= 2:
            raise asyncio.CancelledError

        raise RuntimeError("boom")

    async def _sleep(_duration: float) -> None:
        return None

    monkeypatch.setattr(control_module, "determine_poll_interval_seconds", lambda _chain: 1)
    monkeypatch.setattr(control_module, "collect_chain_metrics", _collect)
    monkeypatch.setattr(control_module.asyncio, "sleep", _sleep)
    monkeypatch.setattr(
        control_module,
        "record_poll_failure",
        lambda chain_arg, **_kwargs: failure_calls.append(chain_arg),
    )

    with pytest.raises(asyncio.CancelledError):
        await control_module.poll_chain(chain, context=context)

    assert failure_calls == [chain]


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_poll_chain_cycles_never_overlap(monkeypatch: pytest.MonkeyPatch) -> None:
    chain = _build_chain()
    context = _build_context(lambda _chain: _Source())

    in_flight = 0
    max_in_flight = 0
    call_count = 0

    async def _collect(chain_arg: ChainConfig, **_kwargs: Any) -> CycleReport:
        nonlocal in_flight, max_in_flight, call_count

        call_count += 1

        if call_count > 3:
            raise asyncio.CancelledError

        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1

        return CycleReport(chain=chain_arg.name, fresh=["active_validators"])

    monkeypatch.setattr(control_module, "determine_poll_interval_seconds", lambda _chain: 0)
    monkeypatch.setattr(control_module, "collect_chain_metrics", _collect)

    with pytest.raises(asyncio.CancelledError):
        await control_module.poll_chain(chain, context=context)

    assert max_in_flight == 1


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_connect_state_source_returns_none_on_failure(caplog: pytest.LogCaptureFixture) -> None:
    chain = _build_chain("DownChain")

    def _factory(_chain: ChainConfig) -> Any:
        raise ConnectionRefusedError("connection refused")

    caplog.set_level(logging.WARNING)

    source = await control_module.connect_state_source(chain, _build_context(_factory))

    assert source is None
    assert any("Unable to connect to DownChain (ws://127.0.0.1:9944)" in message for message in caplog.messages)


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"], indirect=True)
async def test_collect_chain_metrics_runs_in_thread(monkeypatch: pytest.MonkeyPatch, chain: ChainConfig, make_source) -> None:
    from staking_exporter.publisher import ChangeGatedPublisher

    metrics = create_metrics(CollectorRegistry())
    publisher = ChangeGatedPublisher(chain=chain, gauges=metrics.staking)

    report = await control_module.collect_chain_metrics(
        chain,
        source=make_source(),
        publisher=publisher,
        metrics=metrics,
    )

    assert report.healthy is True
    assert metrics.registry.get_sample_value("staking_active_validator_count", {"chain": "creditcoin"}) == 3.0
