"""Runtime dependency container for wiring metrics, configs, and state sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .config import ChainConfig
from .metrics import MetricsStoreProtocol, get_metrics
from .runtime_settings import RuntimeSettings, get_runtime_settings
from .settings import AppSettings
from .source import StateSourceProtocol, SubstrateStateSource


@dataclass(slots=True)
class ApplicationContext:
    """Bundle of services required while the exporter is running."""

    metrics: MetricsStoreProtocol

    runtime: RuntimeSettings

    source_factory: Callable[[ChainConfig], StateSourceProtocol]

    def create_state_source(self, chain: ChainConfig) -> StateSourceProtocol:
        """Open a state source for the provided chain; may raise on connection failure."""

        return self.source_factory(chain)

    @property
    def settings(self) -> AppSettings:
        return self.runtime.app

    @property
    def chains(self) -> list[ChainConfig]:
        return self.runtime.chains


def default_source_factory(chain: ChainConfig) -> StateSourceProtocol:
    """Connect a retry-enabled `SubstrateStateSource` for the given chain."""

    from .poller.intervals import DEFAULT_RPC_MAX_ATTEMPTS, create_substrate_interface

    substrate = create_substrate_interface(chain)
    return SubstrateStateSource(substrate, chain, max_attempts=DEFAULT_RPC_MAX_ATTEMPTS)


def create_default_context() -> ApplicationContext:
    return ApplicationContext(
        metrics=get_metrics(),
        runtime=get_runtime_settings(),
        source_factory=default_source_factory,
    )


_APPLICATION_CONTEXT: ApplicationContext | None = None


def get_application_context() -> ApplicationContext:
    """Return the current application context, creating one when absent."""

    global _APPLICATION_CONTEXT

    if _APPLICATION_CONTEXT is None:
        _APPLICATION_CONTEXT = create_default_context()

    return _APPLICATION_CONTEXT


def set_application_context(context: ApplicationContext | None) -> None:
    global _APPLICATION_CONTEXT

    _APPLICATION_CONTEXT = context


def reset_application_context() -> None:
    """Clear the cached context so the next access rebuilds dependencies."""

    set_application_context(None)


__all__ = [
    "ApplicationContext",
    "create_default_context",
    "default_source_factory",
    "get_application_context",
    "reset_application_context",
    "set_application_context",
]
