"""Process-wide registry of per-chain polling tasks."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING

from fastapi import FastAPI

from ..logging import build_log_extra, get_logger
from . import control as poller_control

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..config import ChainConfig
    from ..context import ApplicationContext

LOGGER = get_logger(__name__)


class PollerManager:
    """Starts one polling task per chain and owns their shutdown.

    The health and metrics apps run the same lifespan. Whichever app starts
    first becomes the owner; the other receives the already running tasks.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, asyncio.Task] = {}
        self._owner: FastAPI | None = None

    @property
    def started(self) -> bool:
        with self._lock:
            return self._owner is not None

    @property
    def owner(self) -> FastAPI | None:
        return self._owner

    def create_tasks(
        self,
        chains: Sequence[ChainConfig],
        context: ApplicationContext,
        app: FastAPI,
    ) -> list[asyncio.Task]:
        """Return the polling tasks, starting them if this is the first caller."""

        with self._lock:
            if self._owner is None:
                self._owner = app
                self._tasks = {
                    chain.name: asyncio.create_task(
                        poller_control.poll_chain(chain, context=context),
                        name=f"poll-{chain.name}",
                    )
                    for chain in chains
                }

                LOGGER.debug(
                    "Started %d polling task(s).",
                    len(self._tasks),
                    extra=build_log_extra(additional={"task_count": len(self._tasks)}),
                )
            else:
                LOGGER.debug(
                    "Polling already started by another app; sharing %d task(s).",
                    len(self._tasks),
                )

            return list(self._tasks.values())

    def should_cleanup(self, app: FastAPI) -> bool:
        with self._lock:
            return self._owner is app

    def get_active_task_count(self) -> int:
        with self._lock:
            return sum(not task.done() for task in self._tasks.values())

    async def shutdown_tasks(self, timeout_seconds: float = 30.0) -> None:
        """Cancel running tasks and wait at most ``timeout_seconds`` for them to exit."""

        with self._lock:
            pending = [task for task in self._tasks.values() if not task.done()]
            self._tasks = {}

        if not pending:
            return

        for task in pending:
            task.cancel()

        _done, still_running = await asyncio.wait(pending, timeout=timeout_seconds)

        if still_running:
            LOGGER.warning(
                "%d polling task(s) still running %s seconds after cancellation.",
                len(still_running),
                timeout_seconds,
                extra=build_log_extra(additional={"timeout_seconds": timeout_seconds}),
            )

    def reset(self) -> None:
        with self._lock:
            self._tasks = {}
            self._owner = None


_poller_manager = PollerManager()


def get_poller_manager() -> PollerManager:
    return _poller_manager


def reset_poller_manager() -> None:
    _poller_manager.reset()


__all__ = [
    "PollerManager",
    "get_poller_manager",
    "reset_poller_manager",
]
