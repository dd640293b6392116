import asyncio
import signal
import sys

import uvicorn
from fastapi import FastAPI

from .app import create_health_app, create_metrics_app
from .settings import get_settings

SETTINGS = get_settings()


def _build_server(app: FastAPI, port: int) -> uvicorn.Server:
    config = uvicorn.Config(
        app,
        host=SETTINGS.server.host,
        port=port,
        log_config=None,
    )

    return uvicorn.Server(config)


async def run_servers() -> None:
    """Serve the health app and the metrics app side by side.

    Both apps share one lifespan, so polling tasks are created once and are
    cancelled when either server receives SIGTERM or SIGINT.
    """
    server_health = _build_server(create_health_app(), SETTINGS.server.health_port)
    server_metrics = _build_server(create_metrics_app(), SETTINGS.server.metrics_port)

    serve_tasks = [
        asyncio.create_task(server_health.serve(), name="health-server"),
        asyncio.create_task(server_metrics.serve(), name="metrics-server"),
    ]

    try:
        await asyncio.gather(*serve_tasks)
    except asyncio.CancelledError:
        for task in serve_tasks:
            task.cancel()

        await asyncio.gather(*serve_tasks, return_exceptions=True)
        raise


def run() -> None:
    """Entry point for the ``staking-exporter`` console script."""

    def _signal_handler(signum: int, frame: object) -> None:
        raise KeyboardInterrupt(f"Received signal {signum}")

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    try:
        asyncio.run(run_servers())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
