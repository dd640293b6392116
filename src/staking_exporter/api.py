"""HTTP routes for the health port and the metrics port."""

from __future__ import annotations

from fastapi import FastAPI, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .health import (
    format_metrics_payload,
    generate_health_report,
    generate_readiness_report,
)
from .metrics import get_metrics


def _health_response(*, include_details: bool) -> JSONResponse:
    overall_status, status_code, chain_details = generate_health_report(
        include_details=include_details,
    )

    return JSONResponse(
        status_code=status_code,
        content={"status": overall_status, "chains": chain_details},
    )


def register_health_routes(app: FastAPI) -> None:
    """Register the health endpoints.

    - GET /health: overall status with one entry per chain
    - GET /health/details: same, plus each chain's last fully fresh cycle
    - GET /health/livez: liveness, always 200
    - GET /health/readyz: 200 once any chain has a recent fresh cycle, else 503
    """

    @app.get("/health", response_class=JSONResponse)
    async def health() -> JSONResponse:
        return _health_response(include_details=False)

    @app.get("/health/details", response_class=JSONResponse)
    async def health_details() -> JSONResponse:
        return _health_response(include_details=True)

    @app.get("/health/livez", response_class=JSONResponse)
    async def livez() -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "alive"})

    @app.get("/health/readyz", response_class=JSONResponse)
    async def readyz() -> JSONResponse:
        ready, readiness_details = generate_readiness_report()

        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if ready else "not_ready",
                "chains": readiness_details,
            },
        )


def register_metrics_routes(app: FastAPI) -> None:
    """Register GET /metrics, the Prometheus scrape target."""

    @app.get("/metrics", response_class=Response)
    async def metrics() -> Response:
        # Served regardless of readiness; gauges keep their last published values.
        payload = format_metrics_payload(generate_latest(get_metrics().registry))

        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


def register_routes(app: FastAPI) -> None:
    """Register health and metrics routes on a single app."""

    register_health_routes(app)
    register_metrics_routes(app)


__all__ = [
    "register_health_routes",
    "register_metrics_routes",
    "register_routes",
]
