import logging
import logging.config
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI

from .api import register_health_routes, register_metrics_routes, register_routes
from .config import ChainConfig, resolve_config_path
from .context import (
    ApplicationContext,
    default_source_factory,
    get_application_context,
    reset_application_context,
    set_application_context,
)
from .exceptions import ConfigError
from .logging import (
    JsonFormatter,
    StructuredTextFormatter,
    build_log_extra,
    get_logger,
)
from .metrics import (
    MetricsStoreProtocol,
    get_metrics,
    set_configured_chains,
    set_metrics,
)
from .poller.manager import get_poller_manager
from .runtime_settings import RuntimeSettings
from .settings import AppSettings, get_settings

SETTINGS = get_settings()

LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _formatter_config(settings: AppSettings) -> dict[str, Any]:
    if settings.logging.format == "json":
        return {"()": JsonFormatter, "datefmt": LOG_DATE_FORMAT}

    return {
        "()": StructuredTextFormatter,
        "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        "datefmt": LOG_DATE_FORMAT,
        "color_enabled": settings.logging.color_enabled,
    }


def _configure_logging(settings: AppSettings) -> None:
    """Route application and uvicorn logs through one handler and formatter."""

    level = settings.logging.level if settings.logging.level in logging.getLevelNamesMapping() else "INFO"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"standard": _formatter_config(settings)},
            "handlers": {
                "default": {"class": "logging.StreamHandler", "formatter": "standard"},
            },
            "root": {"level": level, "handlers": ["default"]},
            "loggers": {
                name: {"handlers": ["default"], "level": level, "propagate": False}
                for name in UVICORN_LOGGERS
            },
        }
    )


_configure_logging(SETTINGS)
LOGGER = get_logger(__name__)


APP_TITLE = "Staking Prometheus Exporter"
APP_DESCRIPTION = "Exposes Prometheus gauges for proof-of-stake staking and consensus state."


def _fallback_context() -> ApplicationContext:
    config_path = resolve_config_path(SETTINGS)

    LOGGER.warning(
        "Configuration file not found at %s; no chains will be polled.",
        config_path,
        extra=build_log_extra(additional={"config_path": str(config_path)}),
    )

    context = ApplicationContext(
        metrics=get_metrics(),
        runtime=RuntimeSettings(app=SETTINGS, chains=[], config_path=config_path),
        source_factory=default_source_factory,
    )
    set_application_context(context)

    return context


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start polling on the first app to come up; stop it when that app goes down.

    The health and metrics apps share this lifespan. A missing config file
    starts the exporter with no chains; an invalid one aborts startup.
    """

    try:
        context = get_application_context()
    except FileNotFoundError:
        context = _fallback_context()
    except ConfigError as exc:
        LOGGER.error(
            "Configuration validation error: %s",
            exc,
            extra=build_log_extra(additional=exc.context),
        )
        raise

    chains: list[ChainConfig] = context.chains

    set_configured_chains(chains)
    context.metrics.exporter.up.set(1)

    app.state.context = context
    app.state.chain_configs = chains

    manager = get_poller_manager()
    app.state.polling_tasks = manager.create_tasks(chains, context, app)

    try:
        yield
    finally:
        manager = get_poller_manager()

        if manager.should_cleanup(app):
            context.metrics.exporter.up.set(0)

            try:
                await manager.shutdown_tasks(timeout_seconds=2.0)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning(
                    "Error while shutting down polling tasks: %s",
                    exc,
                    exc_info=exc,
                )

            app.state.polling_tasks = []
            manager.reset()

            if getattr(app.state, "context", None) is not None:
                reset_application_context()
                app.state.context = None


def _build_app(
    *,
    title: str,
    description: str,
    register: Callable[[FastAPI], None],
    metrics: MetricsStoreProtocol | None,
    context: ApplicationContext | None,
) -> FastAPI:
    if metrics is not None:
        set_metrics(metrics)
        reset_application_context()

    if context is not None:
        set_application_context(context)

    app = FastAPI(title=title, description=description, lifespan=_lifespan)
    register(app)

    return app


def create_app(
    *,
    metrics: MetricsStoreProtocol | None = None,
    context: ApplicationContext | None = None,
) -> FastAPI:
    """Create a single app serving both health and metrics routes.

    Args:
        metrics: Metrics store to install globally (defaults to the current one).
        context: Application context to install globally (defaults to one built from config).
    """

    return _build_app(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        register=register_routes,
        metrics=metrics,
        context=context,
    )


def create_health_app(
    *,
    metrics: MetricsStoreProtocol | None = None,
    context: ApplicationContext | None = None,
) -> FastAPI:
    """Create the app served on the health port."""

    return _build_app(
        title=f"{APP_TITLE} - Health",
        description="Health and readiness endpoints for the staking exporter.",
        register=register_health_routes,
        metrics=metrics,
        context=context,
    )


def create_metrics_app(
    *,
    metrics: MetricsStoreProtocol | None = None,
    context: ApplicationContext | None = None,
) -> FastAPI:
    """Create the app served on the metrics port.

    It shares the lifespan with the health app and reuses its polling tasks.
    """

    return _build_app(
        title=f"{APP_TITLE} - Metrics",
        description="Prometheus scrape endpoint for the staking exporter.",
        register=register_metrics_routes,
        metrics=metrics,
        context=context,
    )


app = create_app()
