"""Errors raised by the staking exporter.

Every error carries a ``context`` mapping. It is appended to ``str(error)``
and passed as structured fields when the error is logged.
"""

from __future__ import annotations

from typing import Any


def _merge_context(context: dict[str, object] | None, **fields: Any) -> dict[str, object]:
    """Return the non-empty ``fields`` followed by ``context``."""

    merged: dict[str, object] = {key: value for key, value in fields.items() if value not in (None, "")}
    merged.update(context or {})

    return merged


class StakingExporterError(Exception):
    def __init__(self, message: str, *, context: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def __str__(self) -> str:
        if not self.context:
            return self.message

        rendered = ", ".join(f"{key}={value!r}" for key, value in self.context.items())

        return f"{self.message} (context: {rendered})"


class StateSourceError(StakingExporterError):
    """A query against the chain node failed.

    Raised for unreachable endpoints, timeouts, JSON-RPC errors and answers
    that cannot be decoded into the exporter's records.
    """

    def __init__(
        self,
        message: str,
        *,
        chain: str | None = None,
        ws_url: str | None = None,
        operation: str | None = None,
        attempt: int | None = None,
        max_attempts: int | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            context=_merge_context(
                context,
                chain=chain,
                ws_url=ws_url,
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
            ),
        )
        self.chain = chain
        self.ws_url = ws_url
        self.operation = operation
        self.attempt = attempt
        self.max_attempts = max_attempts


class StateSourceConnectionError(StateSourceError):
    """The websocket endpoint could not be reached."""


class StateSourceTimeoutError(StateSourceError):
    """The node did not answer within the request timeout."""


class StateSourceProtocolError(StateSourceError):
    """The node answered with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        *,
        rpc_error_code: int | None = None,
        rpc_error_message: str | None = None,
        context: dict[str, object] | None = None,
        **kwargs: Any,
    ) -> None:
        rpc_context = _merge_context(
            None,
            rpc_error_code=rpc_error_code,
            rpc_error_message=rpc_error_message,
        )
        super().__init__(message, context={**(context or {}), **rpc_context}, **kwargs)
        self.rpc_error_code = rpc_error_code
        self.rpc_error_message = rpc_error_message


class MissingChainDataError(StateSourceError):
    """Storage the derivations depend on is absent, e.g. no active era yet."""


class ConfigError(StakingExporterError):
    """The configuration file could not be read, parsed or validated."""

    def __init__(
        self,
        message: str,
        *,
        config_file: str | None = None,
        config_section: str | None = None,
        config_key: str | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            context=_merge_context(
                context,
                config_file=config_file,
                config_section=config_section,
                config_key=config_key,
            ),
        )
        self.config_file = config_file
        self.config_section = config_section
        self.config_key = config_key


class ValidationError(ConfigError, ValueError):
    """A single configuration value is malformed."""

    def __init__(
        self,
        message: str,
        *,
        value: object | None = None,
        expected_type: str | None = None,
        context: dict[str, object] | None = None,
        **kwargs: Any,
    ) -> None:
        value_context = _merge_context(None, value=value, expected_type=expected_type)
        super().__init__(message, context={**(context or {}), **value_context}, **kwargs)
        self.value = value
        self.expected_type = expected_type


__all__ = [
    "ConfigError",
    "MissingChainDataError",
    "StakingExporterError",
    "StateSourceConnectionError",
    "StateSourceError",
    "StateSourceProtocolError",
    "StateSourceTimeoutError",
    "ValidationError",
]
