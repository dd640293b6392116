"""Typed state source over a Substrate node, with retry handling."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol, runtime_checkable

from substrateinterface import SubstrateInterface
from substrateinterface.exceptions import StorageFunctionNotFound, SubstrateRequestException

from .config import ChainConfig
from .exceptions import (
    MissingChainDataError,
    StateSourceConnectionError,
    StateSourceError,
    StateSourceProtocolError,
    StateSourceTimeoutError,
)
from .logging import get_logger
from .models import EraExposure, NominationPool, RoundState

LOGGER = get_logger(__name__)

RPC_MAX_RETRIES = 2
RPC_INITIAL_BACKOFF_SECONDS = 0.5
RPC_MAX_BACKOFF_SECONDS = 5.0

_CONNECTION_KEYWORDS = (
    "connection refused",
    "connection reset",
    "connection aborted",
    "network unreachable",
    "name or service not known",
    "name resolution",
    "socket is already closed",
)


def _categorize_error(exception: Exception) -> str:
    """Map an exception onto one of "timeout", "connection_error",
    "rpc_error", "missing_data", "value_error" or "unknown"."""
    if isinstance(exception, MissingChainDataError):
        return "missing_data"
    if isinstance(exception, StateSourceTimeoutError):
        return "timeout"
    if isinstance(exception, StateSourceConnectionError):
        return "connection_error"
    if isinstance(exception, StateSourceProtocolError):
        return "rpc_error"

    exception_type = type(exception).__name__.lower()
    exception_str = str(exception).lower()

    if "timeout" in exception_type or "timed out" in exception_str or "timeout" in exception_str:
        return "timeout"

    if "connection" in exception_type or isinstance(exception, ConnectionError):
        return "connection_error"

    if isinstance(exception, OSError) and any(keyword in exception_str for keyword in _CONNECTION_KEYWORDS):
        return "connection_error"

    if isinstance(exception, SubstrateRequestException):
        return "rpc_error"

    if isinstance(exception, (ValueError, TypeError, AttributeError, KeyError, IndexError)):
        return "value_error"

    return "unknown"


def _wrap_source_exception(
    exception: Exception,
    chain: ChainConfig,
    operation: str,
    attempt: int,
    max_attempts: int,
) -> StateSourceError:
    """Wrap ``exception`` in the matching StateSourceError subclass."""
    if isinstance(exception, StateSourceError):
        return exception

    error_type = _categorize_error(exception)
    message = f"State query '{operation}' failed: {exception}"
    common: dict[str, Any] = {
        "chain": chain.name,
        "ws_url": chain.ws_url,
        "operation": operation,
        "attempt": attempt,
        "max_attempts": max_attempts,
        "context": {"original_exception": type(exception).__name__},
    }

    if error_type == "timeout":
        return StateSourceTimeoutError(message, **common)

    if error_type == "connection_error":
        return StateSourceConnectionError(message, **common)

    if error_type == "rpc_error":
        rpc_error_code = None
        rpc_error_message = None
        error_data = exception.args[0] if exception.args else None

        if isinstance(error_data, dict):
            rpc_error_code = error_data.get("code")
            rpc_error_message = error_data.get("message")

        return StateSourceProtocolError(
            message,
            rpc_error_code=rpc_error_code,
            rpc_error_message=rpc_error_message,
            **common,
        )

    common["context"]["error_type"] = error_type
    return StateSourceError(message, **common)


def execute_with_retries(
    operation: Callable[[], Any],
    description: str,
    chain: ChainConfig,
    max_attempts: int | None = None,
    *,
    log_level: int = logging.DEBUG,
    include_traceback: bool = False,
    context_extra: dict[str, Any] | None = None,
) -> Any:
    """Run a state query, retrying with exponential backoff.

    Missing chain data is not retried since the node will answer the same
    way again within the same cycle.

    Raises:
        StateSourceError: The last failure once all attempts are exhausted.
    """
    attempt_limit = max_attempts if max_attempts is not None else RPC_MAX_RETRIES
    last_exception: StateSourceError | None = None

    for attempt in range(1, attempt_limit + 1):
        try:
            return operation()
        except Exception as exc:  # noqa: BLE001
            last_exception = _wrap_source_exception(exc, chain, description, attempt, attempt_limit)

            log_kwargs: dict[str, Any] = {}

            if include_traceback:
                log_kwargs["exc_info"] = exc

            if context_extra:
                log_kwargs["extra"] = context_extra

            LOGGER.log(
                log_level,
                "State query '%s' failed for %s (attempt %s/%s).",
                description,
                chain.name,
                attempt,
                attempt_limit,
                **log_kwargs,
            )

            if isinstance(last_exception, MissingChainDataError):
                break

            if attempt < attempt_limit:
                backoff_seconds = min(
                    RPC_INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                    RPC_MAX_BACKOFF_SECONDS,
                )

                time.sleep(backoff_seconds)

    if last_exception is not None:
        raise last_exception

    raise RuntimeError(f"State query '{description}' failed without raising an exception.")


@runtime_checkable
class StateSourceProtocol(Protocol):
    @property
    def chain(self) -> ChainConfig: ...

    def get_active_validators(self) -> list[str]: ...

    def get_next_elected(self) -> list[str]: ...

    def get_active_era_index(self) -> int: ...

    def get_era_exposures(self, era: int) -> list[EraExposure]: ...

    def get_era_total_stake(self, era: int) -> int: ...

    def get_total_issuance(self) -> int: ...

    def get_consensus_round_state(self) -> RoundState: ...

    def get_nomination_pools(self) -> list[NominationPool]: ...

    def close(self) -> None: ...


def _plain(obj: Any) -> Any:
    """Unwrap a SCALE object into its decoded Python value."""
    return getattr(obj, "value", obj)


def _first_key(key: Any) -> Any:
    """Return the leading key of an N-map entry (e.g. the validator of a paged exposure)."""
    if isinstance(key, (list, tuple)):
        return key[0]
    return key


def _decode_pool_name(raw: Any) -> str:
    if raw is None:
        return ""

    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")

    text = str(raw)

    if text.startswith("0x"):
        try:
            return bytes.fromhex(text[2:]).decode("utf-8", errors="replace")
        except ValueError:
            return text

    return text


def _nominator_addresses(exposure: Any) -> list[str]:
    return [str(other["who"]) for other in exposure.get("others", [])]


class SubstrateStateSource:
    """State source backed by a ``SubstrateInterface`` websocket connection.

    Every public query converts the raw SCALE-decoded response into the
    typed records from ``models`` so derivations never see loose values.
    """

    def __init__(
        self,
        substrate: SubstrateInterface,
        chain: ChainConfig,
        *,
        max_attempts: int | None = None,
    ) -> None:
        self._substrate = substrate
        self._chain = chain
        self._max_attempts = max_attempts

    @property
    def chain(self) -> ChainConfig:
        return self._chain

    @property
    def substrate(self) -> SubstrateInterface:
        return self._substrate

    def _run(self, operation: Callable[[], Any], description: str) -> Any:
        return execute_with_retries(
            operation,
            description,
            self._chain,
            max_attempts=self._max_attempts,
        )

    def _query(self, module: str, storage_function: str, params: list[Any] | None = None) -> Any:
        result = self._substrate.query(module, storage_function, params or [])
        return _plain(result) if result is not None else None

    def _query_map(
        self,
        module: str,
        storage_function: str,
        params: list[Any] | None = None,
    ) -> list[tuple[Any, Any]]:
        return [
            (_plain(key), _plain(value))
            for key, value in self._substrate.query_map(module, storage_function, params or [])
        ]

    def _require(self, value: Any, location: str) -> Any:
        """Raise ``MissingChainDataError`` when storage has no value (or an empty map)."""

        if value is None or (isinstance(value, (dict, list)) and not value):
            raise MissingChainDataError(
                f"{location} returned no value.",
                chain=self._chain.name,
                operation=location,
            )
        return value

    def get_active_validators(self) -> list[str]:
        def _operation() -> list[str]:
            validators = self._require(self._query("Session", "Validators"), "Session.Validators")
            return [str(address) for address in validators]

        return self._run(_operation, "Session.Validators")

    def get_next_elected(self) -> list[str]:
        def _operation() -> list[str]:
            current_era = int(self._require(self._query("Staking", "CurrentEra"), "Staking.CurrentEra"))

            try:
                entries = self._query_map("Staking", "ErasStakersOverview", [current_era])
            except StorageFunctionNotFound:
                entries = []

            if not entries:
                entries = self._require(
                    self._query_map("Staking", "ErasStakers", [current_era]),
                    f"Staking.ErasStakers({current_era})",
                )

            return [str(_first_key(key)) for key, _value in entries]

        return self._run(_operation, "Staking.NextElected")

    def get_active_era_index(self) -> int:
        def _operation() -> int:
            active_era = self._require(self._query("Staking", "ActiveEra"), "Staking.ActiveEra")

            if isinstance(active_era, dict):
                return int(active_era["index"])

            return int(active_era)

        return self._run(_operation, "Staking.ActiveEra")

    def get_era_exposures(self, era: int) -> list[EraExposure]:
        def _operation() -> list[EraExposure]:
            exposures = self._collect_exposures("ErasStakers", era)

            if not exposures:
                exposures = self._require(
                    self._collect_exposures("ErasStakersPaged", era),
                    f"Staking.ErasStakers({era})",
                )

            return [
                EraExposure(validator=validator, nominators=tuple(nominators))
                for validator, nominators in exposures.items()
            ]

        return self._run(_operation, f"Staking.ErasStakers({era})")

    def _collect_exposures(self, storage_function: str, era: int) -> dict[str, list[str]] | None:
        try:
            entries = self._query_map("Staking", storage_function, [era])
        except StorageFunctionNotFound:
            return None

        exposures: dict[str, list[str]] = {}

        for key, value in entries:
            validator = str(_first_key(key))
            exposures.setdefault(validator, []).extend(_nominator_addresses(value or {}))

        return exposures

    def get_era_total_stake(self, era: int) -> int:
        return self._run(
            lambda: int(self._require(self._query("Staking", "ErasTotalStake", [era]), "Staking.ErasTotalStake")),
            f"Staking.ErasTotalStake({era})",
        )

    def get_total_issuance(self) -> int:
        return self._run(
            lambda: int(self._require(self._query("Balances", "TotalIssuance"), "Balances.TotalIssuance")),
            "Balances.TotalIssuance",
        )

    def get_consensus_round_state(self) -> RoundState:
        def _operation() -> RoundState:
            response = self._substrate.rpc_request("grandpa_roundState", [])
            result = self._require(response.get("result"), "grandpa_roundState")
            best = result["best"]

            return RoundState(
                round=int(best["round"]),
                set_id=int(result["setId"]),
                missing_prevotes=tuple(str(address) for address in best["prevotes"]["missing"]),
                missing_precommits=tuple(str(address) for address in best["precommits"]["missing"]),
            )

        return self._run(_operation, "grandpa_roundState")

    def get_nomination_pools(self) -> list[NominationPool]:
        def _operation() -> list[NominationPool]:
            try:
                bonded = self._query_map("NominationPools", "BondedPools")
            except StorageFunctionNotFound:
                return []

            names = {
                int(key): _decode_pool_name(value)
                for key, value in self._query_map("NominationPools", "Metadata")
            }

            return [
                NominationPool(
                    pool_id=int(key),
                    name=names.get(int(key), ""),
                    member_count=int(value["member_counter"]),
                )
                for key, value in bonded
            ]

        return self._run(_operation, "NominationPools.BondedPools")

    def close(self) -> None:
        self._substrate.close()


__all__ = [
    "RPC_INITIAL_BACKOFF_SECONDS",
    "RPC_MAX_BACKOFF_SECONDS",
    "RPC_MAX_RETRIES",
    "StateSourceProtocol",
    "SubstrateStateSource",
    "_categorize_error",
    "_wrap_source_exception",
    "execute_with_retries",
]
