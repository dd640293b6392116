"""Loading and validation of the ``[[chains]]`` TOML configuration."""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from substrateinterface.utils.ss58 import is_valid_ss58_address

from .exceptions import ConfigError, ValidationError
from .settings import AppSettings, get_settings

DEFAULT_ENV_PATH = Path.cwd().joinpath(".env").resolve()

load_dotenv(DEFAULT_ENV_PATH)

WS_URL_PATTERN = re.compile(r"^wss?://\S+$", re.IGNORECASE)

_BOOL_STRINGS = {
    "true": True,
    "1": True,
    "yes": True,
    "on": True,
    "false": False,
    "0": False,
    "no": False,
    "off": False,
}


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """One polled chain.

    ``poll_interval`` is a duration string such as ``"30s"``; ``None`` means
    the process-wide default. ``watch_list`` holds SS58 validator addresses
    whose missed prevotes are counted.
    """

    name: str
    ws_url: str
    poll_interval: str | None
    watch_list: tuple[str, ...] = ()
    enabled: bool = True


def resolve_config_path(settings: AppSettings | None = None) -> Path:
    return (settings or get_settings()).config.resolve_config_path()


def load_chain_configs(path: Path | None = None) -> list[ChainConfig]:
    """Return the enabled chains declared in the config file.

    A file without a ``chains`` key yields an empty list. Chain names must be
    unique, ignoring case, among the enabled entries.

    Raises:
        FileNotFoundError: The file does not exist.
        ConfigError: The TOML is invalid or ``chains`` is not an array.
        ValidationError: An entry is malformed.
    """

    config_path = path or resolve_config_path()
    tables = _read_toml(config_path).get("chains")

    if tables is None:
        return []

    if not isinstance(tables, list):
        raise ConfigError(
            "Configuration 'chains' section must be an array.",
            config_file=str(config_path),
            config_section="chains",
        )

    chains: list[ChainConfig] = []
    names: set[str] = set()

    for index, table in enumerate(tables, start=1):
        chain = _ChainTable(table, index).parse()

        if not chain.enabled:
            continue

        key = chain.name.lower()
        if key in names:
            raise ValidationError(
                f"Duplicate chain name '{chain.name}' detected.",
                config_section=f"chains[{index}]",
                config_key="name",
                value=chain.name,
            )

        names.add(key)
        chains.append(chain)

    return chains


def _read_toml(path: Path) -> dict[str, Any]:
    # $VAR and ${VAR} references are expanded before parsing.
    text = os.path.expandvars(path.read_text(encoding="utf-8"))

    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}", config_file=str(path)) from exc


class _ChainTable:
    """Validates a single ``[[chains]]`` entry."""

    def __init__(self, table: Any, index: int) -> None:
        self.section = f"chains[{index}]"

        if not isinstance(table, dict):
            raise ValidationError(
                f"{self.section} must be a table.",
                config_section=self.section,
                expected_type="table",
                value=type(table).__name__,
            )

        self.table: dict[str, Any] = table

    def parse(self) -> ChainConfig:
        return ChainConfig(
            name=self._string("name"),
            ws_url=self._ws_url(),
            poll_interval=self._poll_interval(),
            watch_list=self._watch_list(),
            enabled=self._enabled(),
        )

    def _string(self, key: str, raw: Any = None, location: str | None = None) -> str:
        raw = self.table.get(key) if location is None else raw
        location = location or f"{self.section}.{key}"

        if isinstance(raw, str) and raw.strip():
            return raw.strip()

        raise ValidationError(
            f"{location} must be a non-empty string.",
            config_section=location,
            expected_type="string",
            value=raw if raw is None or isinstance(raw, str) else type(raw).__name__,
        )

    def _ws_url(self) -> str:
        url = self._string("ws_url")

        if WS_URL_PATTERN.match(url) is None:
            raise ValidationError(
                f"{self.section}.ws_url must be a websocket URL (ws:// or wss://).",
                config_section=f"{self.section}.ws_url",
                config_key="ws_url",
                expected_type="websocket_url",
                value=url,
            )

        return url

    def _poll_interval(self) -> str | None:
        from .poller.intervals import parse_duration_to_seconds

        interval = self.table.get("poll_interval")
        location = f"{self.section}.poll_interval"

        if interval is None:
            return None

        if not isinstance(interval, str):
            raise ValidationError(
                f"{location} must be a string if provided.",
                config_section=self.section,
                config_key="poll_interval",
                expected_type="string",
                value=type(interval).__name__,
            )

        seconds = parse_duration_to_seconds(interval)
        if seconds is None or seconds <= 0:
            raise ValidationError(
                f"{location} must be a valid duration format (e.g., '30s', '5m', '1h'). "
                "Format: number optionally followed by unit (s/m/h).",
                config_section=location,
                config_key="poll_interval",
                expected_type="duration_string",
                value=interval,
            )

        return interval

    def _watch_list(self) -> tuple[str, ...]:
        """SS58 addresses, any network prefix, without duplicates."""

        entries = self.table.get("watch_list", [])
        location = f"{self.section}.watch_list"

        if not isinstance(entries, list):
            raise ValidationError(
                f"{location} must be an array if provided.",
                config_section=self.section,
                config_key="watch_list",
                expected_type="array",
                value=type(entries).__name__,
            )

        addresses: dict[str, None] = {}

        for position, raw in enumerate(entries, start=1):
            entry_location = f"{location}[{position}]"
            address = self._string("watch_list", raw, entry_location)

            if not is_valid_ss58_address(address):
                raise ValidationError(
                    f"{entry_location} must be a valid SS58 address.",
                    config_section=entry_location,
                    config_key="watch_list",
                    expected_type="ss58_address",
                    value=address,
                )

            if address in addresses:
                raise ValidationError(
                    f"Duplicate watch-list address '{address}' found in {self.section}.",
                    config_section=entry_location,
                    config_key="watch_list",
                    value=address,
                )

            addresses[address] = None

        return tuple(addresses)

    def _enabled(self) -> bool:
        value = self.table.get("enabled")

        if value is None:
            return True

        if isinstance(value, bool):
            return value

        if isinstance(value, str) and value.strip().lower() in _BOOL_STRINGS:
            return _BOOL_STRINGS[value.strip().lower()]

        location = f"{self.section}.enabled"
        raise ValidationError(
            f"{location} must be a boolean (true/false).",
            config_section=location,
            expected_type="boolean",
            value=value,
        )


__all__ = [
    "ChainConfig",
    "load_chain_configs",
    "resolve_config_path",
]
