"""``staking-exporter-validate``: check a config file before deploying it."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

from .config import ChainConfig, load_chain_configs
from .exceptions import ConfigError
from .runtime_settings import RuntimeSettings, get_runtime_settings

MASKED_VALUE = "<masked>"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="staking-exporter-validate",
        description="Validate the staking exporter configuration file.",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        help="Path to config.toml (defaults to STAKING_EXPORTER_CONFIG_PATH or ./config.toml).",
    )
    parser.add_argument(
        "--print-resolved",
        action="store_true",
        help="Print settings and chains as JSON, with node URLs masked.",
    )
    parser.add_argument(
        "--show-secrets",
        action="store_true",
        help="Do not mask node URLs in --print-resolved output.",
    )

    return parser


def _resolve(config_path: str | Path | None) -> Path | None:
    return Path(config_path).expanduser().resolve() if config_path else None


def validate_config(config_path: str | Path | None = None) -> list[ChainConfig]:
    return load_chain_configs(_resolve(config_path))


def _render_runtime_settings(runtime: RuntimeSettings, *, show_secrets: bool) -> str:
    chains = [asdict(chain) for chain in runtime.chains]

    if not show_secrets:
        for chain in chains:
            chain["ws_url"] = MASKED_VALUE

    return json.dumps(
        {
            "config_path": str(runtime.config_path),
            "settings": asdict(runtime.app),
            "chains": chains,
        },
        indent=2,
        sort_keys=True,
        default=str,
    )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config_path = _resolve(args.config_path)

    try:
        if args.print_resolved:
            runtime = get_runtime_settings(config_path=config_path)
            print(_render_runtime_settings(runtime, show_secrets=args.show_secrets))
            return 0

        chains = load_chain_configs(config_path)
    except FileNotFoundError as exc:
        parser.error(f"Config file not found: {exc}")
    except ConfigError as exc:
        parser.error(str(exc))

    print(f"Configuration OK ({len(chains)} chain(s) enabled)")

    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
