from pathlib import Path

import pytest

from staking_exporter.config import ChainConfig, load_chain_configs
from staking_exporter.exceptions import ConfigError, ValidationError

ALICE = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
BOB = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"


def write_config(path: Path, content: str) -> Path:
    config_path = path.joinpath("config.toml")
    config_path.write_text(content, encoding="utf-8")
    return config_path


def test_load_chain_configs_success(tmp_path: Path) -> None:
    config_file = write_config(
        tmp_path,
        f"""
        [[chains]]
        name = "creditcoin"
        ws_url = "wss://rpc.example:443/ws"
        poll_interval = "45s"
        watch_list = ["{ALICE}", "{BOB}"]
        """,
    )

    configs = load_chain_configs(config_file)

    assert configs == [
        ChainConfig(
            name="creditcoin",
            ws_url="wss://rpc.example:443/ws",
            poll_interval="45s",
            watch_list=(ALICE, BOB),
        )
    ]


def test_load_chain_configs_defaults(tmp_path: Path) -> None:
    config_file = write_config(
        tmp_path,
        """
        [[chains]]
        name = "devnet"
        ws_url = "ws://127.0.0.1:9944"
        """,
    )

    config = load_chain_configs(config_file)[0]

    assert config.poll_interval is None
    assert config.watch_list == ()
    assert config.enabled is True


def test_load_chain_configs_missing_chains_returns_empty(tmp_path: Path) -> None:
    config_file = write_config(tmp_path, "[settings]\nfoo = 'bar'\n")

    assert load_chain_configs(config_file) == []


def test_load_chain_configs_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_chain_configs(tmp_path.joinpath("absent.toml"))


def test_load_chain_configs_skips_disabled(tmp_path: Path) -> None:
    config_file = write_config(
        tmp_path,
        """
        [[chains]]
        name = "on"
        ws_url = "ws://on.example:9944"

        [[chains]]
        name = "off"
        ws_url = "ws://off.example:9944"
        enabled = "false"
        """,
    )

    assert [config.name for config in load_chain_configs(config_file)] == ["on"]


def test_load_chain_configs_expands_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STAKING_NODE_URL", "wss://secret.example/ws")

    config_file = write_config(
        tmp_path,
        """
        [[chains]]
        name = "creditcoin"
        ws_url = "${STAKING_NODE_URL}"
        """,
    )

    assert load_chain_configs(config_file)[0].ws_url == "wss://secret.example/ws"


def test_load_chain_configs_rejects_duplicate_names(tmp_path: Path) -> None:
    config_file = write_config(
        tmp_path,
        """
        [[chains]]
        name = "creditcoin"
        ws_url = "ws://a.example:9944"

        [[chains]]
        name = "Creditcoin"
        ws_url = "ws://b.example:9944"
        """,
    )

    with pytest.raises(ValidationError, match="Duplicate chain name"):
        load_chain_configs(config_file)


@pytest.mark.parametrize(
    ("snippet", "message"),
    [
        ('name = ""\nws_url = "ws://a.example"', "chains\\[1\\].name must be a non-empty string"),
        ('name = "a"\nws_url = "https://a.example"', "must be a websocket URL"),
        ('name = "a"\nws_url = "ws://a.example"\npoll_interval = "soon"', "valid duration format"),
        ('name = "a"\nws_url = "ws://a.example"\npoll_interval = "0s"', "valid duration format"),
        ('name = "a"\nws_url = "ws://a.example"\npoll_interval = 30', "must be a string if provided"),
        ('name = "a"\nws_url = "ws://a.example"\nwatch_list = "nope"', "must be an array if provided"),
        ('name = "a"\nws_url = "ws://a.example"\nwatch_list = ["0x1234"]', "must be a valid SS58 address"),
        ('name = "a"\nws_url = "ws://a.example"\nenabled = "maybe"', "must be a boolean"),
    ],
)
def test_load_chain_configs_validation_errors(tmp_path: Path, snippet: str, message: str) -> None:
    config_file = write_config(tmp_path, f"[[chains]]\n{snippet}\n")

    with pytest.raises(ValidationError, match=message):
        load_chain_configs(config_file)


def test_load_chain_configs_rejects_duplicate_watch_list_entries(tmp_path: Path) -> None:
    config_file = write_config(
        tmp_path,
        f"""
        [[chains]]
        name = "creditcoin"
        ws_url = "ws://a.example:9944"
        watch_list = ["{ALICE}", "{ALICE}"]
        """,
    )

    with pytest.raises(ValidationError, match="Duplicate watch-list address"):
        load_chain_configs(config_file)


def test_load_chain_configs_rejects_non_array_section(tmp_path: Path) -> None:
    config_file = write_config(tmp_path, "chains = 'creditcoin'\n")

    with pytest.raises(ConfigError, match="must be an array"):
        load_chain_configs(config_file)


def test_load_chain_configs_invalid_toml(tmp_path: Path) -> None:
    config_file = write_config(tmp_path, "[[chains]\nname = \n")

    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_chain_configs(config_file)


def test_validation_error_is_value_error(tmp_path: Path) -> None:
    config_file = write_config(tmp_path, '[[chains]]\nname = "a"\nws_url = "http://a"\n')

    with pytest.raises(ValueError):
        load_chain_configs(config_file)
