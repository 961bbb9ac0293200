import tomllib
from pathlib import Path

import pytest

from gateflow import __version__
from gateflow.config import (
    ConfigError,
    GateflowConfig,
    dumps_toml,
    load_config,
    save_config,
)


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "gateflow.toml"
    config = GateflowConfig.default()
    config.engine.max_iterations = 6
    config.retry.max_retries = 1
    config.retry.backoff_seconds = 1.5
    config.tools.timeouts["write_file"] = 45.0
    config.state.root = "state"
    config.logging.level = "DEBUG"

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.provider.name == "claude"
    assert loaded.provider.model == "claude-sonnet-4-5"
    assert loaded.engine.max_iterations == 6
    assert loaded.retry.max_retries == 1
    assert loaded.retry.backoff_seconds == 1.5
    assert loaded.retry.artifact_backoff_seconds == 5.0
    assert loaded.tools.timeouts["write_file"] == 45.0
    assert loaded.tools.timeouts["check_spec_integrity"] == 60.0
    assert loaded.state.root == "state"
    assert loaded.logging.level == "DEBUG"


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.toml")

    assert config.engine.max_iterations == 10
    assert config.tools.max_failures == 3
    assert config.tools.failure_reset_seconds == 60.0
    assert config.retry.max_retries == 2
    assert config.retry.window_seconds == 600.0
    assert config.context.max_document_chars == 3000


def test_provider_defaults_follow_name() -> None:
    config = GateflowConfig.from_dict({"provider": {"name": "openai"}})

    assert config.provider.model == "gpt-4.1"
    assert config.provider.api_key_env == "OPENAI_API_KEY"


def test_invalid_values_raise_config_error() -> None:
    with pytest.raises(ConfigError, match="Unsupported provider"):
        GateflowConfig.from_dict({"provider": {"name": "bard"}})
    with pytest.raises(ConfigError, match="Invalid configuration"):
        GateflowConfig.from_dict({"engine": {"max_loops": 3}})


def test_toml_dump_has_timeout_table() -> None:
    rendered = dumps_toml(GateflowConfig.default())
    parsed = tomllib.loads(rendered)

    assert "[tools.timeouts]" in rendered
    assert "backoff_seconds = 3.0" in rendered
    assert parsed["tools"]["timeouts"]["read_file"] == 15.0
    assert parsed["state"]["root"] == ".gateflow"


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
