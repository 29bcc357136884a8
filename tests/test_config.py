from pathlib import Path

import pytest
from pydantic import ValidationError

from termagent.config import (
    Config,
    get_config,
    get_default_config_yaml,
    load_config,
    migrate_config_data,
)


def test_default_config_round_trips_through_yaml(tmp_path: Path) -> None:
    yaml_text = get_default_config_yaml()
    assert "agent" in yaml_text
    assert "gateway" in yaml_text

    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml_text, encoding="utf-8")

    config = load_config(config_path)
    assert config.agent.auto_run is False
    assert config.agent.max_allowed_risk == "low"
    assert config.agent.max_history_length == 10
    assert get_config() is config


def test_save_and_load(tmp_path: Path) -> None:
    config = Config()
    config.agent.auto_run = True
    config.agent.max_allowed_risk = "medium"
    config.gateway.model = "qwen2.5"

    path = tmp_path / "nested" / "config.yaml"
    config.save(path)
    loaded = Config.load(path)

    assert loaded.agent.auto_run is True
    assert loaded.agent.max_allowed_risk == "medium"
    assert loaded.gateway.model == "qwen2.5"


def test_missing_file_falls_back_to_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.yaml")

    assert config.gateway.provider == "ollama"


def test_legacy_flat_keys_migrate_to_sections() -> None:
    migrated, warnings = migrate_config_data(
        {"agentAutoRun": True, "agentRiskLevel": "medium", "baseURL": "https://api.example.com/v1"}
    )

    assert migrated["agent"] == {"auto_run": True, "max_allowed_risk": "medium"}
    assert migrated["gateway"]["base_url"] == "https://api.example.com/v1"
    assert migrated["gateway"]["provider"] == "openai"
    assert "agentAutoRun" not in migrated
    assert any("agent.auto_run" in msg for msg in warnings)


def test_sectioned_value_wins_over_legacy_key() -> None:
    migrated, warnings = migrate_config_data({"agentRiskLevel": "high", "agent": {"max_allowed_risk": "low"}})

    assert migrated["agent"]["max_allowed_risk"] == "low"
    assert any("Ignoring legacy 'agentRiskLevel'" in msg for msg in warnings)


def test_legacy_yaml_file_records_warnings(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("agentAutoRun: true\nagentRiskLevel: medium\n", encoding="utf-8")

    config = Config.load(path)

    assert config.agent.auto_run is True
    assert config.agent.max_allowed_risk == "medium"
    assert config._migration_warnings


def test_invalid_risk_level_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Config.model_validate({"agent": {"max_allowed_risk": "extreme"}})


def test_base_url_trailing_slash_and_blank_proxy() -> None:
    config = Config.model_validate({"gateway": {"base_url": "https://x/v1/", "proxy_url": " "}})

    assert config.gateway.base_url == "https://x/v1"
    assert config.gateway.proxy_url is None
