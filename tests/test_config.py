from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from imagegen_mcp.config import AppConfig, load_config, resolve_config, validate_models
from imagegen_mcp.state import AllowedModels, Configured, ImageModel, Unconfigured
from imagegen_mcp.tools.errors import ConfigurationError
from imagegen_mcp.tools.manager import ToolManager, build_state


def _write_cfg(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "nope.yml")
    assert cfg["base_url"] == "https://api.openai.com/v1"
    assert cfg["models"] == []
    assert cfg["timeout"] == 120.0
    assert cfg["overwrite"] is False
    assert not (tmp_path / "nope.yml").exists()


def test_invalid_values_fall_back(tmp_path: Path) -> None:
    path = _write_cfg(tmp_path, {
        "timeout": -5,
        "max_prompt_length": "lots",
        "log_level": "chatty",
        "base_url": "",
        "blocked_terms": "not-a-list",
    })
    cfg = load_config(path)
    assert cfg["timeout"] == 120.0
    assert cfg["max_prompt_length"] == 32000
    assert cfg["log_level"] == "INFO"
    assert cfg["base_url"] == "https://api.openai.com/v1"
    assert cfg["blocked_terms"] == []


def test_api_key_never_read_from_file(tmp_path: Path) -> None:
    path = _write_cfg(tmp_path, {"api_key": "sk-from-file"})
    cfg = resolve_config(path, env={})
    assert cfg.api_key == ""
    assert cfg.has_credential is False


def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    path = _write_cfg(tmp_path, {"models": ["dall-e-2"], "timeout": 30, "overwrite": True})
    env = {
        "OPENAI_API_KEY": "sk-test",
        "IMAGEGEN_MCP_MODELS": "dall-e-3, gpt-image-1",
        "IMAGEGEN_MCP_TIMEOUT": "45",
        "OPENAI_BASE_URL": "https://proxy.example/v1/",
    }
    cfg = resolve_config(path, env=env)
    assert cfg.models == ["dall-e-3", "gpt-image-1"]
    assert cfg.timeout == 45.0
    assert cfg.overwrite is True
    assert cfg.base_url == "https://proxy.example/v1"
    assert cfg.api_key == "sk-test"

    cfg = resolve_config(path, env=env, overrides={"models": ["gpt-image-1"]})
    assert cfg.models == ["gpt-image-1"]


def test_config_path_from_env(tmp_path: Path) -> None:
    path = _write_cfg(tmp_path, {"max_prompt_length": 500})
    cfg = resolve_config(env={"IMAGEGEN_MCP_CONFIG": str(path)})
    assert cfg.max_prompt_length == 500


def test_api_key_hidden_from_repr() -> None:
    cfg = AppConfig(api_key="sk-secret")
    assert "sk-secret" not in repr(cfg)


def test_validate_models_reports_unknown() -> None:
    assert validate_models(AppConfig(models=["gpt-image-1", "dall-e-9"])) == ["dall-e-9"]


def test_allowed_models_empty_means_all() -> None:
    allowed = AllowedModels.from_names([])
    assert allowed.models == tuple(ImageModel)
    assert allowed.default is ImageModel.GPT_IMAGE_1


def test_allowed_models_first_is_default_and_deduplicated() -> None:
    allowed = AllowedModels.from_names(["dall-e-3", "dall-e-2", "dall-e-3"])
    assert allowed.names() == ["dall-e-3", "dall-e-2"]
    assert allowed.default is ImageModel.DALL_E_3
    assert ImageModel.GPT_IMAGE_1 not in allowed


def test_build_state_without_key_is_unconfigured() -> None:
    state = build_state(AppConfig())
    assert isinstance(state, Unconfigured)
    assert not hasattr(state, "client")


def test_build_state_with_key_is_configured() -> None:
    state = build_state(AppConfig(api_key="sk-test", models=["dall-e-2"]))
    assert isinstance(state, Configured)
    assert state.allowed.default is ImageModel.DALL_E_2
    assert "sk-test" not in repr(state.client)


def test_build_state_rejects_unknown_model() -> None:
    with pytest.raises(ConfigurationError, match="dall-e-9"):
        build_state(AppConfig(api_key="sk-test", models=["dall-e-9"]))


def test_manager_from_config_carries_settings() -> None:
    mgr = ToolManager.from_config(AppConfig(overwrite=True, blocked_terms=["nope"], max_prompt_length=99))
    assert mgr.writer.overwrite is True
    assert mgr.blocked_terms == ("nope",)
    assert mgr.max_prompt_length == 99
    assert mgr.configured is False


def test_unparsable_file_is_configuration_error(tmp_path: Path) -> None:
    path = tmp_path / "config.yml"
    path.write_text("models: [gpt-image-1\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Invalid config file"):
        load_config(path)


def test_directory_as_config_is_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Cannot read config file"):
        load_config(tmp_path)
