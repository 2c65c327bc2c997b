from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .state import ImageModel
from .tools.errors import ConfigurationError

DEFAULT_BASE_URL = "https://api.openai.com/v1"

CONFIG_PATH = Path.home() / ".config" / "imagegen-mcp" / "config.yml"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class AppConfig:
    base_url: str = DEFAULT_BASE_URL
    # Empty allow-list = every known model; the first entry is the default.
    models: list[str] = field(default_factory=list)
    timeout: float = 120.0             # seconds per remote call
    overwrite: bool = False            # allow replacing an existing outputPath
    max_prompt_length: int = 32000
    blocked_terms: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    # Never read from or written to the YAML file.
    api_key: str = field(default="", repr=False)
    organization: str = ""

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)


def _split_models(raw: object) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [m for m in re.split(r"[,\s]+", raw) if m]
    if isinstance(raw, (list, tuple)):
        return [str(m).strip() for m in raw if str(m).strip()]
    return []


def _validate(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults = AppConfig().__dict__.copy()
    merged = {**defaults, **{k: v for k, v in cfg.items() if k in defaults}}
    if not isinstance(merged.get("base_url"), str) or not merged["base_url"].strip():
        merged["base_url"] = defaults["base_url"]
    merged["base_url"] = merged["base_url"].strip().rstrip("/")
    merged["models"] = _split_models(merged.get("models"))
    raw_timeout = merged.get("timeout", defaults["timeout"])
    try:
        timeout = float(raw_timeout)
    except (TypeError, ValueError):
        timeout = defaults["timeout"]
    merged["timeout"] = timeout if timeout > 0 else defaults["timeout"]
    raw_overwrite = merged.get("overwrite", defaults["overwrite"])
    if isinstance(raw_overwrite, str):
        merged["overwrite"] = raw_overwrite.strip().lower() in {"1", "true", "yes", "on"}
    else:
        merged["overwrite"] = bool(raw_overwrite)
    raw_mpl = merged.get("max_prompt_length", defaults["max_prompt_length"])
    merged["max_prompt_length"] = (
        int(raw_mpl) if isinstance(raw_mpl, (int, float)) and int(raw_mpl) > 0
        else defaults["max_prompt_length"]
    )
    raw_terms = merged.get("blocked_terms") or []
    merged["blocked_terms"] = (
        [str(t) for t in raw_terms if str(t).strip()] if isinstance(raw_terms, list) else []
    )
    level = str(merged.get("log_level") or defaults["log_level"]).upper()
    merged["log_level"] = level if level in _LOG_LEVELS else defaults["log_level"]
    merged["api_key"] = str(merged.get("api_key") or "").strip()
    merged["organization"] = str(merged.get("organization") or "").strip()
    return merged


def load_config(path: Path = CONFIG_PATH) -> dict[str, Any]:
    """Read the YAML config file; a missing file yields the defaults."""
    if not path.exists():
        return _validate({})
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc.strerror or exc}") from exc
    if not isinstance(raw, dict):
        raw = {}
    # The credential only ever comes from the environment.
    raw.pop("api_key", None)
    return _validate(raw)


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if env.get("OPENAI_API_KEY"):
        out["api_key"] = env["OPENAI_API_KEY"]
    if env.get("OPENAI_BASE_URL"):
        out["base_url"] = env["OPENAI_BASE_URL"]
    if env.get("OPENAI_ORGANIZATION"):
        out["organization"] = env["OPENAI_ORGANIZATION"]
    if env.get("IMAGEGEN_MCP_MODELS"):
        out["models"] = env["IMAGEGEN_MCP_MODELS"]
    if env.get("IMAGEGEN_MCP_TIMEOUT"):
        out["timeout"] = env["IMAGEGEN_MCP_TIMEOUT"]
    if env.get("IMAGEGEN_MCP_LOG_LEVEL"):
        out["log_level"] = env["IMAGEGEN_MCP_LOG_LEVEL"]
    return out


def resolve_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Merge defaults < config file < environment < CLI overrides."""
    env = os.environ if env is None else env
    if path is None:
        path = Path(env["IMAGEGEN_MCP_CONFIG"]).expanduser() if env.get("IMAGEGEN_MCP_CONFIG") else CONFIG_PATH
    cfg = load_config(path)
    cfg.update(_env_overrides(env))
    cfg.update({k: v for k, v in (overrides or {}).items() if v not in (None, [], "")})
    return AppConfig(**_validate(cfg))


def validate_models(cfg: AppConfig) -> list[str]:
    """Return the unknown identifiers in the configured allow-list."""
    known = {m.value for m in ImageModel}
    return [m for m in cfg.models if m not in known]
