"""
Configuration module for loading engine settings.

Settings come from ``orbitagent/config.yaml`` (path overridable with the
``ORBITAGENT_CONFIG`` environment variable). Missing keys fall back to the
defaults in ``orbitagent.constants``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .. import constants


PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PACKAGE_DIR / "config.yaml"
DEFAULT_DATA_DIR = Path("~/.cache/orbitagent").expanduser()


_settings_cache: Optional[dict] = None


@dataclass
class RateLimitSettings:
    max_actions: int = constants.MAX_ACTIONS_PER_MINUTE
    window_ms: int = 60_000


@dataclass
class BreakerSettings:
    failure_threshold: int = constants.BREAKER_FAILURE_THRESHOLD
    reset_timeout_ms: int = constants.BREAKER_RESET_TIMEOUT_MS


@dataclass
class HealerSettings:
    cache_dir: Path
    ai_enabled: bool = True


@dataclass
class LLMSettings:
    model: str = "gpt-4o-mini"
    fallback_models: list[str] = field(default_factory=list)
    temperature: float = 0.0

    @property
    def models(self) -> list[str]:
        models = [self.model] if self.model else []
        return models + [m for m in self.fallback_models if m not in models]


def get_config_path() -> Path:
    override = os.getenv("ORBITAGENT_CONFIG")
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


def load_settings(force_reload: bool = False) -> dict:
    """
    Load engine settings from YAML file.
    Caches the result for performance.

    Returns:
        dict: Settings data (empty when the file is missing or invalid)
    """
    global _settings_cache

    if _settings_cache is not None and not force_reload:
        return _settings_cache

    config_path = get_config_path()
    if not config_path.exists():
        print(f"⚠️ Config not found, using defaults: {config_path}")
        _settings_cache = {}
        return _settings_cache

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            _settings_cache = yaml.safe_load(f) or {}
        return _settings_cache
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return {}


def get_data_dir() -> Path:
    settings = load_settings()
    raw = os.getenv("ORBITAGENT_DATA_DIR") or settings.get("data_dir")
    return Path(raw).expanduser() if raw else DEFAULT_DATA_DIR


def get_hints_dirs() -> list[Path]:
    """
    Skill/hint search directories, in priority order.

    User directory first, then the bundled ``orbitagent/hints``.
    """
    settings = load_settings()
    dirs = [Path(d).expanduser() for d in settings.get("hints_dirs") or []]
    dirs.append(get_data_dir() / "skills")
    dirs.append(PACKAGE_DIR / "hints")
    return dirs


def get_selector_cache_dir() -> Path:
    """选择器修复缓存目录（按平台一个 JSON 文件）。"""
    settings = load_settings()
    raw = (settings.get("healer") or {}).get("cache_dir")
    if raw:
        return Path(raw).expanduser()
    return get_data_dir() / "hints" / "selector-cache"


def get_healer_settings() -> HealerSettings:
    cfg = load_settings().get("healer") or {}
    return HealerSettings(
        cache_dir=get_selector_cache_dir(),
        ai_enabled=bool(cfg.get("ai_enabled", True)),
    )


def get_rate_limit_settings() -> RateLimitSettings:
    cfg = load_settings().get("rate_limit") or {}
    return RateLimitSettings(
        max_actions=int(cfg.get("max_actions", constants.MAX_ACTIONS_PER_MINUTE)),
        window_ms=int(cfg.get("window_ms", 60_000)),
    )


def get_breaker_settings() -> BreakerSettings:
    cfg = load_settings().get("circuit_breaker") or {}
    return BreakerSettings(
        failure_threshold=int(
            cfg.get("failure_threshold", constants.BREAKER_FAILURE_THRESHOLD)
        ),
        reset_timeout_ms=int(
            cfg.get("reset_timeout_ms", constants.BREAKER_RESET_TIMEOUT_MS)
        ),
    )


def get_llm_settings() -> LLMSettings:
    cfg = load_settings().get("llm") or {}
    return LLMSettings(
        model=cfg.get("model", "gpt-4o-mini"),
        fallback_models=list(cfg.get("fallback_models") or []),
        temperature=float(cfg.get("temperature", 0.0)),
    )


def is_apply_disabled() -> bool:
    """自动投递总开关（config.yaml: automation.apply_disabled）。"""
    return bool((load_settings().get("automation") or {}).get("apply_disabled", False))
