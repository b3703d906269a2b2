from __future__ import annotations

from pathlib import Path

from orbitagent import config


def _use_settings(monkeypatch, settings: dict) -> None:
    monkeypatch.setattr(config, "load_settings", lambda force_reload=False: settings, raising=True)


def test_defaults_when_sections_missing(monkeypatch):
    _use_settings(monkeypatch, {})
    monkeypatch.delenv("ORBITAGENT_DATA_DIR", raising=False)

    assert config.get_rate_limit_settings() == config.RateLimitSettings(8, 60_000)
    assert config.get_breaker_settings() == config.BreakerSettings(3, 60_000)
    assert config.get_data_dir() == config.DEFAULT_DATA_DIR
    assert config.is_apply_disabled() is False
    assert config.get_healer_settings().ai_enabled is True


def test_empty_yaml_sections_fall_back_to_defaults(monkeypatch):
    _use_settings(
        monkeypatch,
        {
            "healer": None,
            "rate_limit": None,
            "circuit_breaker": None,
            "llm": None,
            "automation": None,
        },
    )
    monkeypatch.setenv("ORBITAGENT_DATA_DIR", "/srv/orbitagent")

    assert config.get_rate_limit_settings() == config.RateLimitSettings(8, 60_000)
    assert config.get_breaker_settings() == config.BreakerSettings(3, 60_000)
    assert config.get_healer_settings().ai_enabled is True
    assert config.get_selector_cache_dir() == Path("/srv/orbitagent/hints/selector-cache")
    assert config.get_llm_settings().model == "gpt-4o-mini"
    assert config.is_apply_disabled() is False


def test_data_dir_env_overrides_file(monkeypatch, tmp_path):
    _use_settings(monkeypatch, {"data_dir": "/srv/orbitagent"})
    monkeypatch.setenv("ORBITAGENT_DATA_DIR", str(tmp_path))

    assert config.get_data_dir() == tmp_path
    assert config.get_selector_cache_dir() == tmp_path / "hints" / "selector-cache"


def test_hints_dirs_priority(monkeypatch, tmp_path):
    _use_settings(monkeypatch, {"hints_dirs": ["/opt/hints"]})
    monkeypatch.setenv("ORBITAGENT_DATA_DIR", str(tmp_path))

    assert config.get_hints_dirs() == [
        Path("/opt/hints"),
        tmp_path / "skills",
        config.PACKAGE_DIR / "hints",
    ]


def test_section_overrides(monkeypatch):
    _use_settings(
        monkeypatch,
        {
            "rate_limit": {"max_actions": "4", "window_ms": 30000},
            "circuit_breaker": {"failure_threshold": 5},
            "healer": {"cache_dir": "/tmp/repairs", "ai_enabled": False},
            "llm": {"model": "gpt-4o", "fallback_models": ["gpt-4o", "gpt-4o-mini"]},
            "automation": {"apply_disabled": True},
        },
    )

    assert config.get_rate_limit_settings() == config.RateLimitSettings(4, 30_000)
    assert config.get_breaker_settings().failure_threshold == 5
    assert config.get_breaker_settings().reset_timeout_ms == 60_000
    healer = config.get_healer_settings()
    assert healer.cache_dir == Path("/tmp/repairs")
    assert healer.ai_enabled is False
    assert config.get_llm_settings().models == ["gpt-4o", "gpt-4o-mini"]
    assert config.is_apply_disabled() is True


def test_load_settings_reads_override_path(monkeypatch, tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("rate_limit:\n  max_actions: 2\n", encoding="utf-8")
    monkeypatch.setenv("ORBITAGENT_CONFIG", str(path))
    monkeypatch.setattr(config, "_settings_cache", None)

    assert config.load_settings()["rate_limit"]["max_actions"] == 2
    # cached until forced
    path.write_text("rate_limit:\n  max_actions: 6\n", encoding="utf-8")
    assert config.load_settings()["rate_limit"]["max_actions"] == 2
    assert config.load_settings(force_reload=True)["rate_limit"]["max_actions"] == 6


def test_missing_config_file_yields_empty_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("ORBITAGENT_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setattr(config, "_settings_cache", None)

    assert config.load_settings() == {}
