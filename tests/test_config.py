"""
Tests for configuration loading.

## Test Perspectives Table
| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|---------------------------------------|-----------------|-------|
| TC-CFG-N-01 | settings.yaml only | Equivalence – normal | Values from YAML | - |
| TC-CFG-N-02 | local.yaml override | Equivalence – merge | Deep-merged | siblings kept |
| TC-CFG-N-03 | ANKABOT_READINESS__MAX_WAIT_MS=5000 | Equivalence – env | int 5000 | - |
| TC-CFG-N-04 | Env "false" / "2.5" / "text" | Equivalence – coercion | bool / float / str | - |
| TC-CFG-B-01 | Missing config dir | Boundary – empty | Defaults | - |
| TC-CFG-A-01 | Unknown readiness key | Equivalence – abnormal | ValidationError | extra=forbid |
| TC-CFG-N-05 | get_profile_dir | Equivalence – normal | <profiles_dir>/<profile> | - |
| TC-CFG-N-06 | ensure_directories | Equivalence – normal | Configured dirs created | empty entries skipped |
"""

import os
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from src.utils.config import (
    _apply_env_overrides,
    _deep_merge,
    _load_yaml_config,
    ensure_directories,
    get_profile_dir,
    get_settings,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def config_dir(temp_dir: Path, monkeypatch) -> Path:
    """Isolated config directory with a fresh settings cache."""
    for key in list(os.environ):
        if key.startswith("ANKABOT_") and key != "ANKABOT_CONFIG_DIR":
            monkeypatch.delenv(key)
    monkeypatch.setenv("ANKABOT_CONFIG_DIR", str(temp_dir))
    get_settings.cache_clear()
    yield temp_dir
    get_settings.cache_clear()


def write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestLoading:
    """Tests for YAML and environment layering."""

    def test_settings_yaml(self, config_dir: Path) -> None:
        write_yaml(config_dir / "settings.yaml", {"readiness": {"poll_interval_ms": 100}})

        settings = get_settings()

        assert settings.readiness.poll_interval_ms == 100
        assert settings.readiness.idle_duration_ms == 500

    def test_local_yaml_deep_merges(self, config_dir: Path) -> None:
        write_yaml(
            config_dir / "settings.yaml",
            {"browser": {"headless": True, "locale": "en-US"}},
        )
        write_yaml(config_dir / "local.yaml", {"settings": {"browser": {"headless": False}}})

        settings = get_settings()

        assert settings.browser.headless is False
        assert settings.browser.locale == "en-US"

    def test_env_override(self, config_dir: Path, monkeypatch) -> None:
        monkeypatch.setenv("ANKABOT_READINESS__MAX_WAIT_MS", "5000")

        assert get_settings().readiness.max_wait_ms == 5000

    def test_missing_dir_uses_defaults(self, config_dir: Path, monkeypatch) -> None:
        monkeypatch.setenv("ANKABOT_CONFIG_DIR", str(config_dir / "absent"))

        settings = get_settings()

        assert settings.diagnostics.on_timeout == "report"
        assert settings.fetch.min_body_bytes == 512

    def test_unknown_readiness_key(self, config_dir: Path) -> None:
        write_yaml(config_dir / "settings.yaml", {"readiness": {"no_such_key": 1}})

        with pytest.raises(ValidationError):
            get_settings()

    def test_profile_dir(self, config_dir: Path) -> None:
        profiles = config_dir / "profiles"
        write_yaml(config_dir / "settings.yaml", {"browser": {"profiles_dir": str(profiles)}})

        assert get_profile_dir("work") == profiles / "work"
        assert get_profile_dir() == profiles / "default"

    def test_ensure_directories(self, config_dir: Path) -> None:
        write_yaml(
            config_dir / "settings.yaml",
            {
                "general": {"data_dir": str(config_dir / "data"), "logs_dir": ""},
                "storage": {"runs_dir": str(config_dir / "data" / "runs")},
                "browser": {"profiles_dir": str(config_dir / "data" / "profiles")},
            },
        )

        ensure_directories()

        assert (config_dir / "data" / "runs").is_dir()
        assert (config_dir / "data" / "profiles").is_dir()


class TestHelpers:
    """Tests for merge and coercion helpers."""

    def test_deep_merge_keeps_siblings(self) -> None:
        merged = _deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1}

    def test_env_coercion(self, monkeypatch) -> None:
        monkeypatch.setenv("ANKABOT_BROWSER__HEADLESS", "false")
        monkeypatch.setenv("ANKABOT_BROWSER__DEVICE_SCALE_FACTOR", "2.5")
        monkeypatch.setenv("ANKABOT_BROWSER__LOCALE", "fr-FR")

        config = _apply_env_overrides({})

        assert config["browser"]["headless"] is False
        assert config["browser"]["device_scale_factor"] == 2.5
        assert config["browser"]["locale"] == "fr-FR"

    def test_local_yaml_without_settings_key(self, temp_dir: Path) -> None:
        write_yaml(temp_dir / "settings.yaml", {"fetch": {"max_redirects": 3}})
        write_yaml(temp_dir / "local.yaml", {"fetch": {"max_redirects": 99}})

        assert _load_yaml_config(temp_dir) == {"fetch": {"max_redirects": 3}}
