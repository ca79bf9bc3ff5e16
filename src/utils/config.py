"""
Configuration management for ankabot.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "ankabot"
    version: str = "0.1.0"
    log_level: str = "INFO"
    log_json: bool = True
    data_dir: str = "data"
    logs_dir: str = "logs"


class FetchConfig(BaseModel):
    """Plain HTTP fetch configuration (fetch strategy selection)."""

    model_config = ConfigDict(extra="forbid")

    timeout_seconds: float = 10.0
    max_redirects: int = 10
    min_body_bytes: int = 512
    user_agent: str = DEFAULT_USER_AGENT
    impersonate: str = "chrome"
    accept_language: str = "en-US,en;q=0.9"


class GeolocationConfig(BaseModel):
    """Geolocation override."""

    latitude: float
    longitude: float
    accuracy: float = 50.0


class BrowserConfig(BaseModel):
    """Browser launch and session configuration."""

    headless: bool = True
    headful_fallback: bool = True
    profiles_dir: str = "data/profiles"
    profile: str = "default"
    viewport_width: int = 1366
    viewport_height: int = 900
    device_scale_factor: float = 1.0
    is_mobile: bool = False
    proxy: str | None = None
    extension_dirs: list[str] = Field(default_factory=list)
    locale: str | None = "en-US"
    timezone_id: str | None = None
    geolocation: GeolocationConfig | None = None
    user_agent: str = DEFAULT_USER_AGENT
    platform: str = "Win32"
    launch_timeout_ms: int = 30000


class ReadinessConfig(BaseModel):
    """Readiness engine thresholds.

    All durations are in milliseconds.
    """

    model_config = ConfigDict(extra="forbid")

    wait_ready: str = "auto"  # auto, ready_state, network_idle, heuristic, none
    accept_interactive: bool = False
    max_wait_ms: int = 30000
    poll_interval_ms: int = 150
    idle_threshold: int = 0
    idle_duration_ms: int = 500
    idle_ignore_pattern: str | None = None
    heuristic_min_text: int = 200
    heuristic_confirm_ms: int = 600
    media_wait_ms: int = 800
    selector_timeout_ms: int = 10000
    pdf_media_wait_ms: int = 2000


class DiagnosticsConfig(BaseModel):
    """Timeout & diagnostics policy configuration."""

    on_timeout: str = "report"  # report, continue, fail
    capture_timeout_ms: int = 5000
    capture_html: bool = True
    capture_screenshot: bool = True
    capture_pdf: bool = True


class StorageConfig(BaseModel):
    """Storage configuration."""

    runs_dir: str = "data/runs"
    html_filename: str = "page.html"
    screenshot_filename: str = "screenshot.png"
    pdf_filename: str = "page.pdf"
    cookies_filename: str = "cookies.json"
    result_filename: str = "result.json"


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml with local.yaml overrides.

    local.yaml holds per-machine overrides under a top-level ``settings`` key.

    Example local.yaml:
        settings:
          browser:
            headless: false

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config = _load_yaml_file(config_dir / "settings.yaml")
    local_overrides = _load_yaml_file(config_dir / "local.yaml")
    if "settings" in local_overrides:
        config = _deep_merge(config, local_overrides["settings"] or {})
    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with ANKABOT_ and use
    double underscores for nested keys.

    Example:
        ANKABOT_READINESS__MAX_WAIT_MS=5000

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "ANKABOT_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "ANKABOT_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get("ANKABOT_CONFIG_DIR", "config"))
    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)
    return Settings(**config)


def get_profile_dir(profile: str | None = None) -> Path:
    """Resolve the persistent browser profile directory for a profile name.

    Args:
        profile: Profile name. Uses the configured default if None.

    Returns:
        Absolute profile directory path (not created here).
    """
    settings = get_settings()
    base = Path(settings.browser.profiles_dir)
    if not base.is_absolute():
        base = Path.cwd() / base
    return base / (profile or settings.browser.profile)


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    settings = get_settings()
    dirs = [
        settings.general.data_dir,
        settings.general.logs_dir,
        settings.storage.runs_dir,
        settings.browser.profiles_dir,
    ]

    for dir_path in dirs:
        if dir_path:
            Path(dir_path).mkdir(parents=True, exist_ok=True)
