"""
Pytest fixtures and configuration for ankabot tests.

=============================================================================
Test Classification
=============================================================================

Primary Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  - Fast (<1s per test)
  - Browser and network fully mocked
  - DEFAULT: Tests without marker are auto-classified as unit

- @pytest.mark.integration: Multiple components, mocked browser/network
  - Component integration verified (selector -> session -> policy -> store)

- @pytest.mark.e2e: Real Chromium and network access
  - DEFAULT EXCLUDED: Must use `pytest -m e2e` to run

=============================================================================
Mock Strategy
=============================================================================

- Playwright: AsyncMock page/context objects, or an injected session factory
- curl_cffi: patched AsyncSession
- Time: FakeClock (monotonic seconds + async sleep that advances the clock)
- File I/O: temp_dir fixture
"""

import os
import tempfile
from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before importing anything else
os.environ["ANKABOT_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["ANKABOT_GENERAL__LOG_LEVEL"] = "DEBUG"
os.environ["ANKABOT_GENERAL__LOGS_DIR"] = ""


# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests with mocked browser and network"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring Chromium and network (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without explicit markers are assumed to be unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_settings(temp_dir: Path):
    """Create settings pointing all storage into temp_dir."""
    from src.utils.config import (
        BrowserConfig,
        DiagnosticsConfig,
        FetchConfig,
        GeneralConfig,
        ReadinessConfig,
        Settings,
        StorageConfig,
    )

    return Settings(
        general=GeneralConfig(log_level="DEBUG", logs_dir=""),
        fetch=FetchConfig(),
        browser=BrowserConfig(profiles_dir=str(temp_dir / "profiles")),
        readiness=ReadinessConfig(),
        diagnostics=DiagnosticsConfig(capture_timeout_ms=500),
        storage=StorageConfig(runs_dir=str(temp_dir / "runs")),
    )


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_page() -> MagicMock:
    """Playwright Page double with async methods."""
    page = MagicMock()
    page.url = "https://example.com/"
    page.evaluate = AsyncMock(return_value=None)
    page.content = AsyncMock(return_value="<html><body>ok</body></html>")
    page.screenshot = AsyncMock(return_value=b"\x89PNG")
    page.pdf = AsyncMock(return_value=b"%PDF-1.7")
    page.goto = AsyncMock(return_value=MagicMock(status=200))
    return page
