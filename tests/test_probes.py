"""
Tests for page signal probes.

## Test Perspectives Table
| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|---------------------------------------|-----------------|-------|
| TC-PS-N-01 | evaluate returns "complete" | Equivalence – normal | "complete" | - |
| TC-PS-N-02 | evaluate returns [2, 14] | Equivalence – normal | NetworkSignal(2, 14) | - |
| TC-PS-N-03 | evaluate returns [512, True] | Equivalence – normal | DomSignal(512, True) | container selector passed |
| TC-PS-N-04 | evaluate returns [3, 1, True] | Equivalence – normal | MediaSignal unsettled | - |
| TC-PS-A-01 | evaluate raises (context destroyed) | Equivalence – abnormal | network/dom None, others neutral | never raises |
| TC-PS-A-02 | evaluate hangs | Boundary – timeout | Neutral value after bound | - |
| TC-PS-A-03 | Malformed return value | Equivalence – abnormal | network/dom None, media neutral | - |
| TC-PS-B-02 | Caller timeout below cap | Boundary – timeout | Read gives up at caller bound | - |
| TC-PS-B-03 | Caller timeout above cap | Boundary | Capped at timeout_ms | - |
| TC-PS-B-01 | timeout_ms below minimum | Boundary | Clamped to 50ms | - |
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.probe.probes import (
    DOM_HEURISTIC_JS,
    PRIMARY_CONTAINER_SELECTOR,
    SELECTOR_JS,
    DomSignal,
    MediaSignal,
    NetworkSignal,
    PageProbeSource,
)

pytestmark = pytest.mark.unit


class TestPageProbeSource:
    """Tests for the Playwright-backed probe source."""

    @pytest.mark.asyncio
    async def test_ready_state(self, mock_page) -> None:
        mock_page.evaluate = AsyncMock(return_value="complete")
        assert await PageProbeSource(mock_page).ready_state() == "complete"

    @pytest.mark.asyncio
    async def test_network(self, mock_page) -> None:
        mock_page.evaluate = AsyncMock(return_value=[2, 14])
        signal = await PageProbeSource(mock_page).network()
        assert signal == NetworkSignal(pending=2, resource_count=14)

    @pytest.mark.asyncio
    async def test_dom_passes_container_selector(self, mock_page) -> None:
        mock_page.evaluate = AsyncMock(return_value=[512, True])

        signal = await PageProbeSource(mock_page).dom()

        assert signal == DomSignal(text_length=512, has_primary_container=True)
        mock_page.evaluate.assert_awaited_once_with(DOM_HEURISTIC_JS, PRIMARY_CONTAINER_SELECTOR)

    @pytest.mark.asyncio
    async def test_media_unsettled(self, mock_page) -> None:
        mock_page.evaluate = AsyncMock(return_value=[3, 1, True])

        signal = await PageProbeSource(mock_page).media()

        assert signal.images_incomplete == 1
        assert signal.settled is False

    @pytest.mark.asyncio
    async def test_selector_present(self, mock_page) -> None:
        mock_page.evaluate = AsyncMock(return_value=True)

        assert await PageProbeSource(mock_page).selector_present("#app") is True
        mock_page.evaluate.assert_awaited_once_with(SELECTOR_JS, "#app")

    @pytest.mark.asyncio
    async def test_evaluate_error_never_raises(self, mock_page) -> None:
        # Given: A page whose execution context was destroyed by navigation
        mock_page.evaluate = AsyncMock(
            side_effect=Exception("Execution context was destroyed")
        )
        source = PageProbeSource(mock_page)

        # When/Then: Network and DOM are unknown, the rest neutral
        assert await source.ready_state() is None
        assert await source.network() is None
        assert await source.dom() is None
        assert await source.media() == MediaSignal()
        assert await source.selector_present("#app") is False

    @pytest.mark.asyncio
    async def test_hanging_evaluate_is_bounded(self, mock_page) -> None:
        async def hang(*args):
            await asyncio.sleep(10)

        mock_page.evaluate = hang
        source = PageProbeSource(mock_page, timeout_ms=50)

        result = await asyncio.wait_for(source.ready_state(), timeout=2)

        assert result is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, "x", [1], {"pending": 1}])
    async def test_malformed_values(self, mock_page, value) -> None:
        mock_page.evaluate = AsyncMock(return_value=value)
        source = PageProbeSource(mock_page)

        assert await source.network() is None
        assert await source.dom() is None
        assert await source.media() == MediaSignal()

    @pytest.mark.asyncio
    async def test_caller_timeout_shortens_read(self, mock_page) -> None:
        # Given: A long per-read cap and a page that never answers
        async def hang(*args):
            await asyncio.sleep(10)

        mock_page.evaluate = hang
        source = PageProbeSource(mock_page, timeout_ms=5000)

        # When: The caller has only 50ms left
        result = await asyncio.wait_for(source.network(timeout=0.05), timeout=1)

        # Then: The read gives up at the caller's bound
        assert result is None

    def test_caller_timeout_never_exceeds_cap(self, mock_page) -> None:
        source = PageProbeSource(mock_page, timeout_ms=150)

        assert source._bound(None) == pytest.approx(0.15)
        assert source._bound(0.04) == pytest.approx(0.04)
        assert source._bound(5.0) == pytest.approx(0.15)
        assert source._bound(0.0) > 0

    def test_timeout_is_clamped(self, mock_page) -> None:
        source = PageProbeSource(mock_page, timeout_ms=1)
        assert source._timeout == pytest.approx(0.05)


class TestMediaSignal:
    """Tests for the media settled rule."""

    def test_settled_requires_fonts_and_images(self) -> None:
        assert MediaSignal(images_total=2, images_incomplete=0, fonts_loaded=True).settled
        assert not MediaSignal(images_total=2, images_incomplete=0, fonts_loaded=False).settled
        assert not MediaSignal(images_total=2, images_incomplete=2, fonts_loaded=True).settled
