"""
Integration tests for PageProbe.

The HTTP fetcher and render session manager are replaced with mocks; the
artifact store writes into a temporary directory.

## Test Perspectives Table
| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|---------------------------------------|-----------------|-------|
| TC-PP-N-01 | 2KB static page | Equivalence – normal | pages_crawled=0, no browser | HTTP short-circuit |
| TC-PP-N-02 | 40-byte loading shell | Equivalence – normal | requires_javascript=True, rendered | wait_branch recorded |
| TC-PP-N-03 | Static page + screenshot wanted | Equivalence – visual artifacts | Rendered, requires_javascript=False | - |
| TC-PP-N-04 | force_render | Equivalence – normal | No HTTP fetch | - |
| TC-PP-N-05 | force_http on SPA shell | Equivalence – normal | HTTP result as-is | - |
| TC-PP-A-01 | Readiness timeout, report | Equivalence – timeout | Exit 2, diagnostics fields present | result.json written |
| TC-PP-A-02 | Readiness timeout, continue | Equivalence – timeout | Exit 0, pages_crawled=1 | - |
| TC-PP-A-03 | Readiness timeout, fail | Equivalence – timeout | ProbeFailedError | - |
| TC-PP-N-06 | Challenge page rendered | Equivalence – anti-bot | js_challenge_page + waf_detected | - |
| TC-PP-B-01 | Render status 0 | Boundary | Falls back to fetch status | - |
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.probe.artifacts import ArtifactStore
from src.probe.errors import ProbeFailedError, ReadinessTimeoutError
from src.probe.models import (
    AntiBotVerdict,
    Artifacts,
    DiagnosticsCapture,
    FetchOutcome,
    OnTimeout,
    ProbeRequest,
    ReadinessBranch,
    ReadinessResult,
    RenderOutcome,
)
from src.probe.orchestrator import PageProbe
from src.probe.session import SessionConfig
from src.utils.config import StorageConfig

pytestmark = pytest.mark.integration

STATIC_PAGE = (
    b"<html><body>"
    + b"".join(b'<a href="/p/%d">Page %d</a>' % (i, i) for i in range(5))
    + b"<p>"
    + b"x" * 2048
    + b"</p></body></html>"
)
LOADING_SHELL = b'<html><body><div id="root"></div></body></html>'[:40]


def make_fetch(body: bytes, status: int = 200, renderable: bool | None = None) -> FetchOutcome:
    return FetchOutcome(
        url="https://example.com/",
        final_url="https://example.com/",
        status=status,
        body=body,
        content_type="text/html",
        looks_renderable=len(body) >= 512 if renderable is None else renderable,
    )


def make_render(
    branch: ReadinessBranch = ReadinessBranch.NETWORK_IDLE,
    status: int = 200,
    screenshot: bytes | None = None,
    verdict: AntiBotVerdict | None = None,
) -> RenderOutcome:
    return RenderOutcome(
        final_url="https://example.com/app",
        status=status,
        readiness=ReadinessResult.settled(branch),
        artifacts=Artifacts(html="<html><body>rendered</body></html>", screenshot=screenshot),
        verdict=verdict or AntiBotVerdict(),
    )


def make_probe(fetch: FetchOutcome | None = None, render=None, render_error=None):
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(return_value=fetch)
    manager = MagicMock()
    manager.render = AsyncMock(return_value=render, side_effect=render_error)
    factory = MagicMock(return_value=manager)
    probe = PageProbe(
        SessionConfig(profile_dir="/tmp/profile"),
        fetcher=fetcher,
        manager_factory=factory,
    )
    return probe, fetcher, factory, manager


@pytest.fixture
def store(temp_dir: Path) -> ArtifactStore:
    return ArtifactStore(run_id="run42", run_dir=temp_dir / "run", config=StorageConfig())


def read_record(outcome) -> dict:
    return json.loads(Path(outcome.record_path).read_text())


class TestHttpPath:
    """Tests for requests answered by the plain HTTP check."""

    @pytest.mark.asyncio
    async def test_static_page_skips_browser(self, store) -> None:
        # Given: A server returning a 2KB page with links
        probe, fetcher, factory, _ = make_probe(fetch=make_fetch(STATIC_PAGE))

        # When: Probing
        outcome = await probe.run(ProbeRequest(url="https://example.com/"), store)

        # Then: The HTTP result is returned and no browser session was built
        assert outcome.exit_code == 0
        assert outcome.result.pages_crawled == 0
        assert outcome.result.requires_javascript is False
        assert outcome.result.http_status == 200
        factory.assert_not_called()
        assert Path(outcome.result.html_path).read_bytes() == STATIC_PAGE
        assert read_record(outcome)["pages_crawled"] == 0

    @pytest.mark.asyncio
    async def test_fetch_is_bounded_by_deadline(self, store) -> None:
        probe, fetcher, _, _ = make_probe(fetch=make_fetch(STATIC_PAGE))

        await probe.run(ProbeRequest(url="https://example.com/", max_wait_ms=250), store)

        timeout = fetcher.fetch.call_args.kwargs["timeout"]
        assert 0 < timeout <= 0.25

    @pytest.mark.asyncio
    async def test_force_http_keeps_shell(self, store) -> None:
        probe, _, factory, _ = make_probe(fetch=make_fetch(LOADING_SHELL))

        outcome = await probe.run(
            ProbeRequest(url="https://example.com/", force_http=True), store
        )

        assert outcome.result.requires_javascript is True
        assert outcome.result.pages_crawled == 0
        factory.assert_not_called()


class TestRenderPath:
    """Tests for requests that need the browser."""

    @pytest.mark.asyncio
    async def test_loading_shell_is_rendered(self, store) -> None:
        # Given: A 40-byte loading shell
        probe, _, factory, manager = make_probe(
            fetch=make_fetch(LOADING_SHELL), render=make_render()
        )

        # When: Probing
        outcome = await probe.run(ProbeRequest(url="https://example.com/"), store)

        # Then: Rendered, flagged as JS-dependent, branch recorded
        result = outcome.result
        assert outcome.exit_code == 0
        assert result.requires_javascript is True
        assert result.pages_crawled == 1
        assert result.wait_branch == "network_idle"
        assert result.redirected is True
        assert result.final_url == "https://example.com/app"
        factory.assert_called_once()
        manager.render.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_visual_artifacts_force_render(self, store) -> None:
        probe, _, factory, _ = make_probe(
            fetch=make_fetch(STATIC_PAGE), render=make_render(screenshot=b"\x89PNG")
        )

        outcome = await probe.run(
            ProbeRequest(url="https://example.com/", want_screenshot=True), store
        )

        result = outcome.result
        assert result.requires_javascript is False
        assert result.pages_crawled == 1
        assert Path(result.screenshot_path).read_bytes() == b"\x89PNG"
        factory.assert_called_once()

    @pytest.mark.asyncio
    async def test_force_render_skips_fetch(self, store) -> None:
        probe, fetcher, _, _ = make_probe(render=make_render(ReadinessBranch.READY_STATE))

        outcome = await probe.run(
            ProbeRequest(url="https://example.com/", force_render=True), store
        )

        fetcher.fetch.assert_not_called()
        assert outcome.result.wait_branch == "ready_state"

    @pytest.mark.asyncio
    async def test_challenge_page_flags(self, store) -> None:
        verdict = AntiBotVerdict(
            js_challenge=True,
            waf_detected=True,
            vendor="cloudflare",
            matched_phrase="verifying you are human",
        )
        probe, _, _, _ = make_probe(
            fetch=make_fetch(LOADING_SHELL), render=make_render(verdict=verdict)
        )

        outcome = await probe.run(ProbeRequest(url="https://example.com/"), store)

        assert outcome.result.js_challenge_page is True
        assert outcome.result.waf_detected is True
        assert outcome.result.anti_bot_vendor == "cloudflare"

    @pytest.mark.asyncio
    async def test_render_status_falls_back_to_fetch_status(self, store) -> None:
        probe, _, _, _ = make_probe(
            fetch=make_fetch(LOADING_SHELL, status=203), render=make_render(status=0)
        )

        outcome = await probe.run(ProbeRequest(url="https://example.com/"), store)

        assert outcome.result.http_status == 203


def timeout_error() -> ReadinessTimeoutError:
    return ReadinessTimeoutError(
        "Navigation failed: Timeout 1ms exceeded.",
        diagnostics=DiagnosticsCapture(html="<html></html>"),
        branch="navigation",
    )


class TestTimeouts:
    """Tests for readiness failures routed through the timeout policy."""

    @pytest.mark.asyncio
    async def test_report_disposition(self, store) -> None:
        # Given: A 1ms budget; the HTTP check fails and navigation times out
        fetch = FetchOutcome(
            url="https://example.com/", final_url="https://example.com/", error="timed out"
        )
        probe, _, _, _ = make_probe(fetch=fetch, render_error=timeout_error())

        # When: Probing with the default report disposition
        outcome = await probe.run(ProbeRequest(url="https://example.com/", max_wait_ms=1), store)

        # Then: Distinct exit code and a diagnostics record on disk
        assert outcome.exit_code == 2
        record = read_record(outcome)
        assert record["status"] == "timeout"
        assert record["wait_branch"] == "navigation"
        assert record["deadline_ms"] == 1
        assert "pending_requests" in record["diagnostics"]
        assert "dom_text_chars" in record["diagnostics"]
        assert record["artifacts"]["html"] is not None

    @pytest.mark.asyncio
    async def test_continue_disposition(self, store) -> None:
        probe, _, _, _ = make_probe(
            fetch=make_fetch(LOADING_SHELL), render_error=timeout_error()
        )

        outcome = await probe.run(
            ProbeRequest(url="https://example.com/", on_timeout=OnTimeout.CONTINUE), store
        )

        assert outcome.exit_code == 0
        assert outcome.result.pages_crawled == 1
        assert outcome.result.requires_javascript is True

    @pytest.mark.asyncio
    async def test_fail_disposition(self, store) -> None:
        probe, _, _, _ = make_probe(
            fetch=make_fetch(LOADING_SHELL), render_error=timeout_error()
        )

        with pytest.raises(ProbeFailedError):
            await probe.run(
                ProbeRequest(url="https://example.com/", on_timeout=OnTimeout.FAIL), store
            )

        assert not (store.run_dir / "result.json").exists()
