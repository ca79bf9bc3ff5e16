"""
Page probe orchestration.

Ties the fetch strategy selector, the render session manager and the
timeout policy together for one URL, and writes the terminal record.
"""

import time
from collections.abc import Callable

from src.probe.antibot import assess_http_body
from src.probe.artifacts import ArtifactStore
from src.probe.diagnostics import EXIT_OK, TimeoutPolicy
from src.probe.errors import ReadinessTimeoutError
from src.probe.http_fetcher import HTTPFetcher, is_redirect
from src.probe.models import (
    FetchOutcome,
    ProbeOutcome,
    ProbeRequest,
    ProbeResult,
    RenderOutcome,
)
from src.probe.session import RenderSessionManager, SessionConfig
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class PageProbe:
    """Probe a single page.

    Args:
        session_config: Configuration of the first render attempt.
        headful_fallback: Retry once headful after a headless failure.
        fetcher: Plain HTTP fetcher.
        manager_factory: Builds the render session manager.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        session_config: SessionConfig,
        headful_fallback: bool = True,
        fetcher: HTTPFetcher | None = None,
        manager_factory: Callable[[], RenderSessionManager] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher or HTTPFetcher()
        self._clock = clock
        self._manager_factory = manager_factory or (
            lambda: RenderSessionManager(session_config, headful_fallback, clock=clock)
        )

    async def run(self, request: ProbeRequest, store: ArtifactStore) -> ProbeOutcome:
        """Probe ``request.url`` and write ``result.json`` into the run directory.

        Args:
            request: Probe request.
            store: Artifact store of this run.

        Returns:
            ProbeOutcome with exit code and terminal record.

        Raises:
            ProbeFailedError: Readiness failed with ``fail`` disposition.
            ProbeError: Fatal launch, session or capture error.
        """
        with LogContext(run_id=store.run_id, url=request.url):
            outcome = await self._run(request, store)
            outcome.record_path = str(store.write_record(outcome.record))
            return outcome

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    async def _run(self, request: ProbeRequest, store: ArtifactStore) -> ProbeOutcome:
        started = self._clock()
        deadline = started + request.max_wait_ms / 1000.0
        logger.info("Probe started", max_wait_ms=request.max_wait_ms)

        fetch: FetchOutcome | None = None
        requires_javascript = True
        if request.force_render:
            logger.info("HTTP check skipped (forced render)")
        else:
            fetch = await self._fetcher.fetch(
                request.url, timeout=max(deadline - self._clock(), 0.0)
            )
            requires_javascript = fetch.needs_render
            if request.force_http or not (
                requires_javascript or request.wants_visual_artifacts
            ):
                return self._http_result(request, store, fetch, started)

        manager = self._manager_factory()
        try:
            render = await manager.render(request, deadline)
        except ReadinessTimeoutError as e:
            policy = TimeoutPolicy(request.on_timeout, store)
            return policy.apply(
                e,
                url=request.url,
                deadline_ms=request.max_wait_ms,
                elapsed_ms=self._elapsed_ms(started),
                requires_javascript=requires_javascript,
            )

        return self._render_result(request, store, render, fetch, requires_javascript, started)

    def _http_result(
        self,
        request: ProbeRequest,
        store: ArtifactStore,
        fetch: FetchOutcome,
        started: float,
    ) -> ProbeOutcome:
        verdict = assess_http_body(fetch.body, fetch.headers)
        html_path = str(store.write_html(fetch.text)) if fetch.body else None

        result = ProbeResult(
            input_url=request.url,
            final_url=fetch.final_url,
            http_status=fetch.status,
            redirected=fetch.redirected,
            requires_javascript=fetch.needs_render,
            waf_detected=verdict.waf_detected,
            anti_bot_vendor=verdict.vendor,
            js_challenge_page=verdict.js_challenge,
            html_path=html_path,
            elapsed_ms=self._elapsed_ms(started),
            pages_crawled=0,
            run_id=store.run_id,
            run_dir=str(store.run_dir),
        )
        logger.info(
            "Probe complete (http)",
            status=fetch.status,
            requires_javascript=result.requires_javascript,
            elapsed_ms=result.elapsed_ms,
        )
        return ProbeOutcome(exit_code=EXIT_OK, result=result)

    def _render_result(
        self,
        request: ProbeRequest,
        store: ArtifactStore,
        render: RenderOutcome,
        fetch: FetchOutcome | None,
        requires_javascript: bool,
        started: float,
    ) -> ProbeOutcome:
        artifacts = render.artifacts
        html_path = str(store.write_html(artifacts.html))

        screenshot_path = None
        if artifacts.screenshot is not None:
            screenshot_path = str(store.write_screenshot(artifacts.screenshot))
        pdf_path = None
        if artifacts.pdf is not None:
            pdf_path = str(store.write_pdf(artifacts.pdf))
        cookies_path = None
        if artifacts.cookies is not None:
            cookies_path = str(store.write_cookies(artifacts.cookies))

        http_status = render.status or (fetch.status if fetch else 0)
        result = ProbeResult(
            input_url=request.url,
            final_url=render.final_url,
            http_status=http_status,
            redirected=is_redirect(request.url, render.final_url),
            requires_javascript=requires_javascript,
            waf_detected=render.verdict.waf_detected,
            anti_bot_vendor=render.verdict.vendor,
            js_challenge_page=render.verdict.js_challenge,
            screenshot_path=screenshot_path,
            pdf_path=pdf_path,
            html_path=html_path,
            cookies_path=cookies_path,
            elapsed_ms=self._elapsed_ms(started),
            pages_crawled=1,
            wait_branch=render.readiness.branch.value,
            run_id=store.run_id,
            run_dir=str(store.run_dir),
        )
        logger.info(
            "Probe complete (browser)",
            status=http_status,
            wait_branch=result.wait_branch,
            headless=render.headless,
            attempts=render.attempts,
            js_challenge=result.js_challenge_page,
            elapsed_ms=result.elapsed_ms,
        )
        return ProbeOutcome(exit_code=EXIT_OK, result=result)
