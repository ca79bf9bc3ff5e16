"""
Timeout and diagnostics policy.

Runs only after readiness failed or a bounded operation ran out of time:
classify the failing branch, capture whatever page state is still reachable,
then apply the caller's disposition (report, continue or fail).
"""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from src.probe.artifacts import ArtifactStore
from src.probe.errors import (
    ProbeErrorCode,
    ProbeFailedError,
    ReadinessTimeoutError,
    SessionError,
)
from src.probe.instrumentor import PENDING_REQUESTS_JS
from src.probe.models import (
    DiagnosticsCapture,
    OnTimeout,
    ProbeOutcome,
    ProbeResult,
    ReadinessBranch,
    TimeoutArtifacts,
    TimeoutDiagnostics,
    TimeoutReport,
)
from src.utils.config import DiagnosticsConfig, get_settings
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_TIMEOUT_REPORT = 2

DIAGNOSTICS_JS = f"""
() => {{
    const body = document.body;
    const text = body ? (body.innerText || '') : '';
    const images = Array.from(document.images || []);
    return {{
        dom_text_chars: text.trim().length,
        images_total: images.length,
        images_incomplete: images.filter(img => !img.complete).length,
        pending_requests: ({PENDING_REQUESTS_JS})(),
    }};
}}
"""


def classify_failure(error: BaseException) -> ReadinessBranch:
    """Name the branch that failed, for reporting only.

    Args:
        error: The error routed to diagnostics.

    Returns:
        ReadinessBranch describing where the run stalled.
    """
    if isinstance(error, ReadinessTimeoutError) and error.branch:
        return ReadinessBranch(error.branch)
    if isinstance(error, SessionError) and error.code == ProbeErrorCode.NAVIGATION_FAILED:
        return ReadinessBranch.NAVIGATION

    message = str(error).lower()
    if "selector" in message:
        return ReadinessBranch.SELECTOR
    if "networkidle" in message or "network" in message:
        return ReadinessBranch.NETWORK_IDLE
    if "goto" in message or "navigat" in message:
        return ReadinessBranch.NAVIGATION
    if "load" in message or "readystate" in message:
        return ReadinessBranch.READY_STATE
    return ReadinessBranch.HEURISTIC


async def _bounded(
    name: str,
    capture: DiagnosticsCapture,
    coro: Awaitable[Any],
    timeout: float,
) -> Any:
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except Exception as e:
        capture.errors[name] = str(e) or type(e).__name__
        logger.debug("Diagnostic capture failed", capture=name, error=str(e))
        return None


async def capture_diagnostics(
    page: "Page",
    config: DiagnosticsConfig | None = None,
) -> DiagnosticsCapture:
    """Capture page state after a readiness failure.

    Every capture is independently bounded; a failure in one is recorded in
    ``errors`` and never aborts the others.

    Args:
        page: Playwright page, possibly mid-navigation.
        config: Diagnostics configuration.

    Returns:
        DiagnosticsCapture instance.
    """
    config = config or get_settings().diagnostics
    timeout = max(config.capture_timeout_ms, 1) / 1000.0
    capture = DiagnosticsCapture()

    signals = await _bounded("signals", capture, page.evaluate(DIAGNOSTICS_JS), timeout)
    if isinstance(signals, dict):
        capture.dom_text_chars = int(signals.get("dom_text_chars") or 0)
        capture.images_total = int(signals.get("images_total") or 0)
        capture.images_incomplete = int(signals.get("images_incomplete") or 0)
        capture.pending_requests = int(signals.get("pending_requests") or 0)

    if config.capture_html:
        capture.html = await _bounded("html", capture, page.content(), timeout)
    if config.capture_screenshot:
        capture.screenshot = await _bounded(
            "screenshot",
            capture,
            page.screenshot(type="png", full_page=True, timeout=config.capture_timeout_ms),
            timeout,
        )
    if config.capture_pdf:
        capture.pdf = await _bounded(
            "pdf",
            capture,
            page.pdf(
                print_background=True,
                margin={"top": "0", "right": "0", "bottom": "0", "left": "0"},
            ),
            timeout,
        )

    logger.info(
        "Diagnostics captured",
        dom_text_chars=capture.dom_text_chars,
        images_total=capture.images_total,
        images_incomplete=capture.images_incomplete,
        pending_requests=capture.pending_requests,
        has_html=capture.html is not None,
        has_screenshot=capture.screenshot is not None,
        has_pdf=capture.pdf is not None,
        failed=sorted(capture.errors),
    )
    return capture


def _save(name: str, write: Callable[[Any], Path], data: Any) -> str | None:
    if data is None:
        return None
    try:
        return str(write(data))
    except Exception as e:
        logger.warning("Diagnostic artifact not written", artifact=name, error=str(e))
        return None


class TimeoutPolicy:
    """Apply the caller-selected disposition to a readiness failure.

    Args:
        on_timeout: Disposition.
        store: Artifact store of the current run.
    """

    def __init__(self, on_timeout: OnTimeout, store: ArtifactStore) -> None:
        self._on_timeout = on_timeout
        self._store = store

    def apply(
        self,
        error: ReadinessTimeoutError,
        *,
        url: str,
        deadline_ms: int,
        elapsed_ms: int,
        requires_javascript: bool = True,
    ) -> ProbeOutcome:
        """Turn a readiness failure into the terminal outcome.

        Raises:
            ProbeFailedError: With ``fail`` disposition.
        """
        branch = classify_failure(error)
        diagnostics = error.diagnostics or DiagnosticsCapture()

        logger.warning(
            "Applying timeout disposition",
            disposition=self._on_timeout.value,
            branch=branch.value,
            reason=error.message,
        )

        if self._on_timeout == OnTimeout.FAIL:
            raise ProbeFailedError(
                f"Readiness failed ({branch.value}): {error.message}",
                details={"url": url, "wait_branch": branch.value, "elapsed_ms": elapsed_ms},
            ) from error

        html_path = _save("html", self._store.write_html, diagnostics.html)
        screenshot_path = _save("screenshot", self._store.write_screenshot, diagnostics.screenshot)
        pdf_path = _save("pdf", self._store.write_pdf, diagnostics.pdf)

        if self._on_timeout == OnTimeout.CONTINUE:
            result = ProbeResult(
                input_url=url,
                final_url=error.final_url or url,
                http_status=0,
                requires_javascript=requires_javascript,
                html_path=html_path,
                screenshot_path=screenshot_path,
                pdf_path=pdf_path,
                elapsed_ms=elapsed_ms,
                pages_crawled=1,
                wait_branch=branch.value,
                run_id=self._store.run_id,
                run_dir=str(self._store.run_dir),
            )
            return ProbeOutcome(exit_code=EXIT_OK, result=result)

        report = TimeoutReport(
            reason=error.message,
            url=url,
            deadline_ms=deadline_ms,
            elapsed_ms=elapsed_ms,
            wait_branch=branch.value,
            diagnostics=TimeoutDiagnostics(
                dom_text_chars=diagnostics.dom_text_chars,
                images_total=diagnostics.images_total,
                images_incomplete=diagnostics.images_incomplete,
                pending_requests=diagnostics.pending_requests,
            ),
            artifacts=TimeoutArtifacts(html=html_path, screenshot=screenshot_path, pdf=pdf_path),
            run_id=self._store.run_id,
            run_dir=str(self._store.run_dir),
        )
        return ProbeOutcome(exit_code=EXIT_TIMEOUT_REPORT, report=report)
