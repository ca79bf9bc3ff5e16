"""
Render session management.

A RenderSession owns one persistent-profile browser context and walks it
through Launching, Configuring, Navigating, AwaitingReadiness and
CapturingArtifacts before it is Closed. The RenderSessionManager drives a
session to completion and retries the whole sequence once in headful mode
when a headless attempt fails for a reason other than a timeout.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from src.probe.antibot import BODY_TEXT_JS, assess
from src.probe.diagnostics import capture_diagnostics, classify_failure
from src.probe.errors import (
    CaptureError,
    LaunchError,
    ProbeError,
    ProbeErrorCode,
    ReadinessTimeoutError,
    SessionError,
    is_timeout_like,
)
from src.probe.instrumentor import build_network_instrumentation_js
from src.probe.models import (
    AntiBotVerdict,
    Artifacts,
    CookieData,
    DiagnosticsCapture,
    ProbeRequest,
    ReadinessResult,
    RenderOutcome,
)
from src.probe.probes import PageProbeSource
from src.probe.readiness import ReadinessEngine
from src.probe.stealth import (
    accept_language_for_locale,
    apply_stealth_to_context,
    get_stealth_args,
    normalize_platform,
)
from src.utils.config import (
    BrowserConfig,
    DiagnosticsConfig,
    ReadinessConfig,
    get_profile_dir,
    get_settings,
)
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, CDPSession, Page, Playwright

logger = get_logger(__name__)


class SessionState(str, Enum):
    """Render session lifecycle states."""

    LAUNCHING = "launching"
    CONFIGURING = "configuring"
    NAVIGATING = "navigating"
    AWAITING_READINESS = "awaiting_readiness"
    CAPTURING_ARTIFACTS = "capturing_artifacts"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionConfig:
    """Immutable launch and emulation parameters of one render session."""

    profile_dir: str
    headless: bool = True
    viewport_width: int = 1366
    viewport_height: int = 900
    device_scale_factor: float = 1.0
    is_mobile: bool = False
    proxy: str | None = None
    extension_dirs: tuple[str, ...] = ()
    locale: str | None = "en-US"
    timezone_id: str | None = None
    geolocation: tuple[float, float, float] | None = None
    user_agent: str | None = None
    platform: str | None = None
    launch_timeout_ms: int = 30000

    @classmethod
    def from_config(cls, config: BrowserConfig, **overrides: Any) -> "SessionConfig":
        """Snapshot browser settings, applying non-None overrides."""
        geolocation = None
        if config.geolocation is not None:
            geolocation = (
                config.geolocation.latitude,
                config.geolocation.longitude,
                config.geolocation.accuracy,
            )
        values: dict[str, Any] = {
            "profile_dir": str(get_profile_dir(config.profile)),
            "headless": config.headless,
            "viewport_width": config.viewport_width,
            "viewport_height": config.viewport_height,
            "device_scale_factor": config.device_scale_factor,
            "is_mobile": config.is_mobile,
            "proxy": config.proxy,
            "extension_dirs": tuple(config.extension_dirs),
            "locale": config.locale,
            "timezone_id": config.timezone_id,
            "geolocation": geolocation,
            "user_agent": config.user_agent,
            "platform": config.platform,
            "launch_timeout_ms": config.launch_timeout_ms,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        values["extension_dirs"] = tuple(values["extension_dirs"])
        return cls(**values)


def _remaining_ms(deadline: float, clock: Callable[[], float]) -> int:
    # Playwright treats timeout=0 as "no timeout"
    return max(1, int((deadline - clock()) * 1000))


class RenderSession:
    """One browser context bound to a persistent profile.

    Args:
        config: Session configuration.
        readiness_config: Readiness settings (PDF media wait).
        diagnostics_config: Diagnostics capture settings.
        clock: Monotonic clock in seconds; deadlines are values of it.
    """

    def __init__(
        self,
        config: SessionConfig,
        readiness_config: ReadinessConfig | None = None,
        diagnostics_config: DiagnosticsConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.config = config
        self._readiness_config = readiness_config or settings.readiness
        self._diagnostics_config = diagnostics_config or settings.diagnostics
        self._clock = clock
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._state = SessionState.LAUNCHING

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def url(self) -> str | None:
        return self._page.url if self._page is not None else None

    def _transition(self, state: SessionState, **fields: Any) -> None:
        logger.info(
            "Render session state",
            previous=self._state.value,
            state=state.value,
            headless=self.config.headless,
            **fields,
        )
        self._state = state

    def _launch_options(self) -> dict[str, Any]:
        config = self.config
        ignore_default_args = ["--enable-automation"]
        if config.extension_dirs:
            ignore_default_args.append("--disable-extensions")

        options: dict[str, Any] = {
            "headless": config.headless,
            "args": get_stealth_args(
                config.viewport_width,
                config.viewport_height,
                config.extension_dirs,
            ),
            "ignore_default_args": ignore_default_args,
            "viewport": {"width": config.viewport_width, "height": config.viewport_height},
            "device_scale_factor": config.device_scale_factor,
            "is_mobile": config.is_mobile,
            "has_touch": config.is_mobile,
            "timeout": config.launch_timeout_ms,
        }
        if config.user_agent:
            options["user_agent"] = config.user_agent
        if config.locale:
            options["locale"] = config.locale
        if config.timezone_id:
            options["timezone_id"] = config.timezone_id
        if config.geolocation:
            latitude, longitude, accuracy = config.geolocation
            options["geolocation"] = {
                "latitude": latitude,
                "longitude": longitude,
                "accuracy": accuracy,
            }
            options["permissions"] = ["geolocation"]
        if config.proxy:
            options["proxy"] = {"server": config.proxy}
        return options

    async def launch(self) -> None:
        """Start the browser with the persistent profile directory."""
        from playwright.async_api import async_playwright

        self._transition(SessionState.LAUNCHING, profile_dir=self.config.profile_dir)
        try:
            Path(self.config.profile_dir).mkdir(parents=True, exist_ok=True)
            self._playwright = await async_playwright().start()
            self._context = await self._playwright.chromium.launch_persistent_context(
                self.config.profile_dir,
                **self._launch_options(),
            )
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
        except Exception as e:
            self._state = SessionState.FAILED
            raise LaunchError(
                f"Browser launch failed: {e}",
                details={"headless": self.config.headless, "profile_dir": self.config.profile_dir},
            ) from e

    async def _cdp_overrides(self, cdp: "CDPSession") -> None:
        config = self.config
        await cdp.send(
            "Network.setUserAgentOverride",
            {
                "userAgent": config.user_agent or await self._page.evaluate("navigator.userAgent"),
                "acceptLanguage": accept_language_for_locale(config.locale),
                "platform": normalize_platform(config.platform) or "",
            },
        )
        if config.timezone_id:
            await cdp.send("Emulation.setTimezoneOverride", {"timezoneId": config.timezone_id})
        if config.locale:
            await cdp.send("Emulation.setLocaleOverride", {"locale": config.locale})
        if config.geolocation:
            latitude, longitude, accuracy = config.geolocation
            await cdp.send(
                "Emulation.setGeolocationOverride",
                {"latitude": latitude, "longitude": longitude, "accuracy": accuracy},
            )
        await cdp.send(
            "Emulation.setDeviceMetricsOverride",
            {
                "width": config.viewport_width,
                "height": config.viewport_height,
                "deviceScaleFactor": config.device_scale_factor,
                "mobile": config.is_mobile,
            },
        )

    async def configure(self, request: ProbeRequest) -> None:
        """Install init scripts, emulation overrides and imported cookies."""
        self._transition(SessionState.CONFIGURING)
        try:
            await self._context.add_init_script(
                build_network_instrumentation_js(request.idle_ignore_pattern)
            )
            await apply_stealth_to_context(self._context, self.config.locale, self.config.platform)

            cdp = await self._context.new_cdp_session(self._page)
            await self._cdp_overrides(cdp)

            if request.import_cookies:
                await self._context.add_cookies(
                    [cookie.to_playwright_cookie() for cookie in request.import_cookies]
                )
                logger.info("Cookies imported", count=len(request.import_cookies))
        except Exception as e:
            self._state = SessionState.FAILED
            raise SessionError(
                f"Session configuration failed: {e}",
                code=ProbeErrorCode.EVALUATION_FAILED,
            ) from e

    async def navigate(self, url: str, deadline: float) -> int:
        """Navigate until the top-level document commits.

        Returns:
            HTTP status of the navigation response, 0 if unknown.
        """
        self._transition(SessionState.NAVIGATING, url=url)
        try:
            response = await self._page.goto(
                url,
                wait_until="commit",
                timeout=_remaining_ms(deadline, self._clock),
            )
        except Exception as e:
            raise SessionError(f"Navigation failed: {e}") from e
        return response.status if response is not None else 0

    async def await_readiness(self, request: ProbeRequest, deadline: float) -> ReadinessResult:
        self._transition(SessionState.AWAITING_READINESS)
        options = request.readiness
        source = PageProbeSource(self._page, timeout_ms=options.poll_interval_ms)
        engine = ReadinessEngine(source, options, clock=self._clock)
        return await engine.wait(deadline)

    async def _soft(self, name: str, coro: Any) -> Any:
        timeout = max(self._diagnostics_config.capture_timeout_ms, 1) / 1000.0
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except Exception as e:
            logger.warning("Optional capture failed", capture=name, error=str(e))
            return None

    async def capture(self, request: ProbeRequest) -> tuple[Artifacts, AntiBotVerdict]:
        """Capture artifacts of the ready page.

        Only the final HTML is mandatory.

        Raises:
            CaptureError: If the page HTML cannot be read.
        """
        self._transition(SessionState.CAPTURING_ARTIFACTS)

        cookies = None
        if request.export_cookies:
            raw = await self._soft("cookies", self._context.cookies())
            if raw is not None:
                cookies = [CookieData.from_playwright_cookie(c) for c in raw]

        body_text = await self._soft("antibot_text", self._page.evaluate(BODY_TEXT_JS))

        screenshot = None
        if request.want_screenshot:
            screenshot = await self._soft(
                "screenshot", self._page.screenshot(type="png", full_page=True)
            )

        timeout_ms = max(self._diagnostics_config.capture_timeout_ms, 1)
        try:
            html = await asyncio.wait_for(self._page.content(), timeout=timeout_ms / 1000.0)
        except TimeoutError as e:
            raise CaptureError(
                f"HTML capture timed out after {timeout_ms}ms",
                details={"timeout_ms": timeout_ms},
            ) from e
        except Exception as e:
            raise CaptureError(f"HTML capture failed: {e}") from e

        verdict = assess(body_text, html)

        pdf = None
        if request.want_pdf and not self.config.headless:
            # Chromium prints to PDF only in headless mode
            logger.warning("PDF skipped, browser is headful", url=self.url)
        elif request.want_pdf:
            deadline = self._clock() + self._readiness_config.pdf_media_wait_ms / 1000.0
            engine = ReadinessEngine(
                PageProbeSource(self._page, timeout_ms=request.readiness.poll_interval_ms),
                request.readiness,
                clock=self._clock,
            )
            await engine.wait_for_media(deadline, self._readiness_config.pdf_media_wait_ms)
            pdf = await self._soft(
                "pdf",
                self._page.pdf(
                    print_background=True,
                    margin={"top": "0", "right": "0", "bottom": "0", "left": "0"},
                ),
            )

        artifacts = Artifacts(html=html, screenshot=screenshot, pdf=pdf, cookies=cookies)
        return artifacts, verdict

    async def diagnose(self) -> DiagnosticsCapture:
        """Best-effort capture of the current page after a failure."""
        if self._page is None:
            return DiagnosticsCapture(errors={"page": "no page"})
        return await capture_diagnostics(self._page, self._diagnostics_config)

    async def close(self) -> None:
        """Close the context and stop Playwright. Safe to call repeatedly."""
        if self._context is not None:
            try:
                await self._context.close()
            except Exception as e:
                logger.debug("Context close failed", error=str(e))
            self._context = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug("Playwright stop failed", error=str(e))
            self._playwright = None
        self._page = None
        if self._state != SessionState.CLOSED:
            self._transition(SessionState.CLOSED)


SessionFactory = Callable[[SessionConfig], RenderSession]


class RenderSessionManager:
    """Run a render session to completion with optional headful fallback.

    Args:
        config: Initial session configuration.
        headful_fallback: Retry once headful after a headless failure.
        session_factory: Builds a session for a configuration.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        config: SessionConfig,
        headful_fallback: bool = True,
        session_factory: SessionFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._headful_fallback = headful_fallback
        self._clock = clock
        self._factory = session_factory or (lambda cfg: RenderSession(cfg, clock=clock))
        self.attempts: list[SessionConfig] = []

    def _can_retry(self, config: SessionConfig, error: ProbeError) -> bool:
        if not (config.headless and self._headful_fallback):
            return False
        if len(self.attempts) > 1:
            return False
        return isinstance(error, LaunchError) or not is_timeout_like(error)

    async def _timeout(self, session: RenderSession, error: ProbeError) -> ReadinessTimeoutError:
        diagnostics = await session.diagnose()
        return ReadinessTimeoutError(
            error.message,
            diagnostics=diagnostics,
            branch=classify_failure(error).value,
            final_url=session.url,
        )

    async def _run(
        self,
        session: RenderSession,
        request: ProbeRequest,
        deadline: float,
    ) -> RenderOutcome:
        await session.launch()

        try:
            await session.configure(request)
            status = await session.navigate(request.url, deadline)
            readiness = await session.await_readiness(request, deadline)
        except SessionError as e:
            if is_timeout_like(e):
                raise await self._timeout(session, e) from e
            raise

        if readiness.is_timed_out:
            diagnostics = await session.diagnose()
            raise ReadinessTimeoutError(
                f"Readiness not reached within deadline ({readiness.branch.value})",
                readiness=readiness,
                diagnostics=diagnostics,
                branch=readiness.branch.value,
                final_url=session.url,
            )

        artifacts, verdict = await session.capture(request)
        return RenderOutcome(
            final_url=session.url or request.url,
            status=status,
            readiness=readiness,
            artifacts=artifacts,
            verdict=verdict,
            headless=session.config.headless,
            attempts=len(self.attempts),
        )

    async def render(self, request: ProbeRequest, deadline: float) -> RenderOutcome:
        """Render the request's URL.

        Args:
            request: Probe request.
            deadline: Absolute deadline in clock seconds.

        Returns:
            RenderOutcome of the successful attempt.

        Raises:
            ReadinessTimeoutError: Readiness failed; diagnostics attached.
            ProbeError: Fatal launch/session/capture error.
        """
        config = self._config
        while True:
            self.attempts.append(config)
            session = self._factory(config)
            try:
                return await self._run(session, request, deadline)
            except ReadinessTimeoutError:
                raise
            except ProbeError as e:
                if not self._can_retry(config, e):
                    raise
                logger.warning(
                    "Headless session failed, retrying headful",
                    error=e.message,
                    error_code=e.code.value,
                )
                config = replace(config, headless=False)
            finally:
                await session.close()
