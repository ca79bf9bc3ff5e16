"""
Data model for one probe run.

Internal values passed between the selector, session manager, readiness
engine and diagnostics policy are dataclasses; records that cross the
process boundary (cookies, results, timeout reports) are pydantic models.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.utils.config import ReadinessConfig


class WaitReady(str, Enum):
    """Readiness strategies the caller may request."""

    AUTO = "auto"
    READY_STATE = "ready_state"
    NETWORK_IDLE = "network_idle"
    HEURISTIC = "heuristic"
    NONE = "none"


class ReadinessBranch(str, Enum):
    """Which strategy declared the page settled."""

    READY_STATE = "ready_state"
    NETWORK_IDLE = "network_idle"
    HEURISTIC = "heuristic"
    SELECTOR = "selector"
    NONE = "none"
    NAVIGATION = "navigation"


class OnTimeout(str, Enum):
    """Caller-selected timeout disposition."""

    REPORT = "report"
    CONTINUE = "continue"
    FAIL = "fail"


# =============================================================================
# Cookies
# =============================================================================


class CookieData(BaseModel):
    """Cookie data structure for import/export.

    Represents a single cookie with its attributes.
    """

    model_config = ConfigDict(frozen=False)

    name: str = Field(..., description="Cookie name")
    value: str = Field(default="", description="Cookie value")
    domain: str = Field(..., description="Cookie domain")
    path: str = Field(default="/", description="Cookie path")
    secure: bool = Field(default=False, description="Secure flag")
    http_only: bool = Field(default=False, description="HttpOnly flag")
    same_site: str | None = Field(default=None, description="SameSite attribute")
    expires: float | None = Field(default=None, description="Expiration as Unix timestamp")

    def is_expired(self) -> bool:
        """Check if cookie has expired."""
        if self.expires is None:
            return False  # Session cookie
        return time.time() > self.expires

    def identity(self) -> tuple:
        """Attributes that must survive an export/import round-trip."""
        return (self.name, self.domain, self.path, self.secure, self.http_only, self.expires)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "sameSite": self.same_site,
            "expires": self.expires,
        }

    def to_playwright_cookie(self) -> dict[str, Any]:
        """Convert to Playwright ``add_cookies`` format."""
        cookie: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
        }
        if self.same_site in ("Strict", "Lax", "None"):
            cookie["sameSite"] = self.same_site
        if self.expires is not None:
            cookie["expires"] = self.expires
        return cookie

    @classmethod
    def from_playwright_cookie(cls, cookie: dict) -> "CookieData":
        """Create from Playwright cookie format.

        Playwright reports session cookies with ``expires == -1``.
        """
        expires = cookie.get("expires")
        if expires is not None and expires < 0:
            expires = None
        return cls(
            name=cookie.get("name", ""),
            value=cookie.get("value", ""),
            domain=cookie.get("domain", ""),
            path=cookie.get("path", "/"),
            secure=cookie.get("secure", False),
            http_only=cookie.get("httpOnly", cookie.get("http_only", False)),
            same_site=cookie.get("sameSite", cookie.get("same_site")),
            expires=expires,
        )


# =============================================================================
# Request
# =============================================================================


@dataclass(frozen=True)
class ReadinessOptions:
    """Per-run readiness thresholds. Durations in milliseconds."""

    wait_ready: WaitReady = WaitReady.AUTO
    accept_interactive: bool = False
    poll_interval_ms: int = 150
    idle_threshold: int = 0
    idle_duration_ms: int = 500
    heuristic_min_text: int = 200
    heuristic_confirm_ms: int = 600
    media_wait_ms: int = 800
    selector: str | None = None
    selector_timeout_ms: int = 10000

    @classmethod
    def from_config(cls, config: ReadinessConfig, **overrides: Any) -> "ReadinessOptions":
        """Build options from settings, applying non-None overrides."""
        values: dict[str, Any] = {
            "wait_ready": WaitReady(config.wait_ready),
            "accept_interactive": config.accept_interactive,
            "poll_interval_ms": config.poll_interval_ms,
            "idle_threshold": config.idle_threshold,
            "idle_duration_ms": config.idle_duration_ms,
            "heuristic_min_text": config.heuristic_min_text,
            "heuristic_confirm_ms": config.heuristic_confirm_ms,
            "media_wait_ms": config.media_wait_ms,
            "selector_timeout_ms": config.selector_timeout_ms,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        if isinstance(values["wait_ready"], str):
            values["wait_ready"] = WaitReady(values["wait_ready"])
        return cls(**values)


@dataclass(frozen=True)
class ProbeRequest:
    """One probe invocation. Immutable once constructed."""

    url: str
    max_wait_ms: int = 30000
    force_render: bool = False
    force_http: bool = False
    idle_ignore_pattern: str | None = None
    readiness: ReadinessOptions = field(default_factory=ReadinessOptions)
    want_screenshot: bool = False
    want_pdf: bool = False
    export_cookies: bool = False
    import_cookies: tuple[CookieData, ...] = ()
    on_timeout: OnTimeout = OnTimeout.REPORT

    @property
    def selector(self) -> str | None:
        return self.readiness.selector

    @property
    def wants_visual_artifacts(self) -> bool:
        return self.want_screenshot or self.want_pdf


# =============================================================================
# Fetch / readiness / capture values
# =============================================================================


@dataclass
class FetchOutcome:
    """Result of the plain-HTTP check."""

    url: str
    final_url: str
    status: int = 0
    redirected: bool = False
    body: bytes = b""
    content_type: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    looks_renderable: bool = False
    error: str | None = None

    @property
    def needs_render(self) -> bool:
        return not self.looks_renderable

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass
class SignalSnapshot:
    """Last observed value of every probe."""

    ready_state: str | None = None
    pending_requests: int = 0
    resource_count: int = 0
    text_length: int = 0
    has_primary_container: bool = False
    images_total: int = 0
    images_incomplete: int = 0
    fonts_loaded: bool = False
    selector_present: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ready_state": self.ready_state,
            "pending_requests": self.pending_requests,
            "resource_count": self.resource_count,
            "text_length": self.text_length,
            "has_primary_container": self.has_primary_container,
            "images_total": self.images_total,
            "images_incomplete": self.images_incomplete,
            "fonts_loaded": self.fonts_loaded,
            "selector_present": self.selector_present,
        }


@dataclass
class ReadinessResult:
    """Tagged readiness outcome: Ready(branch) or TimedOut(last signals)."""

    ready: bool
    branch: ReadinessBranch
    snapshot: SignalSnapshot = field(default_factory=SignalSnapshot)
    elapsed_ms: int = 0
    ticks: int = 0

    @classmethod
    def settled(
        cls,
        branch: ReadinessBranch,
        snapshot: SignalSnapshot | None = None,
        *,
        elapsed_ms: int = 0,
        ticks: int = 0,
    ) -> "ReadinessResult":
        return cls(True, branch, snapshot or SignalSnapshot(), elapsed_ms, ticks)

    @classmethod
    def timed_out(
        cls,
        branch_attempted: ReadinessBranch,
        snapshot: SignalSnapshot,
        *,
        elapsed_ms: int = 0,
        ticks: int = 0,
    ) -> "ReadinessResult":
        return cls(False, branch_attempted, snapshot, elapsed_ms, ticks)

    @property
    def is_timed_out(self) -> bool:
        return not self.ready


@dataclass
class Artifacts:
    """Captured artifacts of a rendered page."""

    html: str
    screenshot: bytes | None = None
    pdf: bytes | None = None
    cookies: list[CookieData] | None = None


@dataclass
class DiagnosticsCapture:
    """Best-effort state captured after a readiness failure."""

    dom_text_chars: int = 0
    images_total: int = 0
    images_incomplete: int = 0
    pending_requests: int = 0
    html: str | None = None
    screenshot: bytes | None = None
    pdf: bytes | None = None
    errors: dict[str, str] = field(default_factory=dict)


@dataclass
class AntiBotVerdict:
    """Anti-bot/WAF heuristic outcome."""

    js_challenge: bool = False
    waf_detected: bool = False
    vendor: str | None = None
    matched_phrase: str | None = None


@dataclass
class RenderOutcome:
    """Successful render session output."""

    final_url: str
    status: int
    readiness: ReadinessResult
    artifacts: Artifacts
    verdict: AntiBotVerdict
    headless: bool = True
    attempts: int = 1


# =============================================================================
# Terminal records
# =============================================================================


class ProbeResult(BaseModel):
    """Externally visible result of a successful (or degraded) probe."""

    input_url: str
    final_url: str
    http_status: int = 0
    redirected: bool = False
    requires_javascript: bool = False
    waf_detected: bool = False
    anti_bot_vendor: str | None = None
    js_challenge_page: bool = False
    screenshot_path: str | None = None
    pdf_path: str | None = None
    html_path: str | None = None
    cookies_path: str | None = None
    elapsed_ms: int = 0
    pages_crawled: int = 0
    wait_branch: str | None = None
    run_id: str
    run_dir: str | None = None


class TimeoutDiagnostics(BaseModel):
    dom_text_chars: int = 0
    images_total: int = 0
    images_incomplete: int = 0
    pending_requests: int = 0


class TimeoutArtifacts(BaseModel):
    html: str | None = None
    screenshot: str | None = None
    pdf: str | None = None


class TimeoutReport(BaseModel):
    """Terminal record produced when readiness fails with ``report`` disposition."""

    status: str = "timeout"
    reason: str
    url: str
    deadline_ms: int
    elapsed_ms: int
    wait_branch: str
    diagnostics: TimeoutDiagnostics = Field(default_factory=TimeoutDiagnostics)
    artifacts: TimeoutArtifacts = Field(default_factory=TimeoutArtifacts)
    run_id: str
    run_dir: str | None = None


@dataclass
class ProbeOutcome:
    """Terminal outcome of one invocation: a result or a timeout report."""

    exit_code: int
    result: ProbeResult | None = None
    report: TimeoutReport | None = None
    record_path: str | None = None

    @property
    def record(self) -> BaseModel:
        return self.result if self.result is not None else self.report
