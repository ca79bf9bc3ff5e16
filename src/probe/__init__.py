"""
ankabot probe module.

Decides between a plain HTTP fetch and a browser render for one URL, drives
the render to a readiness point and captures the page.
"""

from src.probe.errors import (
    CaptureError,
    LaunchError,
    ProbeError,
    ProbeErrorCode,
    ProbeFailedError,
    ReadinessTimeoutError,
    SessionError,
)
from src.probe.models import (
    CookieData,
    OnTimeout,
    ProbeOutcome,
    ProbeRequest,
    ProbeResult,
    ReadinessBranch,
    ReadinessOptions,
    TimeoutReport,
    WaitReady,
)
from src.probe.orchestrator import PageProbe
from src.probe.readiness import ReadinessEngine
from src.probe.session import RenderSession, RenderSessionManager, SessionConfig

__all__ = [
    # Errors
    "ProbeError",
    "ProbeErrorCode",
    "LaunchError",
    "SessionError",
    "CaptureError",
    "ReadinessTimeoutError",
    "ProbeFailedError",
    # Models
    "CookieData",
    "OnTimeout",
    "ProbeOutcome",
    "ProbeRequest",
    "ProbeResult",
    "ReadinessBranch",
    "ReadinessOptions",
    "TimeoutReport",
    "WaitReady",
    # Components
    "PageProbe",
    "ReadinessEngine",
    "RenderSession",
    "RenderSessionManager",
    "SessionConfig",
]
