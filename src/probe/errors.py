"""
Error taxonomy for the page probe.

Error codes follow the failure classes of one probe run:
- LAUNCH_FAILED: browser engine could not start
- NAVIGATION_FAILED / EVALUATION_FAILED: mid-session protocol errors
- READINESS_TIMEOUT: readiness engine ran out of budget (routed to diagnostics)
- CAPTURE_FAILED: primary HTML capture failed on the success path
- PROBE_FAILED: hard failure surfaced to the caller
"""

import re
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.probe.models import DiagnosticsCapture, ReadinessResult


class ProbeErrorCode(str, Enum):
    """Probe error codes."""

    LAUNCH_FAILED = "LAUNCH_FAILED"
    NAVIGATION_FAILED = "NAVIGATION_FAILED"
    EVALUATION_FAILED = "EVALUATION_FAILED"
    READINESS_TIMEOUT = "READINESS_TIMEOUT"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    PROBE_FAILED = "PROBE_FAILED"


class ProbeError(Exception):
    """Base exception for probe errors."""

    code: ProbeErrorCode = ProbeErrorCode.PROBE_FAILED

    def __init__(
        self,
        message: str,
        *,
        code: ProbeErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize probe error.

        Args:
            message: Human-readable error message.
            code: Error code. Defaults to the class code.
            details: Optional additional error details.
        """
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a structured error record."""
        result: dict[str, Any] = {
            "ok": False,
            "error_code": self.code.value,
            "error": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class LaunchError(ProbeError):
    """Browser engine failed to start."""

    code = ProbeErrorCode.LAUNCH_FAILED


class SessionError(ProbeError):
    """Mid-session protocol error (navigation or evaluation)."""

    code = ProbeErrorCode.NAVIGATION_FAILED


class CaptureError(ProbeError):
    """Primary artifact capture failed."""

    code = ProbeErrorCode.CAPTURE_FAILED


class ReadinessTimeoutError(ProbeError):
    """Readiness could not be established within the deadline.

    Carries the engine outcome and whatever diagnostics were captured while
    the page was still alive.
    """

    code = ProbeErrorCode.READINESS_TIMEOUT

    def __init__(
        self,
        message: str,
        *,
        readiness: "ReadinessResult | None" = None,
        diagnostics: "DiagnosticsCapture | None" = None,
        branch: str | None = None,
        final_url: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=details)
        self.readiness = readiness
        self.diagnostics = diagnostics
        self.branch = branch
        self.final_url = final_url


class ProbeFailedError(ProbeError):
    """Hard failure surfaced to the caller."""

    code = ProbeErrorCode.PROBE_FAILED


_TIMEOUT_LIKE = re.compile(r"timeout|timed out|exceeded|deadline", re.IGNORECASE)


def is_timeout_like(error: BaseException | str) -> bool:
    """Classify an error as timeout-like by message pattern.

    Playwright reports deadline failures as e.g. "Timeout 1ms exceeded.",
    asyncio as TimeoutError with an empty message.

    Args:
        error: Exception or message text.

    Returns:
        True if the error should be routed to the diagnostics policy.
    """
    if isinstance(error, ReadinessTimeoutError | TimeoutError):
        return True
    if isinstance(error, BaseException):
        if type(error).__name__ == "TimeoutError":
            return True
        error = str(error)
    return bool(_TIMEOUT_LIKE.search(error))
