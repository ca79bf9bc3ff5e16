"""
Main entry point for ankabot.

Probes one URL, writes ``result.json`` into the run directory and prints
its path on stdout. Exit codes: 0 success, 2 timeout report, 1 failure.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from src.probe.artifacts import ArtifactStore, load_cookies
from src.probe.diagnostics import EXIT_FATAL
from src.probe.errors import ProbeError
from src.probe.models import OnTimeout, ProbeOutcome, ProbeRequest, ReadinessOptions, WaitReady
from src.probe.orchestrator import PageProbe
from src.probe.session import SessionConfig
from src.utils.config import Settings, ensure_directories, get_profile_dir, get_settings
from src.utils.logging import configure_logging, get_logger


def _viewport(value: str) -> tuple[int, int]:
    try:
        width, height = value.lower().split("x", 1)
        return int(width), int(height)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected WIDTHxHEIGHT, got {value!r}") from e


def _geolocation(value: str) -> tuple[float, float, float]:
    try:
        parts = [float(p) for p in value.split(",")]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected LAT,LON[,ACCURACY], got {value!r}") from e
    if len(parts) == 2:
        parts.append(50.0)
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected LAT,LON[,ACCURACY], got {value!r}")
    return parts[0], parts[1], parts[2]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ankabot",
        description="ankabot - probe a page over HTTP or in a real browser",
    )
    parser.add_argument("url", help="URL to probe")

    output = parser.add_argument_group("artifacts")
    output.add_argument(
        "--screenshot",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Capture a full-page PNG (optionally to PATH)",
    )
    output.add_argument(
        "--pdf",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Print the page to PDF (optionally to PATH)",
    )
    output.add_argument("--no-pdf", action="store_true", help="Never produce a PDF")
    output.add_argument(
        "--cookies-out", action="store_true", help="Export session cookies to cookies.json"
    )
    output.add_argument("--cookies-in", metavar="PATH", help="Import cookies from a JSON file")
    output.add_argument("--run-dir", metavar="DIR", help="Run directory (default: timestamped)")

    readiness = parser.add_argument_group("readiness")
    readiness.add_argument("--max-wait-ms", type=int, help="Overall deadline in milliseconds")
    readiness.add_argument("--on-timeout", choices=[m.value for m in OnTimeout])
    readiness.add_argument("--wait-ready", choices=[m.value for m in WaitReady])
    readiness.add_argument(
        "--accept-interactive",
        action="store_true",
        help="Treat readyState 'interactive' as ready",
    )
    readiness.add_argument("--selector", help="CSS selector that must be present")
    readiness.add_argument(
        "--idle-ignore", metavar="REGEX", help="Requests to ignore for network idle"
    )

    strategy = parser.add_argument_group("fetch strategy")
    mode = strategy.add_mutually_exclusive_group()
    mode.add_argument("--force-render", action="store_true", help="Skip the HTTP check")
    mode.add_argument("--http-only", action="store_true", help="Never launch a browser")

    browser = parser.add_argument_group("browser")
    browser.add_argument("--headful", action="store_true", help="Launch with a visible window")
    browser.add_argument(
        "--headful-fallback",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Retry once headful after a headless failure",
    )
    browser.add_argument("--profile", help="Persistent profile name")
    browser.add_argument("--proxy", help="Proxy server URL")
    browser.add_argument(
        "--extension", action="append", metavar="DIR", help="Unpacked extension directory"
    )
    browser.add_argument("--viewport", type=_viewport, metavar="WxH")
    browser.add_argument("--device-scale-factor", type=float)
    browser.add_argument("--mobile", action="store_true", help="Emulate a mobile device")
    browser.add_argument("--locale")
    browser.add_argument("--timezone")
    browser.add_argument("--geolocation", type=_geolocation, metavar="LAT,LON")
    browser.add_argument("--user-agent")

    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def build_request(args: argparse.Namespace, settings: Settings) -> ProbeRequest:
    """Build a ProbeRequest from CLI arguments layered over settings."""
    readiness = ReadinessOptions.from_config(
        settings.readiness,
        wait_ready=args.wait_ready,
        accept_interactive=True if args.accept_interactive else None,
        selector=args.selector,
    )
    cookies = tuple(load_cookies(args.cookies_in)) if args.cookies_in else ()
    max_wait_ms = args.max_wait_ms
    if max_wait_ms is None:
        max_wait_ms = settings.readiness.max_wait_ms
    return ProbeRequest(
        url=args.url,
        max_wait_ms=max_wait_ms,
        force_render=args.force_render,
        force_http=args.http_only,
        idle_ignore_pattern=args.idle_ignore or settings.readiness.idle_ignore_pattern,
        readiness=readiness,
        want_screenshot=args.screenshot is not None,
        want_pdf=args.pdf is not None and not args.no_pdf,
        export_cookies=args.cookies_out,
        import_cookies=cookies,
        on_timeout=OnTimeout(args.on_timeout or settings.diagnostics.on_timeout),
    )


def build_session_config(args: argparse.Namespace, settings: Settings) -> SessionConfig:
    """Build the first-attempt SessionConfig from CLI arguments layered over settings."""
    width, height = args.viewport if args.viewport else (None, None)
    return SessionConfig.from_config(
        settings.browser,
        profile_dir=str(get_profile_dir(args.profile)) if args.profile else None,
        headless=False if args.headful else None,
        viewport_width=width,
        viewport_height=height,
        device_scale_factor=args.device_scale_factor,
        is_mobile=True if args.mobile else None,
        proxy=args.proxy,
        extension_dirs=[str(Path(d).resolve()) for d in args.extension] if args.extension else None,
        locale=args.locale,
        timezone_id=args.timezone,
        geolocation=args.geolocation,
        user_agent=args.user_agent,
    )


async def run(args: argparse.Namespace) -> ProbeOutcome:
    settings = get_settings()
    ensure_directories()
    request = build_request(args, settings)
    store = ArtifactStore(
        run_dir=args.run_dir,
        screenshot_path=args.screenshot or None,
        pdf_path=args.pdf or None,
    )
    headful_fallback = (
        args.headful_fallback
        if args.headful_fallback is not None
        else settings.browser.headful_fallback
    )
    probe = PageProbe(build_session_config(args, settings), headful_fallback=headful_fallback)
    return await probe.run(request, store)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    settings = get_settings()
    configure_logging(log_level=args.log_level or settings.general.log_level)
    logger = get_logger(__name__)

    try:
        outcome = asyncio.run(run(args))
    except ProbeError as e:
        logger.error("Probe failed", error=e.message, error_code=e.code.value)
        print(f"ankabot: {e.message}", file=sys.stderr)
        return EXIT_FATAL
    except (OSError, ValueError) as e:
        logger.error("Probe failed", error=str(e))
        print(f"ankabot: {e}", file=sys.stderr)
        return EXIT_FATAL

    print(outcome.record_path)
    return outcome.exit_code


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
