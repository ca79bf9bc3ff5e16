"""
Browser stealth utilities for ankabot.

Implements minimal anti-bot detection measures:
- navigator.webdriver property override
- navigator normalization (languages, platform) consistent with the
  configured locale and User-Agent
- outer window dimensions fixed for headless sessions

Note: Excessive fingerprint manipulation is avoided to maintain consistency.
"""

import json
from typing import TYPE_CHECKING

from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = get_logger(__name__)


# =============================================================================
# Stealth JavaScript Injections
# =============================================================================

_STEALTH_TEMPLATE = """
(() => {
    const languages = %(languages)s;
    const platform = %(platform)s;

    // Override navigator.webdriver
    Object.defineProperty(Navigator.prototype, 'webdriver', {
        get: () => undefined,
        configurable: true
    });

    const automationProps = [
        '__webdriver_script_fn',
        '__driver_evaluate',
        '__webdriver_evaluate',
        '__selenium_evaluate',
        '__fxdriver_evaluate',
        '__driver_unwrapped',
        '__webdriver_unwrapped',
        '__selenium_unwrapped',
        '__fxdriver_unwrapped'
    ];
    for (const prop of automationProps) {
        try {
            delete navigator[prop];
        } catch (e) {}
    }

    const originalQuery = navigator.permissions?.query?.bind(navigator.permissions);
    if (originalQuery) {
        navigator.permissions.query = (parameters) => {
            if (parameters && parameters.name === 'notifications') {
                return Promise.resolve({ state: Notification.permission });
            }
            return originalQuery(parameters);
        };
    }

    if (!window.chrome) {
        window.chrome = {};
    }
    if (!window.chrome.runtime) {
        window.chrome.runtime = {};
    }

    Object.defineProperty(navigator, 'plugins', {
        get: () => {
            const plugins = [
                { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
                { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
                { name: 'Native Client', filename: 'internal-nacl-plugin' }
            ];
            plugins.item = (i) => plugins[i];
            plugins.namedItem = (name) => plugins.find(p => p.name === name);
            plugins.refresh = () => {};
            return plugins;
        },
        configurable: true
    });

    if (languages.length) {
        Object.defineProperty(navigator, 'languages', {
            get: () => languages.slice(),
            configurable: true
        });
        Object.defineProperty(navigator, 'language', {
            get: () => languages[0],
            configurable: true
        });
    }

    if (platform) {
        Object.defineProperty(navigator, 'platform', {
            get: () => platform,
            configurable: true
        });
    }

    Object.defineProperty(navigator, 'hardwareConcurrency', {
        get: () => 8,
        configurable: true
    });

    // Headless reports zero outer dimensions
    if (!window.outerWidth || !window.outerHeight) {
        Object.defineProperty(window, 'outerWidth', {
            get: () => window.innerWidth,
            configurable: true
        });
        Object.defineProperty(window, 'outerHeight', {
            get: () => window.innerHeight + 85,
            configurable: true
        });
    }

    delete window.__playwright;
    delete window.__pwInitScripts;
    delete window.__puppeteer;
    delete window.callPhantom;
    delete window._phantom;
})();
"""

_PLATFORM_ALIASES = {
    "win": "Win32",
    "win32": "Win32",
    "win64": "Win32",
    "windows": "Win32",
    "mac": "MacIntel",
    "macos": "MacIntel",
    "macintel": "MacIntel",
    "darwin": "MacIntel",
    "linux": "Linux x86_64",
    "linux x86_64": "Linux x86_64",
    "android": "Linux armv8l",
}


def normalize_platform(platform: str | None) -> str | None:
    """Map a loose platform name to a ``navigator.platform`` value.

    Unknown values are passed through unchanged.
    """
    if not platform:
        return None
    return _PLATFORM_ALIASES.get(platform.strip().lower(), platform)


def languages_for_locale(locale: str | None) -> list[str]:
    """Derive a ``navigator.languages`` list from a locale.

    Example:
        "de-DE" -> ["de-DE", "de", "en-US", "en"]
    """
    if not locale:
        return []
    locale = locale.replace("_", "-")
    base = locale.split("-", 1)[0]
    languages = [locale]
    if base != locale:
        languages.append(base)
    if base != "en":
        languages.extend(["en-US", "en"])
    return languages


def accept_language_for_locale(locale: str | None) -> str:
    """Build an Accept-Language header value with descending q-weights."""
    languages = languages_for_locale(locale) or ["en-US", "en"]
    parts = [languages[0]]
    for index, language in enumerate(languages[1:], start=1):
        parts.append(f"{language};q={max(0.1, 1 - index * 0.1):.1f}")
    return ",".join(parts)


def build_stealth_js(locale: str | None = None, platform: str | None = None) -> str:
    """Build the stealth init script for a session.

    Args:
        locale: Session locale; drives navigator.languages.
        platform: Platform name; normalized for navigator.platform.

    Returns:
        JavaScript source for ``add_init_script``.
    """
    return _STEALTH_TEMPLATE % {
        "languages": json.dumps(languages_for_locale(locale)),
        "platform": json.dumps(normalize_platform(platform)),
    }


# =============================================================================
# Stealth Application
# =============================================================================


async def apply_stealth_to_context(
    context: "BrowserContext",
    locale: str | None = None,
    platform: str | None = None,
) -> None:
    """Apply stealth measures to a Playwright browser context.

    Ensures all new documents in the context have stealth measures applied.

    Args:
        context: Playwright browser context.
        locale: Session locale.
        platform: Session platform.
    """
    await context.add_init_script(build_stealth_js(locale, platform))
    logger.debug("Stealth scripts applied to context", locale=locale, platform=platform)


def get_stealth_args(
    window_width: int = 1366,
    window_height: int = 900,
    extension_dirs: list[str] | tuple[str, ...] = (),
) -> list[str]:
    """Get Chrome/Chromium launch arguments for stealth.

    Returns minimal set of arguments to reduce automation detection.

    Args:
        window_width: Window width in pixels.
        window_height: Window height in pixels.
        extension_dirs: Unpacked extension directories to load.

    Returns:
        List of command-line arguments.
    """
    args = [
        # Disable automation-controlled flag
        "--disable-blink-features=AutomationControlled",
        "--disable-infobars",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-translate",
        "--no-first-run",
        "--no-default-browser-check",
        f"--window-size={window_width},{window_height}",
    ]
    if extension_dirs:
        joined = ",".join(extension_dirs)
        args.append(f"--disable-extensions-except={joined}")
        args.append(f"--load-extension={joined}")
    else:
        args.append("--disable-extensions")
    return args
