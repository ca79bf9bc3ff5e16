"""HTTP-first fetch strategy selection.

One short GET decides whether a plain HTTP response already carries a usable
page or whether the URL must be rendered in a browser.
"""

import re
from urllib.parse import urlsplit

from curl_cffi.requests import AsyncSession

from src.probe.models import FetchOutcome
from src.utils.config import FetchConfig, get_settings
from src.utils.logging import get_logger

logger = get_logger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

_BODY_TAG = re.compile(rb"<body", re.IGNORECASE)
_LINK_MARKER = re.compile(rb"<a[\s][^>]*href|href\s*=", re.IGNORECASE)


def _normalized(url: str) -> tuple:
    parts = urlsplit(url)
    return (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query)


def is_redirect(requested: str, final: str) -> bool:
    """Whether ``final`` differs from ``requested`` beyond an implicit root path."""
    return _normalized(requested) != _normalized(final)


def is_html_content_type(content_type: str | None) -> bool:
    """A missing content type is given the benefit of the doubt."""
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type in HTML_CONTENT_TYPES


def looks_renderable(body: bytes, min_body_bytes: int = 512) -> bool:
    """Check whether an HTTP body already looks like a complete page.

    Args:
        body: Raw response body.
        min_body_bytes: Minimum body size in bytes.

    Returns:
        True if the body is non-blank, large enough, has a <body> tag and
        at least one hyperlink.
    """
    if not body or not body.strip():
        return False
    if len(body) < min_body_bytes:
        return False
    if not _BODY_TAG.search(body):
        return False
    return _LINK_MARKER.search(body) is not None


class HTTPFetcher:
    """Plain HTTP client fetcher using curl_cffi.

    Uses Chrome impersonation so the TLS/HTTP2 fingerprint matches the
    browser that would otherwise render the page.
    """

    def __init__(self, config: FetchConfig | None = None) -> None:
        self._config = config or get_settings().fetch

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": self._config.accept_language,
            "Accept-Encoding": "gzip, deflate, br",
        }

    async def fetch(self, url: str, timeout: float | None = None) -> FetchOutcome:
        """Fetch URL once and classify the response.

        Transport errors never raise: the outcome carries the error text,
        status 0 and an empty body, and is marked as needing a render.

        Args:
            url: URL to fetch.
            timeout: Overall timeout in seconds, capped by the configured one.

        Returns:
            FetchOutcome instance.
        """
        limit = self._config.timeout_seconds
        if timeout is not None:
            limit = max(0.001, min(limit, timeout))

        try:
            async with AsyncSession() as session:
                response = await session.get(
                    url,
                    headers=self._headers(),
                    impersonate=self._config.impersonate,
                    timeout=limit,
                    allow_redirects=True,
                    max_redirects=self._config.max_redirects,
                )
        except Exception as e:
            logger.warning("HTTP fetch error", url=url, error=str(e))
            return FetchOutcome(url=url, final_url=url, error=str(e))

        content_type = response.headers.get("content-type")
        body = response.content or b""
        if not is_html_content_type(content_type):
            body = b""

        final_url = str(response.url) if response.url else url
        renderable = looks_renderable(body, self._config.min_body_bytes)

        logger.info(
            "HTTP fetch complete",
            url=url,
            final_url=final_url,
            status=response.status_code,
            content_type=content_type,
            content_length=len(body),
            looks_renderable=renderable,
        )

        return FetchOutcome(
            url=url,
            final_url=final_url,
            status=response.status_code,
            redirected=is_redirect(url, final_url),
            body=body,
            content_type=content_type,
            headers={k.lower(): v for k, v in response.headers.items()},
            looks_renderable=renderable,
        )
