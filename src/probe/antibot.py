"""Anti-bot / WAF challenge detection.

Detection is a phrase match over the leading visible text of a page. A
vendor is guessed from HTML markers only once a challenge has been flagged,
so ordinary pages that merely embed a CAPTCHA library are not labeled.
"""

from bs4 import BeautifulSoup

from src.probe.models import AntiBotVerdict

SCAN_CHARS = 4096

BODY_TEXT_JS = f"""
() => {{
    const body = document.body;
    return body ? (body.innerText || '').slice(0, {SCAN_CHARS}) : '';
}}
"""

CHALLENGE_PHRASES = (
    "checking your browser",
    "checking if the site connection is secure",
    "verifying you are human",
    "verify you are human",
    "please verify you are a human",
    "press and hold",
    "please enable javascript and cookies",
    "enable javascript and cookies to continue",
    "just a moment...",
    "request unsuccessful. incapsula",
    "pardon our interruption",
    "are you a robot",
    "unusual traffic from your computer",
    "ddos protection by",
)

# Order matters: widget markers are more specific than edge-network markers
_VENDOR_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("turnstile", ('class="cf-turnstile"', "challenges.cloudflare.com/turnstile")),
    ("hcaptcha", ('class="h-captcha"', "hcaptcha.com/1/api.js", 'src="https://hcaptcha.com')),
    ("recaptcha", ('class="g-recaptcha"', "grecaptcha.execute", "google.com/recaptcha")),
    ("perimeterx", ("_pxappid", "px-captcha", "perimeterx", "press &amp; hold", "press & hold")),
    ("datadome", ("datadome", "dd.js", "geo.captcha-delivery.com")),
    ("akamai", ("akamai", "_abck", "ak_bmsc", "reference&#32;&#35;")),
    ("incapsula", ("incapsula", "_incapsula_resource", "visid_incap")),
    (
        "cloudflare",
        ("cf-browser-verification", "_cf_chl_opt", "cf-chl-", "cloudflare", "__cf_bm"),
    ),
)

_SERVER_VENDORS = (
    ("cloudflare", "cloudflare"),
    ("akamaighost", "akamai"),
    ("datadome", "datadome"),
)


def detect_challenge_text(text: str | None) -> str | None:
    """Return the first challenge phrase found in the leading text.

    Only the first 4096 characters are scanned, case-insensitively.

    Args:
        text: Visible page text.

    Returns:
        Matched phrase, or None.
    """
    if not text:
        return None
    head = text[:SCAN_CHARS].lower()
    for phrase in CHALLENGE_PHRASES:
        if phrase in head:
            return phrase
    return None


def guess_vendor(content: str | None, headers: dict | None = None) -> str | None:
    """Guess the anti-bot vendor from page markers.

    Args:
        content: Page HTML content.
        headers: Response headers, if known.

    Returns:
        Vendor name, or None when nothing identifies one.
    """
    content_lower = (content or "").lower()
    for vendor, markers in _VENDOR_MARKERS:
        if any(marker in content_lower for marker in markers):
            return vendor

    server = ""
    if headers:
        server = str(headers.get("server") or headers.get("Server") or "").lower()
    for needle, vendor in _SERVER_VENDORS:
        if needle in server:
            return vendor
    return None


def visible_text(html: str | bytes | None) -> str:
    """Extract visible text from an HTML document."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    root = soup.body or soup
    return " ".join(root.get_text(separator=" ").split())


def assess(text: str | None, html: str | None = None, headers: dict | None = None) -> AntiBotVerdict:
    """Assess a page for anti-bot interference.

    ``waf_detected`` mirrors ``js_challenge``; the vendor is only filled in
    when a challenge was flagged.

    Args:
        text: Visible page text (body innerText).
        html: Page HTML used for the vendor guess.
        headers: Response headers used for the vendor guess.

    Returns:
        AntiBotVerdict instance.
    """
    phrase = detect_challenge_text(text)
    if phrase is None:
        return AntiBotVerdict()
    return AntiBotVerdict(
        js_challenge=True,
        waf_detected=True,
        vendor=guess_vendor(html, headers),
        matched_phrase=phrase,
    )


def assess_http_body(body: bytes, headers: dict | None = None) -> AntiBotVerdict:
    """Assess a plain HTTP response body."""
    if not body:
        return AntiBotVerdict()
    html = body.decode("utf-8", errors="replace")
    return assess(visible_text(html), html, headers)
