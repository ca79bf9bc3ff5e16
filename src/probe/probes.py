"""
Signal probes read by the readiness engine.

Each probe is a pure read of page state. Reads are bounded and never raise.
A failed or slow read of the network or DOM signals yields None (unknown),
which the engine never counts as settled; the other reads fall back to a
neutral value.
"""

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from src.probe.instrumentor import PENDING_REQUESTS_JS
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)

PRIMARY_CONTAINER_SELECTOR = "main, article, [role=main], #content, #main, .content"
MIN_PROBE_TIMEOUT_MS = 50

READY_STATE_JS = "() => document.readyState"

NETWORK_JS = f"""
() => {{
    const pending = ({PENDING_REQUESTS_JS})();
    let resources = 0;
    try {{
        resources = performance.getEntriesByType('resource').length;
    }} catch (e) {{}}
    return [pending, resources];
}}
"""

DOM_HEURISTIC_JS = """
(selector) => {
    const body = document.body;
    const text = body ? (body.innerText || '') : '';
    return [text.trim().length, document.querySelector(selector) !== null];
}
"""

MEDIA_JS = """
() => {
    const images = Array.from(document.images || []);
    const incomplete = images.filter(img => !img.complete).length;
    const fontsLoaded = document.fonts ? document.fonts.status === 'loaded' : true;
    return [images.length, incomplete, fontsLoaded];
}
"""

SELECTOR_JS = "(selector) => document.querySelector(selector) !== null"


@dataclass
class NetworkSignal:
    pending: int = 0
    resource_count: int = 0


@dataclass
class DomSignal:
    text_length: int = 0
    has_primary_container: bool = False


@dataclass
class MediaSignal:
    images_total: int = 0
    images_incomplete: int = 0
    fonts_loaded: bool = False

    @property
    def settled(self) -> bool:
        return self.images_incomplete == 0 and self.fonts_loaded


class ProbeSource(Protocol):
    """Source of page signals for the readiness engine.

    ``timeout`` is the caller's bound for one read in seconds; a source may
    use a shorter one but never a longer one.
    """

    async def ready_state(self, timeout: float | None = None) -> str | None: ...

    async def network(self, timeout: float | None = None) -> NetworkSignal | None: ...

    async def dom(self, timeout: float | None = None) -> DomSignal | None: ...

    async def media(self, timeout: float | None = None) -> MediaSignal: ...

    async def selector_present(self, selector: str, timeout: float | None = None) -> bool: ...


class PageProbeSource:
    """ProbeSource backed by a Playwright page.

    Args:
        page: Playwright page.
        timeout_ms: Upper bound of one read in milliseconds.
    """

    def __init__(self, page: "Page", timeout_ms: int = 150) -> None:
        self._page = page
        self._timeout = max(timeout_ms, MIN_PROBE_TIMEOUT_MS) / 1000.0

    def _bound(self, timeout: float | None) -> float:
        if timeout is None:
            return self._timeout
        return min(self._timeout, max(timeout, 0.001))

    async def _evaluate(
        self, name: str, script: str, arg: Any = None, timeout: float | None = None
    ) -> Any:
        try:
            if arg is None:
                coro = self._page.evaluate(script)
            else:
                coro = self._page.evaluate(script, arg)
            return await asyncio.wait_for(coro, timeout=self._bound(timeout))
        except Exception as e:
            # Navigation in progress destroys the execution context
            logger.debug("Probe read failed", probe=name, error=str(e))
            return None

    async def ready_state(self, timeout: float | None = None) -> str | None:
        value = await self._evaluate("ready_state", READY_STATE_JS, timeout=timeout)
        return value if isinstance(value, str) else None

    async def network(self, timeout: float | None = None) -> NetworkSignal | None:
        value = await self._evaluate("network", NETWORK_JS, timeout=timeout)
        if not isinstance(value, list) or len(value) != 2:
            return None
        return NetworkSignal(pending=int(value[0] or 0), resource_count=int(value[1] or 0))

    async def dom(self, timeout: float | None = None) -> DomSignal | None:
        value = await self._evaluate(
            "dom", DOM_HEURISTIC_JS, PRIMARY_CONTAINER_SELECTOR, timeout=timeout
        )
        if not isinstance(value, list) or len(value) != 2:
            return None
        return DomSignal(text_length=int(value[0] or 0), has_primary_container=bool(value[1]))

    async def media(self, timeout: float | None = None) -> MediaSignal:
        value = await self._evaluate("media", MEDIA_JS, timeout=timeout)
        if not isinstance(value, list) or len(value) != 3:
            return MediaSignal()
        return MediaSignal(
            images_total=int(value[0] or 0),
            images_incomplete=int(value[1] or 0),
            fonts_loaded=bool(value[2]),
        )

    async def selector_present(self, selector: str, timeout: float | None = None) -> bool:
        value = await self._evaluate("selector", SELECTOR_JS, selector, timeout=timeout)
        return value is True
