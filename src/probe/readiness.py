"""
Multi-signal readiness engine.

Polls page signals on a fixed interval until one strategy declares the page
settled or the deadline passes. Strategies are evaluated in priority order
on every tick (ready_state, then network_idle, then heuristic) and the
engine returns on the first match, recording which branch fired.

The loop is strictly sequential: probe, evaluate, sleep, repeat.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from src.probe.models import (
    ReadinessBranch,
    ReadinessOptions,
    ReadinessResult,
    SignalSnapshot,
    WaitReady,
)
from src.probe.probes import ProbeSource
from src.utils.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

_MODE_BRANCH = {
    WaitReady.READY_STATE: ReadinessBranch.READY_STATE,
    WaitReady.NETWORK_IDLE: ReadinessBranch.NETWORK_IDLE,
    WaitReady.HEURISTIC: ReadinessBranch.HEURISTIC,
}


def _ms(seconds: float) -> int:
    return round(seconds * 1000)


def classify_stall(snapshot: SignalSnapshot) -> ReadinessBranch:
    """Guess which strategy was closest to firing from the last signals.

    Used to label timeouts in ``auto`` mode, where every strategy ran.
    """
    if snapshot.pending_requests > 0:
        return ReadinessBranch.NETWORK_IDLE
    if snapshot.ready_state != "complete":
        return ReadinessBranch.READY_STATE
    return ReadinessBranch.HEURISTIC


class ReadinessEngine:
    """Decide when a rendered page is ready.

    Args:
        source: Signal source (a live page in production, scripted in tests).
        options: Readiness thresholds.
        clock: Monotonic clock returning seconds.
        sleep: Async sleep taking seconds.
    """

    def __init__(
        self,
        source: ProbeSource,
        options: ReadinessOptions,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._source = source
        self._options = options
        self._clock = clock
        self._sleep = sleep

        self._snapshot = SignalSnapshot()
        self._idle_since: float | None = None
        self._heuristic_since: float | None = None
        self._last_resource_count: int | None = None
        self._ticks = 0
        self._started = 0.0

    @property
    def snapshot(self) -> SignalSnapshot:
        return self._snapshot

    def _elapsed_ms(self) -> int:
        return _ms(self._clock() - self._started)

    def _remaining(self, deadline: float) -> float:
        return deadline - self._clock()

    def _read_timeout(self, deadline: float) -> float:
        """Bound for one probe read: a poll interval, cut short by the deadline."""
        return max(min(self._options.poll_interval_ms / 1000.0, self._remaining(deadline)), 0.0)

    async def _pause(self, deadline: float) -> None:
        remaining = self._remaining(deadline)
        if remaining > 0:
            await self._sleep(min(self._options.poll_interval_ms / 1000.0, remaining))

    def _settled(self, branch: ReadinessBranch) -> ReadinessResult:
        result = ReadinessResult.settled(
            branch,
            self._snapshot,
            elapsed_ms=self._elapsed_ms(),
            ticks=self._ticks,
        )
        logger.info(
            "Page ready",
            branch=branch.value,
            elapsed_ms=result.elapsed_ms,
            ticks=self._ticks,
        )
        return result

    def _timed_out(self, branch: ReadinessBranch) -> ReadinessResult:
        result = ReadinessResult.timed_out(
            branch,
            self._snapshot,
            elapsed_ms=self._elapsed_ms(),
            ticks=self._ticks,
        )
        logger.warning(
            "Readiness timed out",
            branch_attempted=branch.value,
            elapsed_ms=result.elapsed_ms,
            ticks=self._ticks,
            **self._snapshot.to_dict(),
        )
        return result

    # =========================================================================
    # Strategies
    # =========================================================================

    async def _check_ready_state(self, deadline: float) -> bool:
        state = await self._source.ready_state(timeout=self._read_timeout(deadline))
        self._snapshot.ready_state = state
        if state == "complete":
            return True
        return state == "interactive" and self._options.accept_interactive

    async def _check_network_idle(self, now: float, deadline: float) -> bool:
        signal = await self._source.network(timeout=self._read_timeout(deadline))
        if signal is None:
            # Unreadable page is never idle
            self._idle_since = None
            return False
        self._snapshot.pending_requests = signal.pending
        self._snapshot.resource_count = signal.resource_count

        resources_changed = (
            self._last_resource_count is not None
            and signal.resource_count != self._last_resource_count
        )
        self._last_resource_count = signal.resource_count

        if signal.pending > self._options.idle_threshold or resources_changed:
            self._idle_since = None
            return False
        if self._idle_since is None:
            self._idle_since = now
        return _ms(now - self._idle_since) >= self._options.idle_duration_ms

    async def _check_heuristic(self, now: float, deadline: float) -> bool:
        signal = await self._source.dom(timeout=self._read_timeout(deadline))
        if signal is None:
            self._heuristic_since = None
            return False
        self._snapshot.text_length = signal.text_length
        self._snapshot.has_primary_container = signal.has_primary_container

        if not (
            signal.text_length >= self._options.heuristic_min_text
            and signal.has_primary_container
        ):
            self._heuristic_since = None
            return False
        if self._heuristic_since is None:
            self._heuristic_since = now
        return _ms(now - self._heuristic_since) >= self._options.heuristic_confirm_ms

    async def _tick(self, deadline: float) -> ReadinessBranch | None:
        """Run each enabled strategy once; stops early once the deadline passes."""
        mode = self._options.wait_ready
        now = self._clock()

        if mode in (WaitReady.AUTO, WaitReady.READY_STATE):
            if await self._check_ready_state(deadline):
                return ReadinessBranch.READY_STATE
        if mode in (WaitReady.AUTO, WaitReady.NETWORK_IDLE):
            if self._remaining(deadline) <= 0:
                return None
            if await self._check_network_idle(now, deadline):
                return ReadinessBranch.NETWORK_IDLE
        if mode in (WaitReady.AUTO, WaitReady.HEURISTIC):
            if self._remaining(deadline) <= 0:
                return None
            if await self._check_heuristic(now, deadline):
                return ReadinessBranch.HEURISTIC
        return None

    # =========================================================================
    # Secondary waits
    # =========================================================================

    async def wait_for_media(self, deadline: float, budget_ms: int) -> bool:
        """Wait for images and web fonts to settle.

        Bounded by ``budget_ms`` and the overall deadline.

        Returns:
            True if media settled within the bound.
        """
        media_deadline = min(self._clock() + budget_ms / 1000.0, deadline)
        while True:
            signal = await self._source.media(timeout=self._read_timeout(media_deadline))
            self._snapshot.images_total = signal.images_total
            self._snapshot.images_incomplete = signal.images_incomplete
            self._snapshot.fonts_loaded = signal.fonts_loaded
            if signal.settled:
                return True
            if self._remaining(media_deadline) <= 0:
                logger.debug(
                    "Media wait elapsed",
                    images_incomplete=signal.images_incomplete,
                    fonts_loaded=signal.fonts_loaded,
                )
                return False
            await self._pause(media_deadline)

    async def _wait_for_selector(self, deadline: float) -> bool:
        selector = self._options.selector
        sub_deadline = min(
            self._clock() + self._options.selector_timeout_ms / 1000.0,
            deadline,
        )
        while True:
            present = await self._source.selector_present(
                selector, timeout=self._read_timeout(sub_deadline)
            )
            self._snapshot.selector_present = present
            if present:
                return True
            if self._remaining(sub_deadline) <= 0:
                return False
            await self._pause(sub_deadline)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def wait(self, deadline: float) -> ReadinessResult:
        """Poll until ready or until ``deadline`` (a ``clock()`` value).

        Args:
            deadline: Absolute deadline in clock seconds.

        Returns:
            ReadinessResult; never raises on timeout.
        """
        self._started = self._clock()
        mode = self._options.wait_ready
        selector = self._options.selector

        if mode == WaitReady.NONE:
            if not selector:
                return self._settled(ReadinessBranch.NONE)
            if await self._wait_for_selector(deadline):
                return self._settled(ReadinessBranch.SELECTOR)
            return self._timed_out(ReadinessBranch.SELECTOR)

        while True:
            if self._remaining(deadline) <= 0:
                attempted = _MODE_BRANCH.get(mode) or classify_stall(self._snapshot)
                return self._timed_out(attempted)

            self._ticks += 1
            branch = await self._tick(deadline)
            logger.debug(
                "readiness_tick",
                tick=self._ticks,
                mode=mode.value,
                **self._snapshot.to_dict(),
            )

            if branch is not None:
                if branch == ReadinessBranch.HEURISTIC:
                    await self.wait_for_media(deadline, self._options.media_wait_ms)
                if selector and not await self._wait_for_selector(deadline):
                    return self._timed_out(ReadinessBranch.SELECTOR)
                return self._settled(branch)

            await self._pause(deadline)
