"""Human-like input timing for Gnezdo.

:class:`Humanizer` drives typing, scrolling and waiting through the control
channel with randomised, human-plausible cadence.  All ranges come from
:class:`core.config.TimingSettings`.

Typical usage::

    humanizer = Humanizer(channel, config.timing)
    await humanizer.type_text(session, "query")
    await humanizer.scroll_to_bottom(session)
    await humanizer.pause_with_keepalive(session, 960)
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple

from core.config import TimingSettings

from .channel import BrowserSession, ControlChannel

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

KEEPALIVE_SCRIPT = "1"

SCROLL_METRICS_SCRIPT = """
(() => [
    window.scrollY || document.documentElement.scrollTop || 0,
    window.innerHeight || 800,
    Math.max(
        document.body ? document.body.scrollHeight : 0,
        document.documentElement ? document.documentElement.scrollHeight : 0
    )
])()
"""


def scroll_by_script(pixels: int) -> str:
    """Script scrolling the window by *pixels* (negative scrolls up)."""
    return f"window.scrollBy({{ top: {int(pixels)}, behavior: 'auto' }})"


class Humanizer:
    """Humanised typing, scrolling and keep-alive pauses.

    Args:
        channel: Browser-control channel.
        timing: Ranges and probabilities to draw from.
        rng: Random source.  Defaults to a fresh ``random.Random`` seeded
            from OS entropy; tests pass a seeded instance.
        sleep: Awaitable sleep taking seconds.
    """

    def __init__(
        self,
        channel: ControlChannel,
        timing: TimingSettings,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.channel = channel
        self.timing = timing
        self.rng = rng or random.Random()
        self._sleep = sleep

    def random_ms(self, bounds: Tuple[int, int]) -> int:
        """Uniform integer in the inclusive range *bounds*."""
        low, high = bounds
        return self.rng.randint(low, high)

    def chance(self, probability: float) -> bool:
        return self.rng.random() < probability

    async def settle(self, ms: int) -> None:
        """Plain wait of *ms* milliseconds."""
        await self._sleep(ms / 1000)

    async def type_text(self, session: BrowserSession, text: str) -> None:
        """Type *text* one character at a time with random gaps.

        Each character is its own input event, followed by a delay drawn
        independently from ``timing.type_delay_ms``.
        """
        for ch in text:
            await self.channel.send_char(session, ch)
            await self.settle(self.random_ms(self.timing.type_delay_ms))

    async def pause_with_keepalive(
        self, session: BrowserSession, total_ms: int,
    ) -> int:
        """Wait *total_ms* in slices, pinging the page after every slice.

        The browser-control connection can drop when idle for long, so a
        no-op evaluation follows each slice of ``timing.keepalive_slice_ms``.
        The slices add up to exactly *total_ms*.

        Returns:
            Number of keep-alive evaluations issued.
        """
        slice_ms = self.timing.keepalive_slice_ms
        elapsed = 0
        pings = 0
        while elapsed < total_ms:
            step = min(slice_ms, total_ms - elapsed)
            await self.settle(step)
            elapsed += step
            await self.channel.evaluate(session, KEEPALIVE_SCRIPT)
            pings += 1
        return pings

    async def scroll_to_bottom(self, session: BrowserSession) -> int:
        """Scroll down like a reader until the bottom of the page.

        Each step uses the current scroll mode, which is re-rolled after a
        random number of steps.  Longer pauses, reading pauses and small
        backward scrolls are mixed in at random.  Stops when the viewport
        reaches the end of the content (within ``scroll_tolerance_px``) or
        after ``max_scroll_steps`` steps.

        Returns:
            Number of scroll steps performed.
        """
        timing = self.timing
        mode = timing.scroll_modes[0]
        mode_steps_remaining = 0
        steps = 0

        while True:
            offset, viewport, height = await self._scroll_metrics(session)
            if offset + viewport >= height - timing.scroll_tolerance_px:
                break
            if steps >= timing.max_scroll_steps:
                logger.warning(
                    "Stopped scrolling after %d steps; page keeps growing",
                    steps,
                )
                break

            if mode_steps_remaining == 0:
                mode = self.rng.choice(timing.scroll_modes)
                mode_steps_remaining = self.random_ms(
                    timing.scroll_mode_hold_steps,
                )
            mode_steps_remaining -= 1

            amount = self.random_ms(mode.amount_px)
            delay = self.random_ms(mode.delay_ms)
            await self.channel.evaluate(session, scroll_by_script(amount))
            await self.settle(delay)
            steps += 1

            if self.chance(timing.pause_chance):
                await self.pause_with_keepalive(
                    session, self.random_ms(timing.pause_ms),
                )

            if self.chance(timing.reading_chance):
                pause = self.random_ms(timing.reading_ms)
                logger.debug("Reading for %dms", pause)
                await self.pause_with_keepalive(session, pause)

            if self.chance(timing.backscroll_chance):
                back = self.random_ms(timing.backscroll_px)
                await self.channel.evaluate(session, scroll_by_script(-back))
                await self.pause_with_keepalive(
                    session, self.random_ms(timing.backscroll_pause_ms),
                )

        logger.debug("Reached page bottom after %d scroll steps", steps)
        return steps

    async def _scroll_metrics(
        self, session: BrowserSession,
    ) -> Tuple[float, float, float]:
        value = await self.channel.evaluate(session, SCROLL_METRICS_SCRIPT)
        try:
            offset, viewport, height = (float(v) for v in value)
        except (TypeError, ValueError):
            logger.debug("Unexpected scroll metrics %r", value)
            # Treat unreadable metrics as "at the bottom"
            return 0.0, 0.0, 0.0
        return offset, viewport, height
