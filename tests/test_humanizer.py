"""Tests for the humanisation engine."""

import random
import re

import pytest

from browser.humanizer import (
    KEEPALIVE_SCRIPT,
    SCROLL_METRICS_SCRIPT,
    Humanizer,
    scroll_by_script,
)
from conftest import FakeChannel, FakeSleep, quiet_timing

SCROLL_RE = re.compile(r"top: (-?\d+)")


class ScrollingChannel(FakeChannel):
    """Fake channel whose page actually scrolls."""

    def __init__(self, height: float, viewport: float = 800):
        super().__init__()
        self.offset = 0.0
        self.viewport = viewport
        self.height = height
        self.scrolls = []

    async def evaluate(self, session, script):
        if script == SCROLL_METRICS_SCRIPT:
            self.calls.append(("evaluate", script))
            return [self.offset, self.viewport, self.height]
        match = SCROLL_RE.search(script)
        if match:
            self.calls.append(("evaluate", script))
            amount = int(match.group(1))
            self.scrolls.append(amount)
            self.offset = max(0.0, self.offset + amount)
            return None
        return await super().evaluate(session, script)


class TestPauseWithKeepalive:
    """Sliced waits with a no-op ping after every slice."""

    @pytest.mark.asyncio
    async def test_950ms_with_400ms_slices(self, channel, session):
        sleep = FakeSleep()
        humanizer = Humanizer(channel, quiet_timing(), sleep=sleep)

        pings = await humanizer.pause_with_keepalive(session, 950)

        assert pings == 3
        assert channel.count("evaluate", KEEPALIVE_SCRIPT) == 3
        assert sleep.calls == pytest.approx([0.4, 0.4, 0.15])
        assert sleep.total_ms == 950

    @pytest.mark.asyncio
    async def test_exact_multiple_of_slice(self, channel, session):
        sleep = FakeSleep()
        humanizer = Humanizer(channel, quiet_timing(), sleep=sleep)

        assert await humanizer.pause_with_keepalive(session, 800) == 2
        assert sleep.total_ms == 800

    @pytest.mark.asyncio
    async def test_zero_total_does_nothing(self, channel, session):
        sleep = FakeSleep()
        humanizer = Humanizer(channel, quiet_timing(), sleep=sleep)

        assert await humanizer.pause_with_keepalive(session, 0) == 0
        assert channel.calls == []
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_custom_slice(self, channel, session):
        sleep = FakeSleep()
        humanizer = Humanizer(
            channel, quiet_timing(keepalive_slice_ms=100), sleep=sleep,
        )

        assert await humanizer.pause_with_keepalive(session, 960) == 10
        assert sleep.total_ms == 960


class TestTypeText:
    """One input event per character with independent random delays."""

    @pytest.mark.asyncio
    async def test_types_every_character_in_order(self, channel, session):
        sleep = FakeSleep()
        humanizer = Humanizer(
            channel, quiet_timing(), rng=random.Random(7), sleep=sleep,
        )

        await humanizer.type_text(session, "東京 ramen")

        assert "".join(channel.typed) == "東京 ramen"
        assert len(sleep.calls) == len("東京 ramen")

    @pytest.mark.asyncio
    async def test_delays_stay_in_range(self, channel, session):
        sleep = FakeSleep()
        humanizer = Humanizer(
            channel, quiet_timing(), rng=random.Random(1), sleep=sleep,
        )

        await humanizer.type_text(session, "x" * 200)

        delays_ms = [round(s * 1000) for s in sleep.calls]
        assert min(delays_ms) >= 75
        assert max(delays_ms) <= 300
        # Independent draws, not one fixed delay
        assert len(set(delays_ms)) > 1

    @pytest.mark.asyncio
    async def test_empty_text(self, channel, session):
        sleep = FakeSleep()
        humanizer = Humanizer(channel, quiet_timing(), sleep=sleep)

        await humanizer.type_text(session, "")

        assert channel.typed == []
        assert sleep.calls == []


class TestScrollToBottom:
    """Mode-based scrolling until the viewport reaches the page end."""

    @pytest.mark.asyncio
    async def test_already_at_bottom(self, channel, session):
        channel.scroll_metrics = [0, 800, 805]
        humanizer = Humanizer(channel, quiet_timing(), sleep=FakeSleep())

        assert await humanizer.scroll_to_bottom(session) == 0
        assert channel.count("evaluate", SCROLL_METRICS_SCRIPT) == 1

    @pytest.mark.asyncio
    async def test_scrolls_until_bottom(self, session):
        channel = ScrollingChannel(height=5000)
        humanizer = Humanizer(
            channel, quiet_timing(), rng=random.Random(3), sleep=FakeSleep(),
        )

        steps = await humanizer.scroll_to_bottom(session)

        assert steps == len(channel.scrolls)
        assert steps > 0
        assert channel.offset + channel.viewport >= channel.height - 10
        assert all(175 <= amount <= 250 for amount in channel.scrolls)

    @pytest.mark.asyncio
    async def test_step_delays_follow_modes(self, session):
        channel = ScrollingChannel(height=20000)
        sleep = FakeSleep()
        humanizer = Humanizer(
            channel, quiet_timing(), rng=random.Random(11), sleep=sleep,
        )

        await humanizer.scroll_to_bottom(session)

        delays_ms = [round(s * 1000) for s in sleep.calls]
        assert len(delays_ms) == len(channel.scrolls)
        assert all(10 <= d <= 25 for d in delays_ms)

    @pytest.mark.asyncio
    async def test_step_cap_on_endless_page(self, session):
        channel = ScrollingChannel(height=float("inf"))
        humanizer = Humanizer(
            channel, quiet_timing(max_scroll_steps=5), sleep=FakeSleep(),
        )

        assert await humanizer.scroll_to_bottom(session) == 5

    @pytest.mark.asyncio
    async def test_backscroll_and_pauses(self, session):
        channel = ScrollingChannel(height=3000)
        timing = quiet_timing(backscroll_chance=1.0, reading_chance=1.0)
        sleep = FakeSleep()
        humanizer = Humanizer(
            channel, timing, rng=random.Random(5), sleep=sleep,
        )

        await humanizer.scroll_to_bottom(session)

        backs = [a for a in channel.scrolls if a < 0]
        assert backs
        assert all(38 <= -a <= 112 for a in backs)
        assert channel.count("evaluate", KEEPALIVE_SCRIPT) > 0

    @pytest.mark.asyncio
    async def test_unreadable_metrics_stop_scrolling(self, channel, session):
        channel.scroll_metrics = None
        humanizer = Humanizer(channel, quiet_timing(), sleep=FakeSleep())

        assert await humanizer.scroll_to_bottom(session) == 0


def test_scroll_by_script():
    assert scroll_by_script(120) == "window.scrollBy({ top: 120, behavior: 'auto' })"
    assert "top: -40" in scroll_by_script(-40)
