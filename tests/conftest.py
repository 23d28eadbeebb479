"""Shared fixtures: a scriptable fake control channel and a recording sleep."""

from pathlib import Path
from typing import Any, Dict, List, Set

import pytest

from browser.channel import BrowserSession, LaunchOptions
from browser.humanizer import SCROLL_METRICS_SCRIPT
from browser.stealth_scripts import DISMISS_NOW, STOP_WATCHER, WATCHER_INSTALLED
from core.config import RunConfig, TimingSettings
from core.errors import ElementNotFound, EvaluationError, LaunchError


def results_html(count: int, prefix: str = "r") -> str:
    """A result listing page with *count* organic results."""
    anchors = "".join(
        f'<div class="g"><a jsname="UWckNb" href="https://{prefix}{i}.example/">'
        f"<h3>{prefix.upper()} result {i}</h3></a></div>"
        for i in range(1, count + 1)
    )
    return f"<html><body><div id='search'>{anchors}</div></body></html>"


class FakeElement:
    def __init__(self, selector: str):
        self.selector = selector


class FakeChannel:
    """In-memory stand-in for :class:`browser.channel.PlaywrightChannel`.

    Every call is recorded in :attr:`calls` as ``(method, argument)``.
    """

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.launches: List[LaunchOptions] = []
        self.profile_contents_at_launch: List[List[str]] = []
        self.closed: List[int] = []
        self.fail_launches = 0
        self.missing_selectors: Set[str] = set()
        self.failing_scripts: Set[str] = set()
        self.pages: List[str] = []
        self.default_page = results_html(3)
        self.scroll_metrics: List[float] = [0, 800, 0]
        self.watcher_installed = True
        self.prompt_showing = False
        self.identity_supported = True
        self.typed: List[str] = []
        self.keys: List[str] = []
        self.fail_on: Dict[str, Exception] = {}

    def count(self, method: str, arg: Any = None) -> int:
        return sum(
            1 for name, value in self.calls
            if name == method and (arg is None or value == arg)
        )

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail_on:
            raise self.fail_on[method]

    async def launch(self, options: LaunchOptions) -> BrowserSession:
        self.calls.append(("launch", options.profile_dir))
        self.launches.append(options)
        self.profile_contents_at_launch.append(
            sorted(p.name for p in Path(options.profile_dir).iterdir())
        )
        if self.fail_launches:
            self.fail_launches -= 1
            raise LaunchError("browser did not start",
                              profile_dir=str(options.profile_dir))
        # A running browser fills its profile
        (Path(options.profile_dir) / "Cookies").write_text("session")
        return BrowserSession(
            session_id=len(self.launches),
            profile_dir=Path(options.profile_dir),
            engine=options.engine,
        )

    async def close(self, session: BrowserSession) -> None:
        self.calls.append(("close", session.session_id))
        session.closed = True
        self.closed.append(session.session_id)

    async def navigate(self, session: BrowserSession, url: str) -> None:
        self.calls.append(("navigate", url))
        self._maybe_fail("navigate")

    async def wait_for_navigation(self, session: BrowserSession) -> None:
        self.calls.append(("wait_for_navigation", None))
        self._maybe_fail("wait_for_navigation")

    async def evaluate(self, session: BrowserSession, script: str) -> Any:
        self.calls.append(("evaluate", script))
        self._maybe_fail("evaluate")
        if script == SCROLL_METRICS_SCRIPT:
            if self.scroll_metrics is None:
                return None
            return list(self.scroll_metrics)
        if script == WATCHER_INSTALLED:
            return self.watcher_installed
        if script == DISMISS_NOW:
            showing, self.prompt_showing = self.prompt_showing, False
            return showing
        if script == STOP_WATCHER:
            return True
        if "__gnezdoPromptWatcher" in script and "MutationObserver" in script:
            self.watcher_installed = True
        return None

    async def wait_for_element(
        self, session: BrowserSession, selector: str, timeout_ms: int,
    ) -> FakeElement:
        self.calls.append(("wait_for_element", selector))
        if selector in self.missing_selectors:
            raise ElementNotFound(selector, timeout_ms)
        return FakeElement(selector)

    async def click(self, session: BrowserSession, element: Any) -> None:
        self.calls.append(("click", element.selector))

    async def send_char(self, session: BrowserSession, ch: str) -> None:
        self.calls.append(("send_char", ch))
        self.typed.append(ch)

    async def press_key(self, session: BrowserSession, key: str) -> None:
        self.calls.append(("press_key", key))
        self.keys.append(key)

    async def content(self, session: BrowserSession) -> str:
        self.calls.append(("content", None))
        self._maybe_fail("content")
        if self.pages:
            return self.pages.pop(0)
        return self.default_page

    async def add_init_script(
        self, session: BrowserSession, script: str,
    ) -> None:
        self.calls.append(("add_init_script", script))
        for marker in self.failing_scripts:
            if marker in script:
                raise EvaluationError(f"script rejected: {marker}")

    async def override_identity(self, session: BrowserSession, identity) -> bool:
        self.calls.append(("override_identity", identity.user_agent))
        return self.identity_supported


class FakeSleep:
    """Records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total_ms(self) -> int:
        return round(sum(self.calls) * 1000)


def quiet_timing(**overrides: Any) -> TimingSettings:
    """Timing without random pauses or backscrolls."""
    values: Dict[str, Any] = {
        "pause_chance": 0.0,
        "reading_chance": 0.0,
        "backscroll_chance": 0.0,
    }
    values.update(overrides)
    return TimingSettings(**values)


def make_config(tmp_path: Path, **overrides: Any) -> RunConfig:
    values: Dict[str, Any] = {
        "profile_dir": "profile",
        "chromium_path": "",
        "result_dir": "result",
        "base_dir": tmp_path,
        "timing": quiet_timing(),
    }
    values.update(overrides)
    return RunConfig(**values)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def config(tmp_path: Path) -> RunConfig:
    return make_config(tmp_path)


@pytest.fixture
def session(tmp_path: Path) -> BrowserSession:
    profile = tmp_path / "live-profile"
    profile.mkdir()
    return BrowserSession(session_id=1, profile_dir=profile)


class RecordingOperator:
    def __init__(self) -> None:
        self.messages: List[str] = []

    async def acknowledge(self, message: str) -> None:
        self.messages.append(message)


@pytest.fixture
def operator() -> RecordingOperator:
    return RecordingOperator()
