"""Browser-control channel for Gnezdo.

Everything above this module talks to the browser through the
:class:`ControlChannel` capability interface, so the orchestration engine can
be exercised against a scripted fake.  :class:`PlaywrightChannel` is the
production implementation.  It launches either a Chromium executable through
a Playwright persistent context, or Camoufox (a hardened Firefox fork) with a
persistent profile.

Playwright exceptions never leak past this module.  They are translated into
the :mod:`core.errors` taxonomy at the call site:

* launch failures -> :class:`~core.errors.LaunchError`
* bounded element waits -> :class:`~core.errors.ElementNotFound`
* navigation / load waits -> :class:`~core.errors.NavigationTimeout`
* evaluation and input dispatch -> :class:`~core.errors.EvaluationError`
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from browserforge.fingerprints import Screen
from camoufox.async_api import AsyncCamoufox
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from core.config import IdentitySettings
from core.errors import (
    ElementNotFound,
    EvaluationError,
    LaunchError,
    NavigationTimeout,
)

if TYPE_CHECKING:
    from .stealth_hub import PromptWatcher

logger = logging.getLogger(__name__)


def user_agent_override(identity: IdentitySettings) -> Dict[str, Any]:
    """Build the ``Network.setUserAgentOverride`` parameters for *identity*."""
    major = identity.major_version
    return {
        "userAgent": identity.user_agent,
        "acceptLanguage": identity.accept_language,
        "platform": identity.platform,
        "userAgentMetadata": {
            "brands": [
                {"brand": "Chromium", "version": major},
                {"brand": "Google Chrome", "version": major},
                {"brand": "Not/A)Brand", "version": "99"},
            ],
            "fullVersionList": [
                {"brand": "Chromium",
                 "version": identity.browser_full_version},
                {"brand": "Google Chrome",
                 "version": identity.browser_full_version},
                {"brand": "Not/A)Brand", "version": "99.0.0.0"},
            ],
            "fullVersion": identity.browser_full_version,
            "platform": identity.ua_platform,
            "platformVersion": identity.ua_platform_version,
            "architecture": identity.ua_architecture,
            "model": "",
            "mobile": False,
            "bitness": identity.ua_bitness,
            "wow64": False,
        },
    }


@dataclass
class LaunchOptions:
    """Everything the channel needs to start one browser instance.

    Attributes:
        profile_dir: Identity store (user data directory).  Must exist and
            be empty; the lifecycle manager guarantees both.
        engine: ``"chromium"`` or ``"camoufox"``.
        executable_path: Browser binary, or ``None`` for the engine's
            bundled build.
        headless: Run without a visible window.
        args: Extra command-line switches (Chromium only).
        ignore_default_args: Playwright default switches to drop.
        locale: Browser locale, e.g. ``ja-JP``.
        user_agent: User-Agent string set at context level.
        window_width: Window / screen width in pixels.
        window_height: Window / screen height in pixels.
        navigation_timeout_ms: Default navigation timeout.
        element_timeout_ms: Default timeout for element operations.
    """

    profile_dir: Path
    engine: str = "chromium"
    executable_path: Optional[Path] = None
    headless: bool = False
    args: List[str] = field(default_factory=list)
    ignore_default_args: List[str] = field(default_factory=list)
    locale: Optional[str] = None
    user_agent: Optional[str] = None
    window_width: int = 1920
    window_height: int = 1080
    navigation_timeout_ms: int = 30000
    element_timeout_ms: int = 10000


@dataclass
class BrowserSession:
    """One live browser instance plus the path of its identity store.

    Sessions are created and destroyed only by
    :class:`~browser.instance.BrowserManager`.  No other component may keep
    a reference after the manager restarts.

    Attributes:
        session_id: Monotonic id, unique within the process.
        profile_dir: On-disk identity store owned by this session.
        engine: Engine that produced the session.
        page: The single working tab.
        context: Browser context owning *page*.
        driver: Object to shut down on close (Playwright driver or
            Camoufox wrapper).
        cdp: Chromium DevTools session carrying identity overrides.
        watcher: Handle of the in-page prompt watcher, if installed.
        nav_origin: URL recorded before an action expected to navigate.
        closed: Set once :meth:`ControlChannel.close` ran.
    """

    session_id: int
    profile_dir: Path
    engine: str = "chromium"
    page: Any = None
    context: Any = None
    driver: Any = None
    cdp: Any = None
    watcher: Optional["PromptWatcher"] = None
    nav_origin: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)
    closed: bool = False


class ControlChannel(Protocol):
    """Capability interface over the remote browser-control transport."""

    async def launch(self, options: LaunchOptions) -> BrowserSession: ...

    async def navigate(self, session: BrowserSession, url: str) -> None: ...

    async def wait_for_navigation(self, session: BrowserSession) -> None: ...

    async def evaluate(self, session: BrowserSession, script: str) -> Any: ...

    async def wait_for_element(
        self, session: BrowserSession, selector: str, timeout_ms: int,
    ) -> Any: ...

    async def click(self, session: BrowserSession, element: Any) -> None: ...

    async def send_char(self, session: BrowserSession, ch: str) -> None: ...

    async def press_key(self, session: BrowserSession, key: str) -> None: ...

    async def content(self, session: BrowserSession) -> str: ...

    async def add_init_script(
        self, session: BrowserSession, script: str,
    ) -> None: ...

    async def override_identity(
        self, session: BrowserSession, identity: IdentitySettings,
    ) -> bool: ...

    async def close(self, session: BrowserSession) -> None: ...


class PlaywrightChannel:
    """:class:`ControlChannel` implementation backed by Playwright."""

    def __init__(self) -> None:
        self._session_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def launch(self, options: LaunchOptions) -> BrowserSession:
        """Start a browser on ``options.profile_dir`` and adopt its first tab.

        Raises:
            LaunchError: If the engine fails to start.
        """
        logger.info(
            "Launching %s (headless: %s, profile: %s)",
            options.engine, options.headless, options.profile_dir,
        )
        try:
            if options.engine == "camoufox":
                context, driver = await self._launch_camoufox(options)
            else:
                context, driver = await self._launch_chromium(options)
        except (PlaywrightError, OSError) as exc:
            raise LaunchError(
                f"{options.engine} failed to start: {exc}",
                profile_dir=str(options.profile_dir),
            ) from exc

        session = BrowserSession(
            session_id=next(self._session_ids),
            profile_dir=options.profile_dir,
            engine=options.engine,
            context=context,
            driver=driver,
        )
        try:
            context.set_default_timeout(options.element_timeout_ms)
            context.set_default_navigation_timeout(
                options.navigation_timeout_ms,
            )
            pages = list(context.pages)
            session.page = pages[0] if pages else await context.new_page()
            for extra in pages[1:]:
                await extra.close()
        except PlaywrightError as exc:
            await self.close(session)
            raise LaunchError(
                f"Could not open a working tab: {exc}",
                profile_dir=str(options.profile_dir),
            ) from exc
        return session

    async def _launch_chromium(self, options: LaunchOptions):
        playwright = await async_playwright().start()
        try:
            context = await playwright.chromium.launch_persistent_context(
                str(options.profile_dir),
                executable_path=(
                    str(options.executable_path)
                    if options.executable_path else None
                ),
                headless=options.headless,
                args=options.args,
                ignore_default_args=options.ignore_default_args,
                locale=options.locale,
                user_agent=options.user_agent,
                no_viewport=True,
            )
        except BaseException:
            await playwright.stop()
            raise
        return context, playwright

    async def _launch_camoufox(self, options: LaunchOptions):
        kwargs: Dict[str, Any] = {
            "headless": options.headless,
            "humanize": True,
            "persistent_context": True,
            "user_data_dir": str(options.profile_dir),
            "screen": Screen(
                max_width=options.window_width,
                max_height=options.window_height,
            ),
        }
        if options.locale:
            kwargs["locale"] = options.locale
        if options.executable_path:
            kwargs["executable_path"] = str(options.executable_path)
        try:
            camoufox = AsyncCamoufox(**kwargs)
            context = await camoufox.__aenter__()
        except (PlaywrightError, OSError):
            raise
        except Exception as exc:
            # Camoufox validates its options and fetches its binary itself
            raise LaunchError(
                f"camoufox failed to start: {exc!r}",
                profile_dir=str(options.profile_dir),
            ) from exc
        return context, camoufox

    async def close(self, session: BrowserSession) -> None:
        """Terminate the browser.  Errors are logged, not raised."""
        if session.closed:
            return
        session.closed = True

        if session.context is not None:
            try:
                await session.context.close()
            except PlaywrightError as e:
                logger.warning(
                    "Error closing session %d context: %s",
                    session.session_id, e,
                )

        driver = session.driver
        if driver is None:
            return
        try:
            if session.engine == "camoufox":
                await driver.__aexit__(None, None, None)
            else:
                await driver.stop()
        except PlaywrightError as e:
            logger.warning(
                "Error stopping %s driver for session %d: %s",
                session.engine, session.session_id, e,
            )
        logger.info("Browser session %d closed.", session.session_id)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def navigate(self, session: BrowserSession, url: str) -> None:
        session.nav_origin = None
        try:
            await session.page.goto(url, wait_until="load")
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(
                f"Timed out loading page: {exc}", url=url,
            ) from exc
        except PlaywrightError as exc:
            raise NavigationTimeout(
                f"Navigation failed: {exc}", url=url,
            ) from exc

    async def wait_for_navigation(self, session: BrowserSession) -> None:
        """Wait until the page has navigated and finished loading.

        After :meth:`click` or :meth:`press_key` the URL at the time of the
        action is known, so the wait also requires the URL to change.
        Otherwise only the load state is awaited.
        """
        origin, session.nav_origin = session.nav_origin, None
        page = session.page
        try:
            if origin is not None:
                await page.wait_for_url(
                    lambda url: url != origin, wait_until="load",
                )
            else:
                await page.wait_for_load_state("load")
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(
                f"Timed out waiting for navigation: {exc}", url=page.url,
            ) from exc
        except PlaywrightError as exc:
            raise NavigationTimeout(
                f"Navigation wait failed: {exc}", url=page.url,
            ) from exc

    # ------------------------------------------------------------------
    # Scripts and elements
    # ------------------------------------------------------------------

    async def evaluate(self, session: BrowserSession, script: str) -> Any:
        try:
            return await session.page.evaluate(script)
        except PlaywrightError as exc:
            raise EvaluationError(f"Evaluation failed: {exc}") from exc

    async def content(self, session: BrowserSession) -> str:
        try:
            return await session.page.content()
        except PlaywrightError as exc:
            raise EvaluationError(
                f"Could not read page content: {exc}",
            ) from exc

    async def wait_for_element(
        self,
        session: BrowserSession,
        selector: str,
        timeout_ms: int,
    ) -> Any:
        try:
            element = await session.page.wait_for_selector(
                selector, timeout=timeout_ms, state="visible",
            )
        except PlaywrightTimeoutError as exc:
            raise ElementNotFound(selector, timeout_ms) from exc
        except PlaywrightError as exc:
            raise EvaluationError(
                f"Lookup of {selector!r} failed: {exc}",
            ) from exc
        if element is None:
            raise ElementNotFound(selector, timeout_ms)
        return element

    async def add_init_script(
        self, session: BrowserSession, script: str,
    ) -> None:
        try:
            await session.context.add_init_script(script=script)
        except PlaywrightError as exc:
            raise EvaluationError(
                f"Could not install init script: {exc}",
            ) from exc

    async def override_identity(
        self, session: BrowserSession, identity: IdentitySettings,
    ) -> bool:
        """Send ``Network.setUserAgentOverride`` over DevTools.

        The override carries the user agent, accept-language, navigator
        platform and the structured client-hint metadata.

        Returns:
            ``False`` when the engine has no DevTools protocol (Camoufox),
            ``True`` once the override is in place.
        """
        if session.engine != "chromium":
            return False
        try:
            if session.cdp is None:
                session.cdp = await session.context.new_cdp_session(
                    session.page,
                )
            await session.cdp.send(
                "Network.setUserAgentOverride",
                user_agent_override(identity),
            )
        except PlaywrightError as exc:
            raise EvaluationError(
                f"User agent override failed: {exc}",
            ) from exc
        return True

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def click(self, session: BrowserSession, element: Any) -> None:
        session.nav_origin = session.page.url
        try:
            await element.click()
        except PlaywrightError as exc:
            raise EvaluationError(f"Click failed: {exc}") from exc

    async def send_char(self, session: BrowserSession, ch: str) -> None:
        try:
            await session.page.keyboard.type(ch)
        except PlaywrightError as exc:
            raise EvaluationError(
                f"Could not type {ch!r}: {exc}",
            ) from exc

    async def press_key(self, session: BrowserSession, key: str) -> None:
        session.nav_origin = session.page.url
        try:
            await session.page.keyboard.press(key)
        except PlaywrightError as exc:
            raise EvaluationError(
                f"Could not press {key!r}: {exc}",
            ) from exc
