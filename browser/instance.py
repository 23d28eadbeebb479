"""Browser lifecycle management for Gnezdo.

:class:`BrowserManager` owns the single live :class:`BrowserSession` and its
on-disk identity store (the browser profile directory).  Every session is
started on a freshly wiped profile so that no cookie, cache entry or site
permission survives from one session to the next.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from core.config import IdentitySettings, RunConfig
from core.errors import ControlChannelError, LaunchError

from .channel import BrowserSession, ControlChannel, LaunchOptions

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def chromium_launch_args(identity: IdentitySettings) -> List[str]:
    """Command-line switches for a Chromium session presenting *identity*."""
    lang = ",".join(identity.languages[:2]) or identity.locale
    return [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-infobars",
        "--no-first-run",
        "--no-default-browser-check",
        f"--window-size={identity.window_width},{identity.window_height}",
        "--start-maximized",
        "--disable-blink-features=AutomationControlled",
        "--webrtc-ip-handling-policy=default_public_interface_only",
        "--force-webrtc-ip-handling-policy",
        f"--user-agent={identity.user_agent}",
        f"--lang={lang}",
        "--use-angle=d3d11",
        "--enable-gpu-rasterization",
        "--enable-zero-copy",
        "--ignore-gpu-blocklist",
        "--disable-dev-shm-usage",
        "--disable-geolocation",
        "--disable-notifications",
        "--disable-popup-blocking",
    ]


class BrowserManager:
    """Manages the lifecycle of the one browser session of a run.

    Responsibilities:
        * Wiping and recreating the identity store before every launch.
        * Launching the browser through the control channel.
        * Tearing the session down (prompt watcher, browser process,
          identity store) on restart and at the end of the run.

    Only one session exists at a time.  Callers must not keep a session
    returned by :meth:`acquire` across a :meth:`restart`.

    Args:
        config: Run configuration.
        channel: Browser-control channel used to launch and close.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        config: RunConfig,
        channel: ControlChannel,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.channel = channel
        self._sleep = sleep
        self._session: Optional[BrowserSession] = None
        self.restart_count = 0

    @property
    def session(self) -> Optional[BrowserSession]:
        """The live session, if any."""
        return self._session

    @property
    def is_alive(self) -> bool:
        return self._session is not None and not self._session.closed

    @property
    def profile_dir(self) -> Path:
        return self.config.profile_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def acquire(self) -> BrowserSession:
        """Return the live session, launching one if there is none.

        Raises:
            LaunchError: If the profile cannot be prepared or the browser
                does not start.
        """
        if self.is_alive:
            return self._session
        if self._session is not None:
            # Closed behind our back; clean up what is left of it
            await self.teardown()
        return await self._create()

    async def restart(self) -> BrowserSession:
        """Tear down the current session and start a fresh one.

        On failure the manager is left without a session.

        Raises:
            LaunchError: If the relaunch fails.
        """
        logger.info("Restarting browser (profile reset)...")
        await self.teardown()
        await self._sleep(self.config.timing.restart_settle_ms / 1000)
        self.restart_count += 1
        session = await self._create()
        logger.info("Browser restarted (session %d).", session.session_id)
        return session

    async def teardown(self) -> None:
        """Stop the watcher, close the browser and wipe the profile.

        Close errors are logged, never raised.  Safe to call repeatedly.
        """
        session, self._session = self._session, None
        if session is None:
            return

        if session.watcher is not None:
            await session.watcher.stop()
        try:
            await self.channel.close(session)
        except ControlChannelError as e:
            logger.warning(
                "Error closing browser session %d: %s",
                session.session_id, e,
            )
        self._wipe_profile(session.profile_dir)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def launch_options(self, profile_dir: Path) -> LaunchOptions:
        """Build the channel launch options from the configuration."""
        config = self.config
        identity = config.identity
        chromium = config.browser_engine == "chromium"
        return LaunchOptions(
            profile_dir=profile_dir,
            engine=config.browser_engine,
            executable_path=config.browser_executable if chromium else None,
            headless=config.headless,
            args=chromium_launch_args(identity) if chromium else [],
            ignore_default_args=["--enable-automation"] if chromium else [],
            locale=identity.locale,
            user_agent=identity.user_agent if chromium else None,
            window_width=identity.window_width,
            window_height=identity.window_height,
            navigation_timeout_ms=config.navigation_timeout_ms,
            element_timeout_ms=config.element_timeout_ms,
        )

    async def _create(self) -> BrowserSession:
        profile_dir = self._prepare_profile()
        session = await self.channel.launch(self.launch_options(profile_dir))
        await self._sleep(self.config.timing.launch_settle_ms / 1000)
        self._session = session
        logger.info(
            "Browser session %d ready (profile: %s)",
            session.session_id, profile_dir,
        )
        return session

    def _prepare_profile(self) -> Path:
        """Wipe and recreate the identity store.

        Raises:
            LaunchError: If the directory cannot be removed or created.
        """
        profile_dir = self.profile_dir
        logger.info("Resetting browser profile: %s", profile_dir)
        try:
            if profile_dir.exists():
                shutil.rmtree(profile_dir)
            profile_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LaunchError(
                f"Could not prepare profile directory: {exc}",
                profile_dir=str(profile_dir),
            ) from exc
        return profile_dir

    @staticmethod
    def _wipe_profile(profile_dir: Path) -> None:
        try:
            if profile_dir.exists():
                shutil.rmtree(profile_dir)
        except OSError as e:
            # The next launch retries the wipe and fails loudly if needed
            logger.warning("Could not wipe profile %s: %s", profile_dir, e)
