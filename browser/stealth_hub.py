"""Fingerprint evasion and prompt suppression for fresh browser sessions.

Provides three abstractions:

:class:`StealthHub`
    Installs the evasion payloads of :mod:`browser.stealth_scripts` into a
    fresh session, in a fixed order and before any navigation, and offers a
    proactive prompt dismissal for the query flow.

:class:`EvasionReport`
    What :meth:`StealthHub.apply_to` managed to install.  Installation
    failures are non-fatal: they are collected here and logged, and the
    session is marked *degraded*.

:class:`PromptWatcher`
    Python handle of the in-page prompt watcher.  The lifecycle manager
    stops it on teardown; the page stops it on its own on ``pagehide``.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List

from core.config import RunConfig
from core.errors import ControlChannelError

from .channel import BrowserSession, ControlChannel
from .stealth_scripts import (
    DISMISS_NOW,
    STOP_WATCHER,
    WATCHER_INSTALLED,
    get_prompt_watcher_script,
    get_stealth_payloads,
)

logger = logging.getLogger(__name__)

IDENTITY_OVERRIDE = "identity_override"
PROMPT_WATCHER = "prompt_watcher"

# Camoufox spoofs these natively; a page-level Chrome shape would contradict it
NATIVE_ON_CAMOUFOX: FrozenSet[str] = frozenset({
    "chrome_runtime", "plugins", "languages", "hardware", "webgl",
})


@dataclass
class EvasionReport:
    """Outcome of installing the evasion layer on one session.

    Attributes:
        session_id: Session the report belongs to.
        applied: Payload names installed successfully, in order.
        failed: Payload name -> error message.
        skipped: Payloads not applicable to the session's engine.
    """

    session_id: int
    applied: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """``True`` when at least one payload failed to install."""
        return bool(self.failed)

    def summary(self) -> str:
        return (
            f"{len(self.applied)} applied, {len(self.failed)} failed, "
            f"{len(self.skipped)} skipped"
        )


class PromptWatcher:
    """Handle of the in-page prompt watcher of one session."""

    def __init__(self, channel: ControlChannel, session: BrowserSession):
        self.channel = channel
        self.session = session
        self.active = True

    async def stop(self) -> None:
        """Stop the watcher on the current document.  Idempotent.

        A failure (typically a browser that is already gone) is logged; the
        watcher is considered stopped either way.
        """
        if not self.active:
            return
        self.active = False
        try:
            await self.channel.evaluate(self.session, STOP_WATCHER)
        except ControlChannelError as e:
            logger.warning(
                "Could not stop prompt watcher of session %d: %s",
                self.session.session_id, e,
            )


class StealthHub:
    """Installs evasion payloads and dismisses consent prompts.

    Args:
        channel: Browser-control channel.
        config: Run configuration (identity values and watcher timing).
    """

    def __init__(self, channel: ControlChannel, config: RunConfig):
        self.channel = channel
        self.config = config

    async def apply_to(self, session: BrowserSession) -> EvasionReport:
        """Install every payload on *session*, in order.

        The identity override goes first, then the init scripts returned by
        :func:`~browser.stealth_scripts.get_stealth_payloads`.  No failure is
        raised; each one is recorded on the returned report.
        """
        report = EvasionReport(session_id=session.session_id)

        try:
            if await self.channel.override_identity(
                session, self.config.identity,
            ):
                report.applied.append(IDENTITY_OVERRIDE)
            else:
                report.skipped.append(IDENTITY_OVERRIDE)
        except ControlChannelError as e:
            report.failed[IDENTITY_OVERRIDE] = str(e)

        payloads = get_stealth_payloads(
            self.config.identity, self.config.timing,
        )
        for name, script in payloads:
            if session.engine == "camoufox" and name in NATIVE_ON_CAMOUFOX:
                report.skipped.append(name)
                continue
            try:
                await self.channel.add_init_script(session, script)
                report.applied.append(name)
            except ControlChannelError as e:
                report.failed[name] = str(e)

        if PROMPT_WATCHER in report.applied:
            session.watcher = PromptWatcher(self.channel, session)

        if report.degraded:
            for name, error in report.failed.items():
                logger.warning(
                    "Evasion payload %r failed on session %d: %s",
                    name, session.session_id, error,
                )
            logger.warning(
                "Session %d runs with degraded evasion (%s)",
                session.session_id, report.summary(),
            )
        else:
            logger.info(
                "Evasion layer installed on session %d (%s)",
                session.session_id, report.summary(),
            )
        if report.skipped:
            logger.debug("Skipped payloads: %s", ", ".join(report.skipped))
        return report

    async def dismiss_prompts(self, session: BrowserSession) -> bool:
        """Dismiss the location consent prompt if it is showing.

        Installs the watcher on the current document first when the init
        script has not run there (e.g. a page that was already open).

        Returns:
            ``True`` if a prompt was found and dismissed.

        Raises:
            ControlChannelError: If the page cannot be scripted.
        """
        installed = await self.channel.evaluate(session, WATCHER_INSTALLED)
        if not installed:
            logger.debug("Prompt watcher missing on page, installing now")
            await self.channel.evaluate(
                session, get_prompt_watcher_script(self.config.timing),
            )
            if session.watcher is None:
                session.watcher = PromptWatcher(self.channel, session)

        dismissed = bool(await self.channel.evaluate(session, DISMISS_NOW))
        if dismissed:
            logger.info("Dismissed location prompt")
        return dismissed
