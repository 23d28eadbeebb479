"""Execution of a single search query.

:class:`QueryExecutor` takes a ready browser session from a neutral page to
the last result page of one query:

1. Create the query output directory.
2. Load a blank page and ping it.
3. Open the search home page and dismiss the location prompt.
4. Type the query into the search box and submit it.
5. Hand over to :class:`~core.pagination.PaginationController`.

Every browser-control failure and every output I/O failure aborts the query
with :class:`~core.errors.QueryError`.  Retrying is the orchestrator's call.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from browser.channel import BrowserSession, ControlChannel
from browser.humanizer import KEEPALIVE_SCRIPT, Humanizer
from browser.stealth_hub import StealthHub
from core.config import RunConfig
from core.errors import ControlChannelError, QueryError
from core.pagination import (
    NextPageTracker,
    PaginationController,
    PaginationOutcome,
)

logger = logging.getLogger(__name__)


@dataclass
class QueryRun:
    """State of one query within the run.

    Attributes:
        query: Query text as configured.
        index: 0-based position in the query list.
        output_dir: ``{run_dir}/{sanitized query}``.
        retry_count: Failed attempts so far.
        attempt: 1-based number of the current attempt.
    """

    query: str
    index: int
    output_dir: Path
    retry_count: int = 0
    attempt: int = 1


class QueryExecutor:
    """Runs one query end to end on a given session.

    Args:
        channel: Browser-control channel.
        humanizer: Humanised typing and pauses.
        stealth: Used for the proactive prompt dismissal.
        pagination: Walks the result pages.
        config: Run configuration.
    """

    def __init__(
        self,
        channel: ControlChannel,
        humanizer: Humanizer,
        stealth: StealthHub,
        pagination: PaginationController,
        config: RunConfig,
    ) -> None:
        self.channel = channel
        self.humanizer = humanizer
        self.stealth = stealth
        self.pagination = pagination
        self.config = config

    async def run(
        self,
        session: BrowserSession,
        query_run: QueryRun,
        tracker: NextPageTracker,
    ) -> PaginationOutcome:
        """Execute *query_run* on *session*.

        Returns:
            The pagination outcome of the query.

        Raises:
            QueryError: If the query had to be aborted.  The cause is
                chained.
        """
        try:
            return await self._execute(session, query_run, tracker)
        except (ControlChannelError, OSError) as exc:
            raise QueryError(query_run.query, exc) from exc

    async def _execute(
        self,
        session: BrowserSession,
        query_run: QueryRun,
        tracker: NextPageTracker,
    ) -> PaginationOutcome:
        target = self.config.target
        timing = self.config.timing

        query_run.output_dir.mkdir(parents=True, exist_ok=True)

        await self.channel.navigate(session, target.neutral_url)
        await self.humanizer.settle(timing.neutral_settle_ms)
        await self.channel.evaluate(session, KEEPALIVE_SCRIPT)

        logger.debug("[%s] Opening %s", query_run.query, target.home_url)
        await self.channel.navigate(session, target.home_url)
        await self.channel.wait_for_navigation(session)
        await self.humanizer.pause_with_keepalive(
            session, timing.home_settle_ms,
        )
        await self.stealth.dismiss_prompts(session)

        search_box = await self.channel.wait_for_element(
            session,
            target.search_input_selector,
            self.config.element_timeout_ms,
        )
        await self.channel.click(session, search_box)
        await self.humanizer.type_text(session, query_run.query)
        await self.humanizer.settle(timing.pre_submit_ms)

        await self.channel.press_key(session, target.submit_key)
        await self.channel.wait_for_navigation(session)
        await self.humanizer.pause_with_keepalive(
            session, timing.post_submit_ms,
        )

        return await self.pagination.run(session, query_run, tracker)
