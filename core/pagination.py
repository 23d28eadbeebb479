"""Pagination state machine for one query.

For every result page the controller harvests the listing (extract and
persist), scrolls through it like a reader, and then either stops or moves
to the next page::

    RESULTS_LOADED --(page cap)----------------------------> TERMINAL
    RESULTS_LOADED --> ADVANCING --(next control found)---> RESULTS_LOADED
                       ADVANCING --(next control missing)-> TERMINAL

A missing next-page control is counted in a :class:`NextPageTracker` that
lives for the whole run.  When the count reaches the configured threshold
the target is probably blocking us, and the operator has to acknowledge
before the run goes on.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from browser.channel import BrowserSession, ControlChannel
from browser.humanizer import KEEPALIVE_SCRIPT, Humanizer
from core.config import RunConfig
from core.errors import ElementNotFound, ExtractionEmpty
from core.extractor import ResultExtractor
from core.operator import OperatorGate

if TYPE_CHECKING:
    from core.executor import QueryRun

logger = logging.getLogger(__name__)


class PageState(Enum):
    RESULTS_LOADED = "results_loaded"
    ADVANCING = "advancing"
    TERMINAL = "terminal"


class TerminalReason(Enum):
    """Why a query stopped paginating."""

    PAGE_CAP = "page_cap"
    NO_NEXT_PAGE = "no_next_page"
    LIKELY_BLOCKED = "likely_blocked"


@dataclass
class NextPageTracker:
    """Run-wide count of consecutive pages without a next-page control.

    Attributes:
        threshold: Misses in a row that mean "likely blocked".
        consecutive_misses: Current streak.
        alerts: How many times the threshold was reached.
    """

    threshold: int
    consecutive_misses: int = 0
    alerts: int = 0

    def found(self) -> None:
        self.consecutive_misses = 0

    def missed(self) -> bool:
        """Record a miss.  Returns ``True`` when the threshold is reached."""
        self.consecutive_misses += 1
        return self.consecutive_misses >= self.threshold

    def acknowledged(self) -> None:
        self.consecutive_misses = 0
        self.alerts += 1


@dataclass
class PaginationOutcome:
    """Summary of one pagination pass.

    Attributes:
        pages_visited: Result pages harvested.
        pages_saved: Page files written.
        records_saved: Records across all written files.
        empty_pages: Pages that yielded no records.
        already_captured: Pages whose file an earlier attempt wrote.
        reason: Why pagination stopped.
    """

    pages_visited: int = 0
    pages_saved: int = 0
    records_saved: int = 0
    empty_pages: int = 0
    already_captured: int = 0
    reason: Optional[TerminalReason] = None


class PaginationController:
    """Walks the result pages of one query.

    Args:
        channel: Browser-control channel.
        humanizer: Source of humanised scrolling and pauses.
        extractor: Parses and persists each page.
        config: Run configuration (page cap, selectors, timings).
        operator: Gate used when the session looks blocked.
    """

    def __init__(
        self,
        channel: ControlChannel,
        humanizer: Humanizer,
        extractor: ResultExtractor,
        config: RunConfig,
        operator: OperatorGate,
    ) -> None:
        self.channel = channel
        self.humanizer = humanizer
        self.extractor = extractor
        self.config = config
        self.operator = operator

    async def run(
        self,
        session: BrowserSession,
        query_run: "QueryRun",
        tracker: NextPageTracker,
    ) -> PaginationOutcome:
        """Paginate from page 1 (already loaded) until a terminal state.

        Raises:
            ControlChannelError: On any browser-control failure other than
                a missing next-page control.
            OSError: If a page file cannot be written.
        """
        outcome = PaginationOutcome()
        max_pages = self.config.max_pages
        page_num = 1
        state = PageState.RESULTS_LOADED

        while state is not PageState.TERMINAL:
            if state is PageState.RESULTS_LOADED:
                logger.info(
                    "[%s] Page %d/%d", query_run.query, page_num, max_pages,
                )
                await self._harvest(session, query_run, page_num, outcome)
                if page_num >= max_pages:
                    logger.info(
                        "[%s] Page cap reached (%d)", query_run.query,
                        max_pages,
                    )
                    outcome.reason = TerminalReason.PAGE_CAP
                    state = PageState.TERMINAL
                else:
                    state = PageState.ADVANCING

            elif state is PageState.ADVANCING:
                if await self._advance(session):
                    tracker.found()
                    page_num += 1
                    state = PageState.RESULTS_LOADED
                else:
                    outcome.reason = await self._handle_missing_next(
                        query_run, tracker,
                    )
                    state = PageState.TERMINAL

        return outcome

    async def _harvest(
        self,
        session: BrowserSession,
        query_run: "QueryRun",
        page_num: int,
        outcome: PaginationOutcome,
    ) -> None:
        timing = self.config.timing
        await self.channel.evaluate(session, KEEPALIVE_SCRIPT)
        await self.humanizer.pause_with_keepalive(
            session, timing.page_load_settle_ms,
        )

        html = await self.channel.content(session)
        records = self.extractor.extract(html)
        outcome.pages_visited += 1

        if not records:
            logger.warning("%s", ExtractionEmpty(query_run.query, page_num))
            outcome.empty_pages += 1
        elif (query_run.output_dir / f"{page_num}.json").exists():
            # Written by an earlier attempt of this query; files are final
            logger.info(
                "[%s] Page %d already captured, keeping the first capture",
                query_run.query, page_num,
            )
            outcome.already_captured += 1
        else:
            self.extractor.persist(
                query_run.output_dir, query_run.query, page_num, records,
            )
            outcome.pages_saved += 1
            outcome.records_saved += len(records)

        await self.humanizer.scroll_to_bottom(session)
        await self.humanizer.pause_with_keepalive(
            session, timing.post_scroll_settle_ms,
        )

    async def _advance(self, session: BrowserSession) -> bool:
        """Click the next-page control.  ``False`` if it is not there."""
        try:
            next_button = await self.channel.wait_for_element(
                session,
                self.config.target.next_page_selector,
                self.config.next_page_timeout_ms,
            )
        except ElementNotFound:
            return False

        await self.channel.click(session, next_button)
        await self.channel.wait_for_navigation(session)
        await self.humanizer.pause_with_keepalive(
            session, self.config.timing.post_next_settle_ms,
        )
        return True

    async def _handle_missing_next(
        self,
        query_run: "QueryRun",
        tracker: NextPageTracker,
    ) -> TerminalReason:
        blocked = tracker.missed()
        logger.warning(
            "[%s] Next page not found (%d in a row)",
            query_run.query, tracker.consecutive_misses,
        )
        if not blocked:
            return TerminalReason.NO_NEXT_PAGE

        await self.operator.acknowledge(
            f"Next page not found {tracker.consecutive_misses} times in a "
            f"row. The session may have been detected as a bot.",
        )
        tracker.acknowledged()
        return TerminalReason.LIKELY_BLOCKED
