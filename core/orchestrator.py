"""Query-list orchestration for Gnezdo.

:class:`SessionOrchestrator` walks the configured queries in order and owns
the run-level policy:

* Every query runs on a session with freshly installed evasion payloads.
* A failed query is retried on a restarted browser until the retry budget
  is spent, after which it is skipped.
* After every successful query (except the last) the run rests for a random
  interval and restarts the browser, so no two queries share an identity.
* A browser that cannot be started gets one restart; if that fails too, the
  query is skipped.

Only the orchestrator decides on retries and restarts.  Lower layers report
failures through :mod:`core.errors`.
"""

import asyncio
import logging
import random
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

from browser.channel import BrowserSession
from browser.instance import BrowserManager
from browser.stealth_hub import StealthHub
from core.config import RunConfig
from core.errors import LaunchError, QueryError
from core.executor import QueryExecutor, QueryRun
from core.monitoring import RunStats
from core.pagination import NextPageTracker
from core.utils import format_duration, run_directory_name, sanitize_query

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SessionOrchestrator:
    """Runs every configured query with retry and restart policy.

    Args:
        config: Run configuration.
        manager: Owner of the browser session.
        stealth: Installs the evasion layer on each session.
        executor: Runs a single query.
        stats: Statistics sink.  A new one is created when omitted.
        sleep: Awaitable sleep taking seconds.
        rng: Random source for the inter-query rest.
    """

    def __init__(
        self,
        config: RunConfig,
        manager: BrowserManager,
        stealth: StealthHub,
        executor: QueryExecutor,
        stats: Optional[RunStats] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self.manager = manager
        self.stealth = stealth
        self.executor = executor
        self.stats = stats or RunStats()
        self._sleep = sleep
        self.rng = rng or random.Random()
        self.tracker = NextPageTracker(
            threshold=config.max_consecutive_no_next,
        )

    def prepare_run_dir(self) -> Path:
        """Create ``{result_dir}/{run timestamp}`` for this run."""
        run_dir = self.config.result_root / run_directory_name(
            self.stats.started_at,
        )
        run_dir.mkdir(parents=True, exist_ok=True)
        self.stats.run_dir = str(run_dir)
        logger.info("Saving results under %s", run_dir)
        return run_dir

    async def run(self) -> RunStats:
        """Process the whole query list.

        Returns:
            The run statistics (also available as :attr:`stats`).
        """
        queries = list(self.config.search_queries)
        run_dir = self.prepare_run_dir()
        max_retries = self.config.max_query_retries

        index = 0
        retry_count = 0
        try:
            while index < len(queries):
                query = queries[index]
                query_run = QueryRun(
                    query=query,
                    index=index,
                    output_dir=run_dir / sanitize_query(query),
                    retry_count=retry_count,
                    attempt=retry_count + 1,
                )
                query_stats = self.stats.query(index, query)
                logger.info(
                    "Query %d/%d: %r (attempt %d/%d)",
                    index + 1, len(queries), query,
                    query_run.attempt, max_retries,
                )

                session = await self._acquire()
                if session is None:
                    logger.error("No browser available. Skipping %r.", query)
                    query_stats.status = "skipped"
                    index += 1
                    retry_count = 0
                    continue

                report = await self.stealth.apply_to(session)
                if report.degraded:
                    self.stats.degraded_sessions += 1

                query_stats.attempts += 1
                attempt_start = datetime.now()
                try:
                    outcome = await self.executor.run(
                        session, query_run, self.tracker,
                    )
                except QueryError as e:
                    retry_count += 1
                    self.stats.failed_attempts += 1
                    query_stats.last_error = str(e.cause)
                    logger.warning(
                        "Query %r failed: %s. Retry %d/%d",
                        query, e.cause, retry_count, max_retries,
                    )
                    if retry_count >= max_retries:
                        logger.error(
                            "Retry limit reached for %r. Skipping.", query,
                        )
                        query_stats.status = "skipped"
                        index += 1
                        retry_count = 0
                    await self._restart()
                    continue

                query_stats.status = "done"
                query_stats.duration = datetime.now() - attempt_start
                query_stats.pages_saved += outcome.pages_saved
                query_stats.records_saved += outcome.records_saved
                query_stats.empty_pages += outcome.empty_pages
                logger.info(
                    "Query %r done: %d pages, %d results (%s). "
                    "Query time %s, total %s",
                    query, outcome.pages_saved, outcome.records_saved,
                    outcome.reason.value if outcome.reason else "-",
                    format_duration(query_stats.duration),
                    format_duration(self.stats.elapsed()),
                )

                index += 1
                retry_count = 0
                if index < len(queries):
                    rest_ms = self.rng.randint(
                        *self.config.timing.inter_query_rest_ms,
                    )
                    logger.info("Resting %dms before the next query", rest_ms)
                    await self._sleep(rest_ms / 1000)
                    await self._restart()
        finally:
            self.stats.restarts = self.manager.restart_count
            self.stats.likely_blocked_alerts = self.tracker.alerts

        logger.info("All queries processed.")
        return self.stats

    async def _acquire(self) -> Optional[BrowserSession]:
        """Get a session, with one restart on launch failure."""
        try:
            return await self.manager.acquire()
        except LaunchError as e:
            logger.error("Browser launch failed: %s. Restarting.", e)
        try:
            return await self.manager.restart()
        except LaunchError as e:
            logger.error("Browser restart failed: %s", e)
            return None

    async def _restart(self) -> None:
        try:
            await self.manager.restart()
        except LaunchError as e:
            # The next acquire() retries the launch
            logger.error("Browser restart failed: %s", e)
