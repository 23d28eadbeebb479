"""Run statistics and the end-of-run summary.

:class:`RunStats` collects what happened during one run (queries, pages,
restarts, evasion health, blocking alerts).  :func:`render_summary` prints
it as a Rich table when the run ends, whether it finished or was cut short.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from core.utils import format_duration

logger = logging.getLogger(__name__)


@dataclass
class QueryStats:
    """Per-query outcome."""

    query: str
    status: str = "pending"
    attempts: int = 0
    pages_saved: int = 0
    records_saved: int = 0
    empty_pages: int = 0
    duration: Optional[timedelta] = None
    last_error: Optional[str] = None


@dataclass
class RunStats:
    """Counters for one run.

    Query-level entries are keyed by query index so that repeated query
    texts stay separate.
    """

    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    run_dir: Optional[str] = None
    queries: Dict[int, QueryStats] = field(default_factory=dict)
    failed_attempts: int = 0
    restarts: int = 0
    degraded_sessions: int = 0
    likely_blocked_alerts: int = 0
    interrupted: bool = False

    def query(self, index: int, text: str) -> QueryStats:
        """Return (creating on first use) the stats entry for a query."""
        if index not in self.queries:
            self.queries[index] = QueryStats(query=text)
        return self.queries[index]

    @property
    def completed(self) -> int:
        return sum(1 for q in self.queries.values() if q.status == "done")

    @property
    def skipped(self) -> int:
        return sum(1 for q in self.queries.values() if q.status == "skipped")

    @property
    def pages_saved(self) -> int:
        return sum(q.pages_saved for q in self.queries.values())

    @property
    def records_saved(self) -> int:
        return sum(q.records_saved for q in self.queries.values())

    @property
    def empty_pages(self) -> int:
        return sum(q.empty_pages for q in self.queries.values())

    def elapsed(self, now: Optional[datetime] = None) -> timedelta:
        end = self.finished_at or now or datetime.now()
        return end - self.started_at

    def finish(self) -> None:
        if self.finished_at is None:
            self.finished_at = datetime.now()


def build_summary_table(stats: RunStats) -> Table:
    """Per-query table of the run."""
    table = Table(
        title="Queries",
        box=box.SIMPLE_HEAVY,
        show_lines=False,
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Query", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Results", justify="right")
    table.add_column("Time", justify="right")

    styles = {"done": "green", "skipped": "red", "pending": "yellow"}
    for index in sorted(stats.queries):
        q = stats.queries[index]
        style = styles.get(q.status, "white")
        table.add_row(
            str(index + 1),
            q.query,
            f"[{style}]{q.status}[/{style}]",
            str(q.attempts),
            str(q.pages_saved),
            str(q.records_saved),
            format_duration(q.duration) if q.duration else "-",
        )
    return table


def render_summary(stats: RunStats, console: Optional[Console] = None) -> None:
    """Print the end-of-run summary."""
    console = console or Console()
    lines: List[str] = [
        f"Elapsed: [bold]{format_duration(stats.elapsed())}[/bold]",
        f"Queries completed: {stats.completed}  skipped: {stats.skipped}",
        f"Failed attempts: {stats.failed_attempts}",
        f"Pages saved: {stats.pages_saved}  "
        f"results: {stats.records_saved}  empty pages: {stats.empty_pages}",
        f"Browser restarts: {stats.restarts}",
        f"Degraded evasion sessions: {stats.degraded_sessions}",
        f"Likely-blocked alerts: {stats.likely_blocked_alerts}",
    ]
    if stats.run_dir:
        lines.append(f"Output: {stats.run_dir}")
    if stats.interrupted:
        lines.append("[yellow]Run was interrupted[/yellow]")

    console.print(Panel("\n".join(lines), title="Gnezdo run summary"))
    if stats.queries:
        console.print(build_summary_table(stats))
