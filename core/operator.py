"""Operator interaction for conditions a human has to look at.

When pagination keeps failing to find the next-page control the target has
most likely started blocking the session.  The run then stops and waits for
the operator to confirm on the console before it continues.
"""

import asyncio
import logging
from typing import Optional, Protocol

from rich.console import Console
from rich.panel import Panel

logger = logging.getLogger(__name__)


class OperatorGate(Protocol):
    """Blocks until a human acknowledged *message*."""

    async def acknowledge(self, message: str) -> None: ...


class ConsoleOperatorGate:
    """Shows an alert panel and waits for Enter on the console.

    Reading stdin happens in a worker thread so the event loop stays free.
    A closed or non-interactive stdin (EOF) counts as acknowledged.
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()
        self.acknowledgements = 0

    async def acknowledge(self, message: str) -> None:
        logger.warning("Operator attention required: %s", message)
        self.console.print(
            Panel(
                f"[bold]{message}[/bold]\n\n"
                "Check the browser window, then press Enter to continue.",
                title="Likely blocked",
                border_style="red",
            )
        )
        try:
            await asyncio.to_thread(self.console.input, "> ")
        except EOFError:
            logger.warning(
                "No interactive console; continuing without acknowledgement",
            )
        self.acknowledgements += 1
        logger.info("Operator acknowledged: %s", message)
