"""
Gnezdo - Search Result Collector - Main Entry Point

Runs every configured search query in a real browser, one query per fresh
browser identity, and stores each result page as JSON under
``{result_dir}/{run timestamp}/{query}/{page}.json``.

Usage:
    python main.py                       # Use Config.toml in the working dir
    python main.py --config other.toml   # Use another configuration file
    python main.py --headless            # Run without a browser window
    python main.py --query foo --query bar   # Override the query list
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import argparse
import asyncio
import logging
import random
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console

from browser.channel import ControlChannel, PlaywrightChannel
from browser.humanizer import Humanizer
from browser.instance import BrowserManager
from browser.stealth_hub import StealthHub
from core.config import RunConfig, load_config
from core.errors import GnezdoError
from core.executor import QueryExecutor
from core.extractor import ResultExtractor
from core.logging_setup import setup_logging
from core.monitoring import RunStats, render_summary
from core.operator import ConsoleOperatorGate, OperatorGate
from core.orchestrator import SessionOrchestrator
from core.pagination import PaginationController

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Gnezdo - collect search result pages with a real browser",
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Configuration file (default: ./Config.toml)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--visible", dest="headless", action="store_false", default=None,
        help="Show the browser window",
    )
    mode.add_argument(
        "--headless", dest="headless", action="store_true", default=None,
        help="Run the browser without a window",
    )
    parser.add_argument(
        "--log-level", default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config, INFO)",
    )
    parser.add_argument(
        "--query", dest="queries", action="append", default=None,
        help="Search query; repeat to run several (overrides the config)",
    )
    parser.add_argument(
        "--engine", choices=["chromium", "camoufox"], default=None,
        help="Browser engine",
    )
    parser.add_argument(
        "--pause-on-exit", action="store_true", default=None,
        help="Wait for Enter before exiting",
    )
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map CLI flags to configuration keys (unset flags are ``None``)."""
    return {
        "headless": args.headless,
        "log_level": args.log_level,
        "search_queries": args.queries,
        "browser_engine": args.engine,
        "pause_on_exit": args.pause_on_exit,
    }


def build_orchestrator(
    config: RunConfig,
    channel: Optional[ControlChannel] = None,
    operator: Optional[OperatorGate] = None,
    stats: Optional[RunStats] = None,
) -> SessionOrchestrator:
    """Wire up all components for one run."""
    channel = channel or PlaywrightChannel()
    rng = random.Random()
    humanizer = Humanizer(channel, config.timing, rng=rng)
    stealth = StealthHub(channel, config)
    extractor = ResultExtractor(
        config.target.result_selector, config.target.title_selector,
    )
    pagination = PaginationController(
        channel, humanizer, extractor, config,
        operator or ConsoleOperatorGate(),
    )
    executor = QueryExecutor(channel, humanizer, stealth, pagination, config)
    manager = BrowserManager(config, channel)
    return SessionOrchestrator(
        config, manager, stealth, executor, stats=stats, rng=rng,
    )


async def wait_for_enter(console: Console) -> None:
    try:
        await asyncio.to_thread(console.input, "Done. Press Enter to exit...")
    except EOFError:
        pass


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main execution flow.

    1. Parses command line arguments and sets up logging.
    2. Loads Config.toml (plus environment and CLI overrides).
    3. Wires the browser, evasion, humanisation and pagination layers.
    4. Runs all queries; SIGTERM / Ctrl+C cancel the run.
    5. Always tears the browser down and prints the run summary.
    """
    args = parse_args(argv)
    setup_logging(args.log_level or "INFO")

    config = load_config(args.config, **build_overrides(args))
    if not args.log_level and config.log_level.upper() != "INFO":
        setup_logging(config.log_level)

    for key, value in config.summary().items():
        logger.info("Config %s: %s", key, value)
    if not config.search_queries:
        logger.warning("No search queries configured. Nothing to do.")

    console = Console()
    stats = RunStats()
    orchestrator = build_orchestrator(config, stats=stats)

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def handle_sigterm():
        logger.info("🛑 Received SIGTERM. Stopping after cleanup...")
        main_task.cancel()

    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGTERM, handle_sigterm)

    exit_code = EXIT_OK
    try:
        await orchestrator.run()
    except asyncio.CancelledError:
        logger.warning("Run interrupted.")
        stats.interrupted = True
        exit_code = EXIT_INTERRUPTED
    except (GnezdoError, OSError) as e:
        logger.error("❌ Run aborted: %s", e, exc_info=True)
        exit_code = EXIT_FAILURE
    finally:
        logger.info("🧹 Cleaning up browser...")
        await orchestrator.manager.teardown()
        stats.restarts = orchestrator.manager.restart_count
        stats.finish()
        render_summary(stats, console)
        if sys.platform != "win32":
            loop.remove_signal_handler(signal.SIGTERM)

    if config.pause_on_exit:
        await wait_for_enter(console)
    return exit_code


def cli() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    cli()
