"""
Core module for Gnezdo.

This package contains the run orchestration, query execution, pagination,
result extraction, configuration and reporting components of the search
result collector.

Submodules:
    config: Run settings (``RunConfig`` and nested timing / target /
        identity models) via Pydantic, loaded from ``Config.toml``.
    orchestrator: ``SessionOrchestrator`` query loop with retry and restart
        policy.
    executor: ``QueryExecutor`` running one query end to end.
    pagination: ``PaginationController`` state machine and the run-wide
        ``NextPageTracker``.
    extractor: ``ResultExtractor`` HTML parsing and per-page JSON output.
    operator: Console acknowledgement for likely-blocked sessions.
    monitoring: ``RunStats`` and the Rich end-of-run summary.
    errors: Exception taxonomy rooted at ``GnezdoError``.
    logging_setup: Compressed rotating file + safe console logging.
    utils: Path sanitising, duration formatting, write-once JSON output.
"""
