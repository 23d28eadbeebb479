"""Error taxonomy for Gnezdo.

Hierarchy::

    GnezdoError (base)
    ├── LaunchError           - browser process or profile setup failed
    ├── ControlChannelError   - a browser-control call failed
    │   ├── ElementNotFound   - bounded element wait exhausted
    │   ├── NavigationTimeout - page load did not complete in time
    │   └── EvaluationError   - script evaluation / input dispatch failed
    ├── QueryError            - a whole query was aborted
    └── ExtractionEmpty       - a result page yielded no records

Propagation policy:
    * Components raise the narrowest class that describes the failure.
    * ``QueryExecutor`` converts any ``ControlChannelError`` (and output
      I/O failure) into ``QueryError``.
    * Only ``SessionOrchestrator`` decides retries and browser restarts.

``ExtractionEmpty`` is informational.  It is instantiated and logged by the
pagination controller but never raised.
"""

from typing import Optional


class GnezdoError(Exception):
    """Base exception for all Gnezdo errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class LaunchError(GnezdoError):
    """Raised when the browser cannot be started.

    Covers both the browser process failing to launch and the identity
    (profile) directory failing to be wiped or recreated.  Fatal for the
    current session; the orchestrator reacts with a lifecycle restart.
    """

    def __init__(self, message: str, profile_dir: Optional[str] = None) -> None:
        super().__init__(message)
        self.profile_dir = profile_dir

    def __str__(self) -> str:
        if self.profile_dir:
            return f"{self.message} (profile: {self.profile_dir})"
        return self.message


class ControlChannelError(GnezdoError):
    """Base class for failures of an individual browser-control call."""


class ElementNotFound(ControlChannelError):
    """Raised when a bounded element lookup times out.

    Recoverable: pagination treats it as "no next page", everything else
    escalates it to a query-level retry.
    """

    def __init__(self, selector: str, timeout_ms: int) -> None:
        super().__init__(
            f"Element {selector!r} not found within {timeout_ms}ms"
        )
        self.selector = selector
        self.timeout_ms = timeout_ms


class NavigationTimeout(ControlChannelError):
    """Raised when navigation or page load does not complete in time."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} (URL: {self.url})"
        return self.message


class EvaluationError(ControlChannelError):
    """Raised when a script evaluation or input dispatch fails."""


class QueryError(GnezdoError):
    """Raised by the query executor when a query has to be aborted.

    The underlying cause is chained (``raise ... from``) and also kept on
    :attr:`cause` for logging.
    """

    def __init__(self, query: str, cause: BaseException) -> None:
        super().__init__(f"Query {query!r} aborted: {cause}")
        self.query = query
        self.cause = cause


class ExtractionEmpty(GnezdoError):
    """A result page produced no records.  Logged, never raised."""

    def __init__(self, query: str, page: int) -> None:
        super().__init__(f"No results extracted for {query!r} page {page}")
        self.query = query
        self.page = page
