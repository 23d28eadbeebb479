"""Shared helpers for the Gnezdo core modules.

Provides the query-to-directory transform, human-readable durations, and a
write-once atomic JSON writer used for result pages.
"""

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)

# Characters that are not allowed in Windows file names
UNSAFE_PATH_CHARS = '/\\:*?"<>|'
PLACEHOLDER = "_"

RUN_DIR_FORMAT = "%Y-%m-%d-%H-%M-%S"
PAGE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


def sanitize_query(query: str) -> str:
    """Return a filesystem-safe directory name for *query*.

    Every character of :data:`UNSAFE_PATH_CHARS` and every control
    character is replaced with :data:`PLACEHOLDER`.  Trailing dots and
    spaces are dropped, and a name that would be empty (or only dots, such
    as ``..``) becomes :data:`PLACEHOLDER`, so the result is always a single
    child of the run directory.  Everything else is kept as-is so that the
    mapping stays deterministic and readable.

    Examples:
        >>> sanitize_query("a/b: c?")
        'a_b_ c_'
        >>> sanitize_query("..")
        '_'
    """
    name = "".join(
        PLACEHOLDER if ch in UNSAFE_PATH_CHARS or ord(ch) < 32 else ch
        for ch in query
    )
    return name.rstrip(". ") or PLACEHOLDER


def format_duration(elapsed: timedelta) -> str:
    """Format a duration the way run logs show it.

    ``1h 2m 3s`` above an hour, ``2m 3s`` above a minute, otherwise
    seconds with milliseconds (``3.250s``).
    """
    total_ms = max(int(elapsed.total_seconds() * 1000), 0)
    total_seconds, millis = divmod(total_ms, 1000)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}.{millis:03d}s"


def run_directory_name(started_at: datetime) -> str:
    """Name of the per-run result directory."""
    return started_at.strftime(RUN_DIR_FORMAT)


def write_json_once(
    filepath: Union[str, Path],
    data: Dict[str, Any],
) -> Path:
    """Atomically write *data* to *filepath*, refusing to overwrite.

    The write sequence is:
        1. Refuse if the target already exists.
        2. Write pretty-printed UTF-8 JSON to a temporary file.
        3. Validate the temporary file by re-reading it.
        4. Atomically move the temporary file into place.

    Args:
        filepath: Destination path.
        data: JSON-serialisable dictionary.

    Returns:
        The destination path.

    Raises:
        FileExistsError: If *filepath* was already written.
        OSError: On any filesystem failure.
    """
    path = Path(filepath)
    if path.exists():
        raise FileExistsError(f"{path} already written")

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_name(path.name + ".tmp")
    try:
        with open(temp_file, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
        with open(temp_file, "r", encoding="utf-8") as fh:
            json.load(fh)
    except (TypeError, ValueError):
        os.remove(temp_file)
        raise

    os.replace(temp_file, path)
    logger.debug("Wrote %s", path)
    return path
