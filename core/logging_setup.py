"""Logging configuration for Gnezdo.

Sets up a dual-handler logging pipeline:

1. **Console** -- :class:`SafeStreamHandler`, which survives narrow Windows
   code pages (search queries are frequently Japanese).
2. **File** -- :class:`CompressedRotatingFileHandler` writing to
   ``logs/gnezdo.log`` with gzip rotation (10 MiB per file, 5 backups).

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG")
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILE_NAME = "gnezdo.log"


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that gzip-compresses rotated log files."""

    def rotation_filename(self, default_name: str) -> str:
        """Append ``.gz`` to the rotated file name."""
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*."""
        with open(source, "rb") as f_in:
            with gzip.open(dest, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that never crashes on unencodable characters.

    When the console encoding cannot represent a character, the message is
    re-encoded with replacement characters using the stream's own encoding.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = self.stream
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                encoding = getattr(stream, "encoding", None) or "ascii"
                safe_msg = msg.encode(
                    encoding, errors="replace",
                ).decode(encoding)
                stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = "logs",
) -> logging.Logger:
    """Configure the root logger with console and file handlers.

    Existing root handlers are replaced so that calling this twice (tests,
    re-entry from ``main``) does not duplicate output.

    Args:
        log_level: Logging level name (``"DEBUG"``, ``"INFO"``, ...).
            Unknown names fall back to ``INFO``.
        log_dir: Directory for the rotating log file, or ``None`` to log to
            the console only.

    Returns:
        The configured root logger.
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handlers = [SafeStreamHandler(sys.stdout)]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            CompressedRotatingFileHandler(
                os.path.join(log_dir, LOG_FILE_NAME),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger()
