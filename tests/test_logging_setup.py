import gzip
import io
import logging
import os
from unittest.mock import patch

import pytest

from core.logging_setup import (
    LOG_FILE_NAME,
    CompressedRotatingFileHandler,
    SafeStreamHandler,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    saved_level = root.level
    yield
    for h in root.handlers[:]:
        if isinstance(h, (SafeStreamHandler, CompressedRotatingFileHandler)):
            h.close()
            root.removeHandler(h)
    root.setLevel(saved_level)


class TestCompressedRotatingFileHandler:
    """Test suite for CompressedRotatingFileHandler."""

    def test_rotation_filename(self, tmp_path):
        handler = CompressedRotatingFileHandler(
            str(tmp_path / "gnezdo.log"), maxBytes=1024, backupCount=3,
        )
        try:
            assert handler.rotation_filename("gnezdo.log.1") == "gnezdo.log.1.gz"
        finally:
            handler.close()

    def test_rotate_compresses_and_removes_source(self, tmp_path):
        source = tmp_path / "source.log"
        dest = tmp_path / "dest.log.gz"
        content = "Query 1/3: 'ラーメン' (attempt 1/3)\n".encode("utf-8")
        source.write_bytes(content)

        handler = CompressedRotatingFileHandler(
            str(tmp_path / "gnezdo.log"), maxBytes=1024, backupCount=3,
        )
        try:
            handler.rotate(str(source), str(dest))
        finally:
            handler.close()

        assert not source.exists()
        with gzip.open(dest, "rb") as f:
            assert f.read() == content

    def test_rollover_produces_gzip_backup(self, tmp_path):
        log_file = tmp_path / "gnezdo.log"
        handler = CompressedRotatingFileHandler(
            str(log_file), maxBytes=200, backupCount=2, encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger = logging.getLogger("test.rollover")
        logger.propagate = False
        logger.addHandler(handler)
        try:
            for i in range(20):
                logger.warning("line %d %s", i, "x" * 30)
        finally:
            logger.removeHandler(handler)
            handler.close()

        assert (tmp_path / "gnezdo.log.1.gz").exists()
        assert not (tmp_path / "gnezdo.log.3.gz").exists()


class TestSafeStreamHandler:
    """Test suite for SafeStreamHandler."""

    def test_unencodable_text_is_replaced(self):
        raw = io.BytesIO()
        stream = io.TextIOWrapper(raw, encoding="cp1252")
        handler = SafeStreamHandler(stream)
        handler.setFormatter(logging.Formatter("%(message)s"))

        handler.emit(logging.LogRecord(
            "t", logging.INFO, __file__, 1, "query 東京 done", None, None,
        ))
        stream.flush()

        assert raw.getvalue().decode("cp1252") == "query ?? done\n"

    def test_plain_text_passes_through(self):
        stream = io.StringIO()
        handler = SafeStreamHandler(stream)
        handler.setFormatter(logging.Formatter("%(message)s"))

        handler.emit(logging.LogRecord(
            "t", logging.INFO, __file__, 1, "hello", None, None,
        ))

        assert stream.getvalue() == "hello\n"


class TestSetupLogging:
    """Test suite for setup_logging function."""

    def test_default_level_and_handlers(self, tmp_path):
        with patch("logging.basicConfig") as mock_basic_config:
            setup_logging(log_dir=str(tmp_path / "logs"))

        kwargs = mock_basic_config.call_args[1]
        assert kwargs["level"] == logging.INFO
        assert kwargs["force"] is True
        assert len(kwargs["handlers"]) == 2
        assert isinstance(kwargs["handlers"][0], SafeStreamHandler)
        assert isinstance(
            kwargs["handlers"][1], CompressedRotatingFileHandler,
        )
        for h in kwargs["handlers"]:
            h.close()

    @pytest.mark.parametrize("name,level", [
        ("DEBUG", logging.DEBUG),
        ("warning", logging.WARNING),
        ("INVALID_LEVEL", logging.INFO),
        ("BASIC_FORMAT", logging.INFO),
    ])
    def test_level_names(self, name, level):
        with patch("logging.basicConfig") as mock_basic_config:
            setup_logging(name, log_dir=None)

        assert mock_basic_config.call_args[1]["level"] == level

    def test_console_only(self):
        with patch("logging.basicConfig") as mock_basic_config:
            setup_logging(log_dir=None)

        assert len(mock_basic_config.call_args[1]["handlers"]) == 1

    def test_format(self):
        with patch("logging.basicConfig") as mock_basic_config:
            setup_logging(log_dir=None)

        format_str = mock_basic_config.call_args[1]["format"]
        for part in ("%(asctime)s", "%(levelname)s", "%(name)s", "%(message)s"):
            assert part in format_str

    def test_writes_log_file(self, tmp_path):
        log_dir = tmp_path / "logs"

        setup_logging("INFO", log_dir=str(log_dir))
        logging.getLogger("gnezdo.test").info("run started")
        for h in logging.getLogger().handlers:
            h.flush()

        text = (log_dir / LOG_FILE_NAME).read_text(encoding="utf-8")
        assert "[INFO] gnezdo.test - run started" in text
        assert os.path.isdir(log_dir)

    def test_second_call_replaces_handlers(self, tmp_path):
        setup_logging("INFO", log_dir=None)
        setup_logging("DEBUG", log_dir=None)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
