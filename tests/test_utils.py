import json
from datetime import datetime, timedelta

import pytest

from core.utils import (
    format_duration,
    run_directory_name,
    sanitize_query,
    write_json_once,
)


class TestSanitizeQuery:
    """Test suite for the query-to-directory transform."""

    def test_replaces_every_unsafe_character(self):
        assert sanitize_query('a/b\\c:d*e?f"g<h>i|j') == "a_b_c_d_e_f_g_h_i_j"

    def test_keeps_safe_text(self):
        assert sanitize_query("東京 ramen 2024") == "東京 ramen 2024"

    @pytest.mark.parametrize("query", [".", "..", "...", " ", ". ."])
    def test_dot_names_stay_inside_the_run_dir(self, query):
        assert sanitize_query(query) == "_"

    def test_trailing_dots_and_spaces_dropped(self):
        assert sanitize_query("etc. ") == "etc"
        assert sanitize_query("..hidden") == "..hidden"

    def test_control_characters_replaced(self):
        assert sanitize_query("a\x00b\tc\nd") == "a_b_c_d"

    def test_deterministic(self):
        assert sanitize_query("x:y") == sanitize_query("x:y")


class TestFormatDuration:
    """Test suite for run-log duration formatting."""

    @pytest.mark.parametrize("elapsed,expected", [
        (timedelta(hours=1, minutes=2, seconds=3), "1h 2m 3s"),
        (timedelta(minutes=2, seconds=3), "2m 3s"),
        (timedelta(seconds=3, milliseconds=250), "3.250s"),
        (timedelta(0), "0.000s"),
        (timedelta(hours=26), "26h 0m 0s"),
    ])
    def test_formats(self, elapsed, expected):
        assert format_duration(elapsed) == expected

    def test_negative_clamped(self):
        assert format_duration(timedelta(seconds=-5)) == "0.000s"


def test_run_directory_name():
    assert run_directory_name(datetime(2025, 3, 4, 5, 6, 7)) == "2025-03-04-05-06-07"


class TestWriteJsonOnce:
    """Test suite for the write-once JSON writer."""

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "1.json"

        write_json_once(target, {"k": "値"})

        assert json.loads(target.read_text(encoding="utf-8")) == {"k": "値"}

    def test_pretty_printed(self, tmp_path):
        target = write_json_once(tmp_path / "x.json", {"a": 1, "b": [1, 2]})
        assert "\n  " in target.read_text(encoding="utf-8")

    def test_refuses_existing_file(self, tmp_path):
        target = tmp_path / "x.json"
        target.write_text("{}", encoding="utf-8")

        with pytest.raises(FileExistsError):
            write_json_once(target, {"new": True})

        assert target.read_text(encoding="utf-8") == "{}"

    def test_unserialisable_data_leaves_no_target(self, tmp_path):
        target = tmp_path / "x.json"

        with pytest.raises(TypeError):
            write_json_once(target, {"bad": object()})

        assert not target.exists()
        assert list(tmp_path.iterdir()) == []
