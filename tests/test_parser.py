"""Tests for listing-line parsing."""

import json
from datetime import datetime, timedelta

import pytest

from tests.conftest import make_ps_line
from watch_process.parser import (
    ParseError,
    parse_line,
    parse_line_win32,
    parse_start_time,
    parse_win32_date,
)
from watch_process.platforms import DEFAULT_KEYS, DEFAULT_KEYS_WIN32

STARTED = datetime(2024, 1, 2, 15, 4, 5)


class TestParseLine:
    """Tests for the ps text parser."""

    def test_default_keys_example(self):
        """A full ps line maps every column onto the default keys."""
        line = (
            "Mon Jan  2 15:04:05 2024 alice    1234     1  00:00:01  1.5  2.3  10240  20480 S"
            "  myproc  myproc --flag"
        )
        now = STARTED + timedelta(seconds=90)

        record = parse_line(line, DEFAULT_KEYS, now=now)

        assert record == {
            "start_time": "Mon Jan 2 15:04:05 2024",
            "user": "alice",
            "pid": "1234",
            "parent_pid": "1",
            "cpu_time": "00:00:01",
            "cpu_percent": "1.5",
            "memory_percent": "2.3",
            "mem_rss": "10240",
            "mem_size": "20480",
            "state": "S",
            "proc_name": "myproc",
            "command": "myproc --flag",
            "elapsed_time": 90,
        }

    def test_keys_follow_column_order(self):
        """Record keys come out in configured order with elapsed_time last."""
        record = parse_line(make_ps_line(), DEFAULT_KEYS, now=STARTED)
        assert list(record) == DEFAULT_KEYS + ["elapsed_time"]

    def test_last_field_keeps_internal_whitespace(self):
        """The command line is never split further."""
        line = make_ps_line(cmd="/usr/bin/python3  -m  http.server 8000")
        record = parse_line(line, DEFAULT_KEYS, now=STARTED)
        assert record["command"] == "/usr/bin/python3  -m  http.server 8000"

    def test_timestamp_whitespace_is_collapsed(self):
        """Padded day numbers do not leak into start_time."""
        record = parse_line(make_ps_line(start="Fri Mar 15 08:00:00 2024"), DEFAULT_KEYS)
        assert record["start_time"] == "Fri Mar 15 08:00:00 2024"

        record = parse_line(make_ps_line(start="Tue Jan  2 15:04:05 2024"), DEFAULT_KEYS)
        assert record["start_time"] == "Tue Jan 2 15:04:05 2024"

    def test_elapsed_time_is_whole_seconds(self):
        """elapsed_time truncates to whole seconds."""
        now = STARTED + timedelta(seconds=3600, microseconds=999_999)
        record = parse_line(make_ps_line(), DEFAULT_KEYS, now=now)
        assert record["elapsed_time"] == 3600

    def test_elapsed_time_defaults_to_wall_clock(self):
        """Without an explicit now, elapsed_time is measured against the current time."""
        start = datetime.now().replace(microsecond=0) - timedelta(seconds=120)
        lstart = f"{start:%a %b} {start.day:>2} {start:%H:%M:%S %Y}"
        record = parse_line(make_ps_line(start=lstart), DEFAULT_KEYS)
        assert 119 <= record["elapsed_time"] <= 125

    def test_missing_column_shifts_values_left(self):
        """A blank column is absorbed rather than kept as an empty string."""
        line = "Mon Jan  2 15:04:05 2024 alice  1234  1      1.5  2.3  10240  20480 S  myproc  myproc"
        record = parse_line(line, DEFAULT_KEYS, now=STARTED)

        assert "" not in record.values()
        assert record["cpu_time"] == "1.5"
        assert record["cpu_percent"] == "2.3"
        assert record["proc_name"] == "myproc"
        assert "command" not in record

    def test_short_line_leaves_trailing_keys_unset(self):
        """Keys beyond the available fields are not assigned."""
        record = parse_line("Mon Jan  2 15:04:05 2024 alice 1234", DEFAULT_KEYS, now=STARTED)
        assert record == {
            "start_time": "Mon Jan 2 15:04:05 2024",
            "user": "alice",
            "pid": "1234",
            "elapsed_time": 0,
        }

    def test_field_count_never_exceeds_keys_plus_one(self):
        """Surplus text lands in the last key instead of adding fields."""
        keys = ["start_time", "user", "command"]
        record = parse_line(make_ps_line(), keys, now=STARTED)

        assert len(record) <= len(keys) + 1
        assert record["user"] == "alice"
        assert record["command"].startswith("1234")
        assert record["command"].endswith("myproc --flag")

    def test_custom_keys_without_timestamp(self):
        """Lines without a leading timestamp split over all keys."""
        record = parse_line("bob   4321  sleep 100", ["user", "pid", "command"])
        assert record == {"user": "bob", "pid": "4321", "command": "sleep 100"}

    def test_unparseable_start_time_raises(self):
        """A start_time value that is not a timestamp drops the record."""
        with pytest.raises(ParseError):
            parse_line("garbage alice 1234", DEFAULT_KEYS)

    def test_invalid_timestamp_raises(self):
        """A timestamp-shaped prefix with impossible values is rejected."""
        with pytest.raises(ParseError):
            parse_line(make_ps_line(start="Mon Foo  2 15:04:05 2024"), DEFAULT_KEYS)

    def test_lookup_user_allows_listed_user(self):
        """Records of allowed users are returned."""
        record = parse_line(make_ps_line(user="alice"), DEFAULT_KEYS, lookup_user=["alice"])
        assert record is not None
        assert record["user"] == "alice"

    def test_lookup_user_filters_other_users(self):
        """Records of users outside the allow-list are discarded."""
        record = parse_line(make_ps_line(user="root"), DEFAULT_KEYS, lookup_user=["alice", "bob"])
        assert record is None

    def test_no_lookup_user_accepts_everyone(self):
        """Without an allow-list every user passes."""
        for user in ("root", "alice", "nobody"):
            assert parse_line(make_ps_line(user=user), DEFAULT_KEYS) is not None

    def test_reconstructs_field_tuple(self):
        """Parsing a synthetic line gives back the fields it was built from."""
        fields = {
            "user": "postgres",
            "pid": 98765,
            "ppid": 4321,
            "cpu_time": "01:02:03",
            "cpu": "99.9",
            "mem": "12.5",
            "rss": 524288,
            "size": 1048576,
            "state": "R",
            "comm": "postgres",
            "cmd": "postgres: writer process",
        }
        record = parse_line(make_ps_line(**fields), DEFAULT_KEYS, now=STARTED)

        assert [record[k] for k in DEFAULT_KEYS[1:]] == [str(v) for v in fields.values()]


class TestParseStartTime:
    """Tests for start-time parsing."""

    def test_lstart_format(self):
        assert parse_start_time("Mon Jan  2 15:04:05 2024") == STARTED

    def test_iso_format(self):
        assert parse_start_time("2024-01-02 15:04:05") == STARTED
        assert parse_start_time("2024-01-02T15:04:05") == STARTED

    def test_garbage_raises(self):
        with pytest.raises(ParseError):
            parse_start_time("yesterday")


class TestParseLineWin32:
    """Tests for the PowerShell JSON parser."""

    def _line(self, **overrides) -> str:
        data = {
            "StartTime": "/Date(1704207845000)/",
            "UserName": "CORP\\alice",
            "SessionId": 1,
            "Id": 4242,
            "CPU": 12.5,
            "WorkingSet": 1048576,
            "VirtualMemorySize": 4194304,
            "HandleCount": 300,
            "ProcessName": "notepad",
        }
        data.update(overrides)
        return json.dumps(data)

    def test_parses_and_adds_elapsed_time(self):
        """StartTime is converted and ElapsedTime derived from it."""
        started = datetime.fromtimestamp(1704207845)
        record = parse_line_win32(
            self._line(), DEFAULT_KEYS_WIN32, now=started + timedelta(seconds=75)
        )

        assert record["StartTime"] == started.strftime("%Y-%m-%d %H:%M:%S")
        assert record["ElapsedTime"] == 75
        assert record["Id"] == 4242
        assert record["ProcessName"] == "notepad"

    def test_projects_to_configured_keys(self):
        """Fields outside the key list are dropped; ElapsedTime is kept."""
        record = parse_line_win32(
            self._line(Path="C:\\Windows\\notepad.exe"), ["StartTime", "CPU", "Id"]
        )
        assert set(record) == {"StartTime", "CPU", "Id", "ElapsedTime"}

    def test_start_time_is_reparseable(self):
        """The rewritten StartTime parses back to the same instant."""
        record = parse_line_win32(self._line(), DEFAULT_KEYS_WIN32)
        assert parse_start_time(record["StartTime"]) == datetime.fromtimestamp(1704207845)

    def test_missing_start_time_is_skipped(self):
        assert parse_line_win32(self._line(StartTime=None), DEFAULT_KEYS_WIN32) is None

    def test_missing_cpu_is_skipped(self):
        line = json.dumps({"StartTime": "/Date(1704207845000)/", "Id": 4})
        assert parse_line_win32(line, DEFAULT_KEYS_WIN32) is None

    def test_malformed_json_raises(self):
        with pytest.raises(ParseError):
            parse_line_win32('{"StartTime": "/Date(1704207845000)/", "CPU":', DEFAULT_KEYS_WIN32)

    def test_non_object_raises(self):
        with pytest.raises(ParseError):
            parse_line_win32("[1, 2, 3]", DEFAULT_KEYS_WIN32)

    def test_bad_date_raises(self):
        with pytest.raises(ParseError):
            parse_line_win32(self._line(StartTime="2024-01-02"), DEFAULT_KEYS_WIN32)


def test_parse_win32_date_accepts_offset_suffix():
    """ConvertTo-JSON may append a UTC offset after the milliseconds."""
    assert parse_win32_date("/Date(1704207845000+0100)/") == datetime.fromtimestamp(1704207845)
