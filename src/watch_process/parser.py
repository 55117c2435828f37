"""Parsing of process-listing output into flat records.

Two variants, chosen once per platform:

- parse_line(): one line of ``ps -o lstart,...`` text. The leading lstart
  column contains spaces ("Mon Jan  2 15:04:05 2024"), so it is cut out
  before the rest of the line is split on whitespace.
- parse_line_win32(): one compact JSON object per line as printed by
  PowerShell's ConvertTo-JSON.

Both return None for a line that should be skipped quietly (filtered user,
incomplete sample) and raise ParseError for a line that is broken.
"""

import json
import re
from datetime import datetime
from typing import Any

# Field name -> value. Values stay strings until type coercion, except the
# derived elapsed time (int) and Windows JSON values (decoded types).
ProcessRecord = dict[str, Any]

LSTART_FORMAT = "%a %b %d %H:%M:%S %Y"
ISO_FORMAT = "%Y-%m-%d %H:%M:%S"

_LSTART_PATTERN = re.compile(r"^(\w+\s+\w+\s+\d+\s+\d\d:\d\d:\d\d\s+\d+)")
_WIN32_DATE_PATTERN = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")


class ParseError(ValueError):
    """A listing line could not be turned into a record."""


def parse_start_time(text: str) -> datetime:
    """Parse a start time in lstart form or ISO form.

    Raises:
        ParseError: If text matches neither format
    """
    normalized = " ".join(str(text).split())
    for fmt in (LSTART_FORMAT, ISO_FORMAT):
        try:
            return datetime.strptime(normalized, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(normalized)
    except ValueError as e:
        raise ParseError(f"Unparseable start time: {text!r}") from e


def elapsed_seconds(start: datetime, now: datetime | None = None) -> int:
    """Whole seconds between start and now."""
    if now is None:
        now = datetime.now(start.tzinfo)
    return int((now - start).total_seconds())


def parse_line(
    line: str,
    keys: list[str],
    lookup_user: list[str] | None = None,
    now: datetime | None = None,
) -> ProcessRecord | None:
    """Parse one line of ps output into a record.

    Fields are zipped onto keys by position. Blank fields are absorbed, so a
    missing column shifts the following values left rather than leaving an
    empty string behind. The last key takes the rest of the line, spaces
    included.

    Args:
        line: Raw output line
        keys: Field names in column order
        lookup_user: Allowed user names, or None to accept every user
        now: Reference time for elapsed_time (defaults to datetime.now())

    Returns:
        The record, or None if the user is filtered out

    Raises:
        ParseError: If start_time is present but not a valid timestamp
    """
    remaining = len(keys)
    values: list[str] = []

    match = _LSTART_PATTERN.match(line)
    if match:
        lstart = " ".join(match.group(1).split())
        parse_start_time(lstart)
        values.append(lstart)
        line = line[match.end() :]
        remaining -= 1

    rest = line.strip()
    if remaining > 0 and rest:
        values.extend(rest.split(None, remaining - 1))

    data: ProcessRecord = dict(zip(keys, [v for v in values if v != ""]))

    if "start_time" in data:
        data["elapsed_time"] = elapsed_seconds(parse_start_time(data["start_time"]), now)

    if lookup_user is not None and data.get("user") not in lookup_user:
        return None

    return data


def parse_win32_date(value: str) -> datetime:
    """Convert a ``/Date(<epoch ms>)/`` string to a local timestamp.

    Raises:
        ParseError: If value is not in that form
    """
    match = _WIN32_DATE_PATTERN.match(str(value).strip())
    if not match:
        raise ParseError(f"Unparseable StartTime: {value!r}")
    try:
        return datetime.fromtimestamp(int(match.group(1)) / 1000)
    except (OverflowError, OSError, ValueError) as e:
        raise ParseError(f"StartTime out of range: {value!r}") from e


def parse_line_win32(
    line: str,
    keys: list[str],
    now: datetime | None = None,
) -> ProcessRecord | None:
    """Parse one JSON object printed by Get-Process | ConvertTo-JSON.

    Objects without StartTime or CPU are incomplete samples (typically
    processes the current user cannot inspect) and are skipped.

    Raises:
        ParseError: If the line is not a JSON object or StartTime is malformed
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")

    if data.get("StartTime") is None or data.get("CPU") is None:
        return None

    started = parse_win32_date(data["StartTime"])
    data["StartTime"] = started.strftime(ISO_FORMAT)

    record: ProcessRecord = {k: v for k, v in data.items() if k in keys}
    record["ElapsedTime"] = elapsed_seconds(started, now)
    return record
