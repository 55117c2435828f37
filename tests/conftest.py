"""Shared test fixtures for watch-process."""

import logging
import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from watch_process.config import Config, OutputConfig, WatchConfig
from watch_process.parser import ProcessRecord

HEADER = (
    "                 STARTED USER                   PID  PPID     TIME %CPU %MEM   RSS    SZ S"
    " COMMAND         CMD"
)


def make_ps_line(
    start: str = "Mon Jan  2 15:04:05 2024",
    user: str = "alice",
    pid: int = 1234,
    ppid: int = 1,
    cpu_time: str = "00:00:01",
    cpu: str = "1.5",
    mem: str = "2.3",
    rss: int = 10240,
    size: int = 20480,
    state: str = "S",
    comm: str = "myproc",
    cmd: str = "myproc --flag",
) -> str:
    """Build one line of `ps -o lstart,user,...` output."""
    return (
        f"{start} {user:<20} {pid:>6} {ppid:>5} {cpu_time} {cpu:>4} {mem:>4} "
        f"{rss:>6} {size:>6} {state} {comm:<15} {cmd}"
    )


class CollectingSink:
    """Sink that keeps every emitted event for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[str, float, ProcessRecord]] = []

    async def emit(self, tag: str, time: float, record: ProcessRecord) -> None:
        self.events.append((tag, time, record))

    @property
    def records(self) -> list[ProcessRecord]:
        return [record for _, _, record in self.events]


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def listing_file(tmp_path: Path):
    """Write fake listing output to a file and return a command that prints it."""

    def write(*lines: str, header: str = HEADER) -> str:
        path = tmp_path / "listing.txt"
        path.write_text("\n".join([header, *lines]) + "\n")
        return f"cat '{path}'"

    return write


@pytest.fixture
def make_config():
    """Build a Config for tests with a tag set."""

    def build(**watch_overrides) -> Config:
        watch_overrides.setdefault("tag", "test.process")
        return Config(watch=WatchConfig(**watch_overrides), output=OutputConfig(stdout=False))

    return build


@pytest.fixture
def short_tmp_path() -> Iterator[Path]:
    """Create a short temporary path for Unix sockets.

    macOS has a 104-character limit for Unix socket paths.
    pytest's tmp_path is too long, so we use /tmp directly.
    """
    with tempfile.TemporaryDirectory(dir="/tmp", prefix="wp_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Undo logging configuration done by a test."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()
