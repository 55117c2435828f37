"""Timer-driven sampling of the process table.

Each tick runs the platform's listing command, skips its header line,
parses every following line and hands the resulting records to a sink.
Failures are contained at the narrowest level: a bad line is skipped,
a bad tick is logged, and the schedule carries on.
"""

import asyncio
import os
import signal
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Callable

import structlog

from watch_process.coercion import coerce_record, parse_types
from watch_process.command import build_command
from watch_process.config import Config
from watch_process.parser import ParseError, ProcessRecord, parse_line, parse_line_win32
from watch_process.platforms import Platform, detect
from watch_process.sinks import Sink

log = structlog.get_logger()

# Lines longer than the default 64 KiB StreamReader limit are common with ps -ww
STREAM_LIMIT = 1024 * 1024
HOSTNAME_TIMEOUT = 5.0
HEARTBEAT_TICKS = 60
HOSTNAME_PLACEHOLDERS = ("${hostname}", "__HOSTNAME__")


class TickError(RuntimeError):
    """The listing command failed during a tick."""


@dataclass
class TickStats:
    """Outcome of one tick."""

    started_at: datetime = field(default_factory=datetime.now)
    emitted: int = 0
    filtered: int = 0
    parse_failures: int = 0
    failed: bool = False


@dataclass
class SamplerState:
    """Runtime counters of the sampler."""

    running: bool = False
    tick_count: int = 0
    failed_ticks: int = 0
    records_emitted: int = 0
    last_tick_time: datetime | None = None

    def update(self, stats: TickStats) -> None:
        """Update state after a tick."""
        self.tick_count += 1
        self.records_emitted += stats.emitted
        if stats.failed:
            self.failed_ticks += 1
        self.last_tick_time = stats.started_at


def expand_tag(tag: str, hostname: str) -> str:
    """Substitute hostname placeholders in a tag."""
    for placeholder in HOSTNAME_PLACEHOLDERS:
        tag = tag.replace(placeholder, hostname)
    return tag


async def resolve_hostname(command: str = "hostname") -> str:
    """Run the hostname command once and return its output.

    Falls back to socket.gethostname() when the command fails, times out,
    or prints nothing.
    """
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            stdin=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        log.warning("hostname_lookup_failed", command=command, error=str(e))
        return socket.gethostname()

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=HOSTNAME_TIMEOUT)
    except asyncio.TimeoutError:
        await _reap(proc)
        log.warning("hostname_lookup_failed", command=command, error="timed out")
        return socket.gethostname()

    hostname = stdout.decode("utf-8", errors="replace").strip()
    if proc.returncode != 0 or not hostname:
        log.warning("hostname_lookup_failed", command=command, returncode=proc.returncode)
        return socket.gethostname()
    return hostname


async def _reap(proc: asyncio.subprocess.Process) -> None:
    """Kill a subprocess and everything it started, then wait for it.

    Commands run through the shell, so the process holding stdout may be a
    child of the shell rather than the shell itself. On POSIX the command
    leads its own session and the whole process group is killed.
    """
    if proc.returncode is None:
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass  # Exited between the check and the kill
    await proc.wait()


class Sampler:
    """Runs the listing command on a fixed schedule and emits one record per process.

    Platform, keys, command and parse function are fixed at construction;
    nothing carries over between ticks except the counters in ``state``.
    """

    def __init__(
        self,
        config: Config,
        sink: Sink,
        platform: Platform | None = None,
        tag: str | None = None,
    ):
        self.config = config
        self.sink = sink
        self.platform = platform or detect()
        self.state = SamplerState()

        watch = config.watch
        self.tag = tag or watch.tag
        self.keys = list(watch.keys) if watch.keys else self.platform.default_keys
        self.command = build_command(self.platform, self.keys, watch.command)
        self.types = parse_types(watch.types)
        self.interval = watch.interval
        self.timeout = watch.tick_timeout

        self._parse: Callable[[str], ProcessRecord | None]
        if self.platform.is_windows:
            self._parse = partial(parse_line_win32, keys=self.keys)
        else:
            self._parse = partial(parse_line, keys=self.keys, lookup_user=watch.lookup_user)

        self._shutdown_event = asyncio.Event()

    def parse(self, line: str) -> ProcessRecord | None:
        """Parse one output line with this platform's parser."""
        return self._parse(line)

    def stop(self) -> None:
        """Stop scheduling ticks. An in-flight tick is allowed to finish."""
        self._shutdown_event.set()

    async def tick(self) -> TickStats:
        """Run one sampling pass. Never raises except on cancellation."""
        stats = TickStats()
        try:
            await asyncio.wait_for(self._collect(stats), timeout=self.timeout)
        except asyncio.TimeoutError:
            stats.failed = True
            log.error("tick_timeout", command=self.command, timeout=self.timeout)
        except Exception as e:
            stats.failed = True
            log.error("tick_failed", command=self.command, error=str(e))

        self.state.update(stats)
        log.debug(
            "tick_completed",
            emitted=stats.emitted,
            filtered=stats.filtered,
            parse_failures=stats.parse_failures,
            failed=stats.failed,
        )
        return stats

    async def _collect(self, stats: TickStats) -> None:
        """Read the listing command's output and emit records.

        The subprocess is killed and reaped on every exit path.
        """
        proc = await asyncio.create_subprocess_shell(
            self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            stdin=asyncio.subprocess.DEVNULL,
            limit=STREAM_LIMIT,
            start_new_session=True,
        )
        try:
            if proc.stdout is None:
                raise TickError("listing command has no stdout")

            await proc.stdout.readline()  # header row

            async for raw in proc.stdout:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                try:
                    record = self._parse(line)
                except ParseError as e:
                    stats.parse_failures += 1
                    log.warning("line_parse_failed", error=str(e), line=line[:200])
                    continue
                if record is None:
                    stats.filtered += 1
                    continue

                record = coerce_record(record, self.types)
                await self.sink.emit(self.tag, time.time(), record)
                stats.emitted += 1

            returncode = await proc.wait()
            if returncode != 0:
                raise TickError(f"listing command exited with status {returncode}")
        finally:
            await _reap(proc)

    async def run(self) -> None:
        """Tick on a fixed wall-clock schedule until stop() is called.

        The first tick runs immediately. A tick that overruns its slot
        causes the missed slots to be skipped, never run back to back.
        """
        loop = asyncio.get_running_loop()
        self.state.running = True
        log.info(
            "sampler_started",
            tag=self.tag,
            interval=self.interval,
            timeout=self.timeout,
            platform=self.platform.value,
        )

        next_tick = loop.time()
        try:
            while not self._shutdown_event.is_set():
                await self.tick()

                if self.state.tick_count % HEARTBEAT_TICKS == 0:
                    log.info(
                        "sampler_heartbeat",
                        ticks=self.state.tick_count,
                        failed_ticks=self.state.failed_ticks,
                        records=self.state.records_emitted,
                    )

                next_tick += self.interval
                now = loop.time()
                if next_tick <= now:
                    missed = int((now - next_tick) // self.interval) + 1
                    next_tick += missed * self.interval
                    log.warning("tick_overrun", missed=missed, interval=self.interval)

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=next_tick - now)
                    break  # Shutdown requested during sleep
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue to next tick
        except asyncio.CancelledError:
            log.info("sampler_cancelled")
            raise
        finally:
            self.state.running = False
            log.info("sampler_stopped", ticks=self.state.tick_count)
