"""Background daemon for watch-process."""

import asyncio
import os
import signal

import psutil
import structlog

from watch_process.config import Config
from watch_process.logging import configure
from watch_process.sampler import Sampler, expand_tag, resolve_hostname
from watch_process.sinks import FanoutSink, JsonLinesSink, RingBuffer, Sink
from watch_process.socket_server import SocketServer

log = structlog.get_logger()


class DaemonAlreadyRunning(RuntimeError):
    """Another live daemon owns the PID file."""

    def __init__(self, pid: int):
        super().__init__(f"Daemon is already running (PID {pid})")
        self.pid = pid


class Daemon:
    """Owns the sampler, its sinks and the process-level housekeeping."""

    def __init__(self, config: Config):
        config.validate()
        self.config = config
        self.hostname: str | None = None
        self.ring_buffer = RingBuffer(max_events=config.output.ring_buffer_size)
        self.sampler: Sampler | None = None
        self._socket_server: SocketServer | None = None

    def _build_sink(self) -> Sink:
        """Assemble the configured sinks behind one emit()."""
        sinks: list[Sink] = [self.ring_buffer]
        if self.config.output.stdout:
            sinks.append(JsonLinesSink())
        if self._socket_server is not None:
            sinks.append(self._socket_server)
        return FanoutSink(*sinks)

    async def start(self) -> None:
        """Start the daemon and run the sampler until shutdown."""
        from importlib.metadata import version

        log.info("daemon_starting", version=version("watch-process"))

        watch = self.config.watch
        self.hostname = await resolve_hostname(watch.hostname_command)
        structlog.contextvars.bind_contextvars(hostname=self.hostname)
        tag = expand_tag(watch.tag, self.hostname)

        pid = self._check_already_running()
        if pid is not None:
            log.error("daemon_already_running", pid=pid)
            raise DaemonAlreadyRunning(pid)
        self._write_pid_file()

        if self.config.output.socket:
            self._socket_server = SocketServer(
                socket_path=self.config.socket_path,
                ring_buffer=self.ring_buffer,
            )
            await self._socket_server.start()

        self.sampler = Sampler(self.config, self._build_sink(), tag=tag)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))
            except NotImplementedError:
                pass  # Windows event loops; Ctrl+C still cancels asyncio.run()

        log.info(
            "polling_started",
            tag=tag,
            lookup_user=watch.lookup_user,
            interval=watch.interval,
            command=self.sampler.command,
        )
        await self.sampler.run()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        log.info("daemon_stopping")

        if self.sampler is not None:
            self.sampler.stop()

        if self._socket_server:
            await self._socket_server.stop()
            self._socket_server = None

        self._remove_pid_file()
        structlog.contextvars.unbind_contextvars("hostname")
        log.info("daemon_stopped")

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        if self.sampler is not None:
            self.sampler.stop()

    def _write_pid_file(self) -> None:
        """Write PID file."""
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        """Remove PID file if it is ours."""
        path = self.config.pid_path
        if not path.exists():
            return
        try:
            owner = int(path.read_text().strip())
        except ValueError:
            owner = None
        if owner in (None, os.getpid()):
            path.unlink()
            log.debug("pid_file_removed")

    def _check_already_running(self) -> int | None:
        """Return the PID of another running daemon, or None.

        Verifies not just that a process with the PID exists, but that it's
        actually a watch-process daemon, so a PID reused after a reboot is
        not mistaken for one.
        """
        path = self.config.pid_path
        if not path.exists():
            return None

        try:
            pid = int(path.read_text().strip())
        except ValueError:
            log.warning("pid_file_invalid", reason="not a number")
            path.unlink()
            return None

        if pid == os.getpid():
            return None

        try:
            proc = psutil.Process(pid)
            cmdline_str = " ".join(proc.cmdline()).lower()
            if "watch-process" in cmdline_str or "watch_process" in cmdline_str:
                log.info("daemon_already_running_verified", pid=pid)
                return pid
            log.warning(
                "pid_file_stale",
                reason="different process",
                pid=pid,
                actual_process=proc.name(),
            )
        except psutil.NoSuchProcess:
            log.warning("pid_file_stale", reason="process not found", pid=pid)
        except psutil.AccessDenied:
            # Can't inspect process - assume it's running to be safe
            log.warning("pid_check_access_denied", pid=pid)
            return pid

        path.unlink()
        return None


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads from file if not provided

    Raises:
        ConfigurationError: If the configuration is invalid
        DaemonAlreadyRunning: If another daemon owns the PID file
    """
    if config is None:
        config = Config.load()

    daemon = Daemon(config)
    configure(config)

    try:
        await daemon.start()
    except DaemonAlreadyRunning:
        raise
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()
