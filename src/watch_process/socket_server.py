"""Unix socket server for streaming emitted records to clients.

PUSH-BASED DESIGN:
- The sampler calls emit() for every record; emit() broadcasts it
- No internal polling loop - data flows directly from the sampler
- Protocol: newline-delimited JSON messages
"""

from __future__ import annotations

import asyncio
import json
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from watch_process.sinks import EmittedEvent

if TYPE_CHECKING:
    from watch_process.parser import ProcessRecord
    from watch_process.sinks import RingBuffer

log = structlog.get_logger()

# Longest a single client may hold up emit() before it is dropped
CLIENT_DRAIN_TIMEOUT = 1.0


class SocketServer:
    """Unix domain socket server for real-time record streaming.

    Message Types:
    - initial_state: Sent on client connect with the ring buffer contents
    - record: Sent via emit() for every emitted record
    """

    def __init__(
        self,
        socket_path: Path,
        ring_buffer: RingBuffer,
        drain_timeout: float = CLIENT_DRAIN_TIMEOUT,
    ) -> None:
        self.socket_path = socket_path
        self.ring_buffer = ring_buffer
        self.drain_timeout = drain_timeout
        self._server: asyncio.Server | None = None
        self._clients: set[asyncio.StreamWriter] = set()
        self._running = False

    @property
    def has_clients(self) -> bool:
        """Check if any clients are connected."""
        return len(self._clients) > 0

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        """Start the socket server."""
        # Remove stale socket file
        if self.socket_path.exists():
            self.socket_path.unlink()

        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path),
        )

        # Daemon may run as root while clients run as a regular user
        os.chmod(self.socket_path, stat.S_IRWXU | stat.S_IRWXG | stat.S_IRWXO)

        self._running = True
        log.info("socket_server_started", path=str(self.socket_path))

    async def stop(self) -> None:
        """Stop the socket server."""
        self._running = False

        for writer in list(self._clients):
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass  # Client already gone
        self._clients.clear()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        if self.socket_path.exists():
            self.socket_path.unlink()

        log.info("socket_server_stopped")

    async def emit(self, tag: str, time: float, record: ProcessRecord) -> None:
        """Push one record to all connected clients.

        A client that stops reading is dropped once its socket buffer is
        full for longer than drain_timeout, so it never stalls the sampler.
        """
        if not self.has_clients:
            return

        message = {"type": "record", **EmittedEvent(tag, time, record).to_dict()}
        data = json.dumps(message, default=str).encode() + b"\n"

        for writer in list(self._clients):
            try:
                writer.write(data)
                await asyncio.wait_for(writer.drain(), timeout=self.drain_timeout)
            except asyncio.TimeoutError:
                self._drop_client(writer)
                log.warning(
                    "socket_client_dropped", reason="not reading", count=self.client_count
                )
            except (ConnectionError, OSError):
                self._clients.discard(writer)

    def _drop_client(self, writer: asyncio.StreamWriter) -> None:
        """Forget a client and abort its connection without flushing."""
        self._clients.discard(writer)
        writer.transport.abort()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a new client connection."""
        self._clients.add(writer)
        log.info("socket_client_connected", count=self.client_count)

        try:
            try:
                await self._send_initial_state(writer)
            except asyncio.TimeoutError:
                self._drop_client(writer)
                log.warning("socket_client_dropped", reason="initial state not read")
                return
            except (ConnectionError, OSError):
                log.debug("socket_initial_state_failed")
                return  # Client disconnected, cleanup happens in finally

            # Data arrives via emit(); just wait for the client to hang up
            while self._running:
                try:
                    data = await asyncio.wait_for(reader.read(1), timeout=1.0)
                    if not data:
                        break
                except asyncio.TimeoutError:
                    continue
                except ConnectionError:
                    break
        finally:
            self._clients.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            log.info("socket_client_disconnected", count=self.client_count)

    async def _send_initial_state(self, writer: asyncio.StreamWriter) -> None:
        """Send the buffered recent records to a newly connected client."""
        events = self.ring_buffer.events
        message = {
            "type": "initial_state",
            "records": [e.to_dict() for e in events],
            "record_count": len(events),
        }
        data = json.dumps(message, default=str).encode() + b"\n"
        writer.write(data)
        await asyncio.wait_for(writer.drain(), timeout=self.drain_timeout)
