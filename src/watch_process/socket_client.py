"""Unix socket client for following records streamed by the daemon."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from watch_process.sinks import EmittedEvent


class SocketClient:
    """Unix domain socket client for real-time records.

    Simple and stateless: connects or throws.
    """

    def __init__(self, socket_path: Path):
        self.socket_path = socket_path
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def connected(self) -> bool:
        """Whether client is connected."""
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """Connect to the daemon socket.

        Raises:
            FileNotFoundError: If socket doesn't exist (daemon not running)
        """
        if not self.socket_path.exists():
            raise FileNotFoundError(f"Socket not found: {self.socket_path}")

        self._reader, self._writer = await asyncio.open_unix_connection(
            str(self.socket_path), limit=1024 * 1024
        )

    async def disconnect(self) -> None:
        """Disconnect from the daemon socket."""
        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self._writer = None
            self._reader = None

    async def read_message(self, timeout: float | None = 1.0) -> dict[str, Any]:
        """Read next message from socket with timeout.

        Args:
            timeout: Max seconds to wait for data (None waits forever)

        Returns:
            Parsed JSON message from daemon

        Raises:
            ConnectionError: If connection is lost
            TimeoutError: If no data received within timeout
            json.JSONDecodeError: If message is invalid JSON
        """
        if not self.connected or self._reader is None:
            raise ConnectionError("Not connected")

        line = await asyncio.wait_for(self._reader.readline(), timeout=timeout)
        if not line:
            raise ConnectionError("Connection closed by server")

        return json.loads(line.decode())

    async def events(self, replay: bool = True) -> AsyncIterator[EmittedEvent]:
        """Yield records until the server closes the connection.

        Args:
            replay: Also yield the buffered records sent on connect
        """
        while True:
            try:
                msg = await self.read_message(timeout=None)
            except ConnectionError:
                return
            if msg.get("type") == "initial_state":
                if replay:
                    for data in msg.get("records", []):
                        yield EmittedEvent.from_dict(data)
            elif msg.get("type") == "record":
                yield EmittedEvent.from_dict(msg)
