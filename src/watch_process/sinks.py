"""Output sinks for emitted process records.

A sink receives one (tag, time, record) event per sampled process. The
sampler awaits each emit() before parsing the next line, so a slow sink
slows the tick down but never reorders records.
"""

import json
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol, TextIO

from watch_process.parser import ProcessRecord


@dataclass(frozen=True)
class EmittedEvent:
    """One record as handed to a sink."""

    tag: str
    time: float
    record: ProcessRecord

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {"tag": self.tag, "time": self.time, "record": self.record}

    def to_json(self) -> str:
        """Serialize to a single-line JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmittedEvent":
        """Deserialize from a dictionary."""
        return cls(tag=data["tag"], time=data["time"], record=dict(data["record"]))


class Sink(Protocol):
    """Anything that accepts emitted records."""

    async def emit(self, tag: str, time: float, record: ProcessRecord) -> None: ...


class JsonLinesSink:
    """Writes each event as one JSON object per line."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream if stream is not None else sys.stdout

    async def emit(self, tag: str, time: float, record: ProcessRecord) -> None:
        self.stream.write(EmittedEvent(tag, time, record).to_json() + "\n")
        self.stream.flush()


class RingBuffer:
    """Keeps the most recent events in memory.

    Stores up to max_events (default 500); older events fall off the front.
    """

    def __init__(self, max_events: int = 500) -> None:
        self._events: deque[EmittedEvent] = deque(maxlen=max_events)

    def __len__(self) -> int:
        """Return number of events in buffer."""
        return len(self._events)

    @property
    def capacity(self) -> int:
        """Return maximum number of events the buffer can hold."""
        return self._events.maxlen or 0

    @property
    def events(self) -> list[EmittedEvent]:
        """Read-only access to events (returns a copy)."""
        return list(self._events)

    async def emit(self, tag: str, time: float, record: ProcessRecord) -> None:
        self._events.append(EmittedEvent(tag, time, dict(record)))

    def clear(self) -> None:
        """Empty the buffer."""
        self._events.clear()


class FanoutSink:
    """Forwards every event to each wrapped sink, in order."""

    def __init__(self, *sinks: Sink):
        self.sinks = list(sinks)

    async def emit(self, tag: str, time: float, record: ProcessRecord) -> None:
        for sink in self.sinks:
            await sink.emit(tag, time, record)
