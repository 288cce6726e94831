"""Event channel between the outside world and the lifecycle coordinator.

Process exits, window closes and shutdown signals all arrive as messages on
one queue, which the coordinator drains on the event loop. Producers never
touch coordinator state directly.
"""

import asyncio
import signal
from dataclasses import dataclass
from enum import Enum


class EventKind(str, Enum):
    PROCESS_EXITED = "process_exited"
    WINDOW_CLOSED = "window_closed"
    SHUTDOWN_REQUESTED = "shutdown_requested"


@dataclass(frozen=True)
class SupervisorEvent:
    kind: EventKind
    pid: int | None = None
    exit_code: int | None = None
    detail: str = ""


class EventChannel:
    """Unbounded FIFO of supervisor events."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[SupervisorEvent] = asyncio.Queue()

    def post(self, event: SupervisorEvent) -> None:
        self._queue.put_nowait(event)

    def process_exited(self, pid: int, exit_code: int | None) -> None:
        self.post(SupervisorEvent(EventKind.PROCESS_EXITED, pid=pid, exit_code=exit_code))

    def window_closed(self) -> None:
        self.post(SupervisorEvent(EventKind.WINDOW_CLOSED))

    def shutdown_requested(self, detail: str = "") -> None:
        self.post(SupervisorEvent(EventKind.SHUTDOWN_REQUESTED, detail=detail))

    async def receive(self) -> SupervisorEvent:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


class SignalHandler:
    """Turns SIGINT/SIGTERM into shutdown requests on the channel."""

    def __init__(self, channel: EventChannel, loop: asyncio.AbstractEventLoop):
        self.channel = channel
        self.loop = loop
        self._previous: dict[int, object] = {}

    def setup(self):
        """Set up signal handlers."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous[sig] = signal.signal(sig, self._handle_signal)

    def restore(self):
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def _handle_signal(self, signum, frame):
        name = signal.Signals(signum).name
        self.loop.call_soon_threadsafe(self.channel.shutdown_requested, name)
