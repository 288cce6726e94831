"""Durable run log for the supervisor and the backend's output streams.

Every entry is one line of the form ``[YYYY-MM-DD HH:MM:SS] message`` in local
time. The file is truncated once per supervisor start and given a separator
header; everything after that is appended. Write failures are reported on the
console and otherwise ignored so they can never stall supervision.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path

from supervisor.errors import RuntimeIOFailure
from supervisor.models import ProcessHandle

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class StreamTag(str, Enum):
    OUTPUT = "OUTPUT"
    ERROR = "ERROR"


_LEVEL_PREFIXES = {
    "info": "",
    "warning": "WARNING: ",
    "error": "SUPERVISOR ERROR: ",
    "fatal": "FATAL: ",
}

_CONSOLE_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def _timestamp() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


async def _read_line(stream: asyncio.StreamReader) -> bytes:
    """Read one line of any length, or the trailing partial line at EOF.

    ``StreamReader.readline`` discards a line longer than the reader's
    buffer limit and raises, so oversized lines are pulled in chunks instead.
    """
    chunks = []
    while True:
        try:
            chunks.append(await stream.readuntil(b"\n"))
            break
        except asyncio.IncompleteReadError as e:
            chunks.append(e.partial)
            break
        except asyncio.LimitOverrunError as e:
            chunks.append(await stream.read(e.consumed))
    return b"".join(chunks)


class OutputLogger:
    """Single append-only log sink shared by the supervisor and its child."""

    def __init__(self, path: Path, encoding: str = "utf-8"):
        self.path = Path(path)
        self.encoding = encoding
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start_run(self) -> None:
        """Truncate the log and write the run separator. Only the first call counts."""
        if self._started:
            return
        self._started = True
        header = f"=== Supervisor started: {_timestamp()} ===\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding=self.encoding) as f:
                f.write(header)
        except OSError as e:
            logger.error("Unable to create log file %s: %s", self.path, e)

    def log(self, message: str, level: str = "info") -> None:
        """Record a supervisor entry and echo it to the console."""
        logger.log(_CONSOLE_LEVELS.get(level, logging.INFO), message)
        self._append(f"{_LEVEL_PREFIXES.get(level, '')}{message}")

    def info(self, message: str) -> None:
        self.log(message, "info")

    def warning(self, message: str) -> None:
        self.log(message, "warning")

    def error(self, message: str) -> None:
        self.log(message, "error")

    def fatal(self, message: str) -> None:
        self.log(message, "fatal")

    def output(self, tag: StreamTag, line: str) -> None:
        """Record one line the child wrote on stdout or stderr."""
        logger.debug("[%s] %s", tag.value, line)
        self._append(f"{tag.value}: {line}")

    async def read_stream(self, stream: asyncio.StreamReader, tag: StreamTag) -> None:
        """Read from a child stream line by line until EOF, logging each line."""
        try:
            while True:
                line = await _read_line(stream)
                if not line:
                    break

                message = line.decode("utf-8", errors="replace").rstrip()
                if message:  # Skip empty lines
                    self.output(tag, message)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.error(f"Error reading backend {tag.value.lower()} stream: {e}")

    def attach(self, handle: ProcessHandle) -> list[asyncio.Task]:
        """Start capture tasks for whichever streams the handle retains."""
        tasks = []
        if handle.stdout:
            tasks.append(asyncio.create_task(self.read_stream(handle.stdout, StreamTag.OUTPUT)))
        if handle.stderr:
            tasks.append(asyncio.create_task(self.read_stream(handle.stderr, StreamTag.ERROR)))
        return tasks

    def close(self) -> None:
        """Stop accepting entries. Later writes are dropped silently."""
        self._closed = True

    def _append(self, message: str) -> None:
        if self._closed:
            return
        try:
            self._write(f"[{_timestamp()}] {message}\n")
        except RuntimeIOFailure as e:
            logger.error("Unable to write log entry: %s", e)

    def _write(self, text: str) -> None:
        try:
            with open(self.path, "a", encoding=self.encoding) as f:
                f.write(text)
        except OSError as e:
            raise RuntimeIOFailure(str(e)) from e
