"""UI window handles the coordinator can show and be told to close by."""

import logging
import webbrowser
from typing import Protocol

from supervisor.events import EventChannel

logger = logging.getLogger(__name__)


class Window(Protocol):
    def show(self, url: str) -> None: ...

    def close(self) -> None: ...


class BrowserWindow:
    """Uses the system browser as the UI window.

    A browser tab cannot report being closed, so ``close()`` is driven by the
    host instead (Ctrl+C or a termination signal in the CLI).
    """

    def __init__(self, channel: EventChannel, open_browser: bool = True):
        self.channel = channel
        self.open_browser = open_browser
        self.url: str | None = None
        self._closed = False

    def show(self, url: str) -> None:
        self.url = url
        if self.open_browser:
            if not webbrowser.open(url):
                logger.warning("Could not open a browser, visit %s manually", url)
        else:
            logger.info("UI available at %s", url)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.channel.window_closed()
