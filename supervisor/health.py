"""Backend readiness probes.

Two strategies are available. ``FixedDelayProbe`` is a blind warm-up wait:
it always reports ready once the delay has elapsed, whether or not the
backend is actually listening. ``HttpHealthProbe`` polls the backend's HTTP
interface until it answers or a deadline passes, and so can tell the caller
that the backend never came up.
"""

import asyncio
import logging
from enum import Enum

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_delay, wait_fixed

from supervisor.models import ProcessHandle

logger = logging.getLogger(__name__)


class ReadinessOutcome(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"
    EXITED = "exited"  # backend died while we were waiting


class FixedDelayProbe:
    """Wait a fixed warm-up period, then assume the backend is reachable."""

    def __init__(self, seconds: float):
        self.seconds = seconds

    def describe(self) -> str:
        return f"fixed {self.seconds:g}s warm-up"

    async def wait_ready(self, handle: ProcessHandle | None = None) -> ReadinessOutcome:
        await asyncio.sleep(self.seconds)
        return ReadinessOutcome.READY


class HttpHealthProbe:
    """Poll an HTTP endpoint until it answers or ``timeout`` seconds pass.

    Any response below 500 counts as reachable: the backend serves the UI
    under the probed path, so a 404 still proves the server is listening.
    Connection failures and request timeouts just mean "not yet".
    """

    def __init__(
        self,
        url: str,
        timeout: float = 60.0,
        interval: float = 1.0,
        request_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.interval = interval
        self.request_timeout = request_timeout
        self._transport = transport

    def describe(self) -> str:
        return f"health check on {self.url} (timeout {self.timeout:g}s)"

    async def check(self, client: httpx.AsyncClient) -> bool:
        try:
            response = await client.get(self.url)
        except httpx.HTTPError as e:
            logger.debug("Health check on %s failed: %s", self.url, e)
            return False
        return response.status_code < 500

    async def wait_ready(self, handle: ProcessHandle | None = None) -> ReadinessOutcome:
        retrying = AsyncRetrying(
            stop=stop_after_delay(self.timeout),
            wait=wait_fixed(self.interval),
            retry=retry_if_result(lambda outcome: outcome is None),
        )
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.request_timeout),
            transport=self._transport,
        ) as client:
            try:
                return await retrying(self._poll_once, client, handle)
            except RetryError:
                return ReadinessOutcome.TIMED_OUT

    async def _poll_once(
        self, client: httpx.AsyncClient, handle: ProcessHandle | None
    ) -> ReadinessOutcome | None:
        if handle is not None and not handle.alive:
            return ReadinessOutcome.EXITED
        if await self.check(client):
            return ReadinessOutcome.READY
        return None
