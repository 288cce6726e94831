"""Backend lifecycle coordination.

The coordinator owns the one backend process handle and the one UI window
handle and moves through an explicit state machine:

  NOT_STARTED -> RESOLVING_DEPENDENCIES -> LAUNCHING -> AWAITING_READY
      -> READY -> RUNNING | CRASHED -> SHUTTING_DOWN -> STOPPED

Everything that happens outside the coordinator (the backend exiting, the
window closing, a termination signal) reaches it as a message on its
EventChannel, so state only ever changes on the event loop in one place.
"""

import asyncio
import logging
import traceback
from typing import Protocol

from supervisor.dependencies import DependencyResolver
from supervisor.errors import ConfigurationMissing, InvalidTransition, SpawnFailure, UnexpectedExit
from supervisor.events import EventChannel, EventKind, SupervisorEvent
from supervisor.health import FixedDelayProbe, ReadinessOutcome
from supervisor.launcher import ProcessLauncher
from supervisor.models import (
    LaunchSpec,
    ProcessHandle,
    ResolutionResult,
    RuntimeDependencySet,
    ServiceState,
    SupervisionPolicy,
)
from supervisor.output_logger import OutputLogger
from supervisor.window import Window

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[ServiceState, set[ServiceState]] = {
    ServiceState.NOT_STARTED: {ServiceState.RESOLVING_DEPENDENCIES, ServiceState.STOPPED},
    ServiceState.RESOLVING_DEPENDENCIES: {ServiceState.LAUNCHING, ServiceState.STOPPED},
    ServiceState.LAUNCHING: {ServiceState.AWAITING_READY, ServiceState.READY, ServiceState.STOPPED},
    ServiceState.AWAITING_READY: {ServiceState.READY, ServiceState.CRASHED, ServiceState.SHUTTING_DOWN},
    ServiceState.READY: {ServiceState.RUNNING, ServiceState.CRASHED, ServiceState.SHUTTING_DOWN},
    ServiceState.RUNNING: {ServiceState.CRASHED, ServiceState.SHUTTING_DOWN},
    ServiceState.CRASHED: {ServiceState.SHUTTING_DOWN},
    ServiceState.SHUTTING_DOWN: {ServiceState.STOPPED},
    ServiceState.STOPPED: set(),
}


class ReadinessProbe(Protocol):
    def describe(self) -> str: ...

    async def wait_ready(self, handle: ProcessHandle | None = None) -> ReadinessOutcome: ...


class LifecycleCoordinator:
    """Starts the backend before the UI and stops it when the UI goes away."""

    def __init__(
        self,
        spec: LaunchSpec,
        dependencies: RuntimeDependencySet,
        log: OutputLogger,
        channel: EventChannel | None = None,
        probe: ReadinessProbe | None = None,
        window: Window | None = None,
        ui_url: str | None = None,
        resolver: DependencyResolver | None = None,
        launcher: ProcessLauncher | None = None,
        shutdown_timeout: float = 5.0,
        flush_timeout: float = 1.0,
        detached_linger: float = 3.0,
    ) -> None:
        self.spec = spec
        self.dependencies = dependencies
        self.log = log
        self.channel = channel or EventChannel()
        self.probe = probe or FixedDelayProbe(3.0)
        self.window = window
        self.ui_url = ui_url
        self.resolver = resolver or DependencyResolver(log)
        self.launcher = launcher or ProcessLauncher(log)
        self.shutdown_timeout = shutdown_timeout
        self.flush_timeout = flush_timeout
        self.detached_linger = detached_linger

        self.state = ServiceState.NOT_STARTED
        self.history: list[ServiceState] = [self.state]
        self.handle: ProcessHandle | None = None
        self.resolution: ResolutionResult | None = None
        self.readiness: ReadinessOutcome | None = None
        self.crash: UnexpectedExit | None = None
        self.termination_requests: list[int] = []

        self._stream_tasks: list[asyncio.Task] = []
        self._exit_watcher: asyncio.Task | None = None

    @property
    def detached(self) -> bool:
        return self.spec.policy is SupervisionPolicy.DETACHED

    def _transition(self, target: ServiceState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        logger.debug("State %s -> %s", self.state.value, target.value)
        self.state = target
        self.history.append(target)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Run the startup sequence up to READY.

        Returns False when startup halted: a required file was missing, the
        OS refused to spawn the process, or the backend never became ready.
        """
        self.log.start_run()

        self._transition(ServiceState.RESOLVING_DEPENDENCIES)
        self.resolution = await asyncio.to_thread(self.resolver.resolve, self.dependencies)
        if self.resolution.degraded:
            self.log.info("Continuing with degraded runtime; the backend may still find the libraries itself")

        self._transition(ServiceState.LAUNCHING)
        try:
            handle = await self.launcher.launch(self.spec)
        except (ConfigurationMissing, SpawnFailure):
            self._stop()
            return False

        self.handle = handle
        self._stream_tasks = self.log.attach(handle)

        if self.detached:
            self._transition(ServiceState.READY)
            return True

        self._exit_watcher = asyncio.create_task(self._watch_exit(handle))

        self._transition(ServiceState.AWAITING_READY)
        self.log.info(f"Waiting for backend: {self.probe.describe()}")
        self.readiness = await self.probe.wait_ready(handle)

        if self.readiness is ReadinessOutcome.READY:
            self._transition(ServiceState.READY)
            self.log.info("Backend startup wait complete")
            return True

        if self.readiness is ReadinessOutcome.EXITED:
            self._record_crash(handle.pid, handle.exit_code)
            self.launcher.release(handle)
            self.handle = None
        else:
            self.log.error("Backend did not become reachable in time")
        await self.shutdown()
        return False

    async def _watch_exit(self, handle: ProcessHandle) -> None:
        exit_code = await handle.wait()
        self.channel.process_exited(handle.pid, exit_code)

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def run(self) -> int:
        """Start, show the window, then supervise until shutdown. Returns an exit status."""
        try:
            if not await self.start():
                return 1

            if self.detached:
                await self._linger()
                await self.shutdown()
                return 0

            if self.window is not None and self.ui_url:
                self.log.info(f"Loading URL: {self.ui_url}")
                self.window.show(self.ui_url)
            self._transition(ServiceState.RUNNING)

            while self.state not in (ServiceState.SHUTTING_DOWN, ServiceState.STOPPED):
                event = await self.channel.receive()
                await self.handle_event(event)

            return 1 if self.crash else 0
        except Exception as e:
            self.log.fatal(f"Uncaught exception: {e}")
            for line in traceback.format_exc().splitlines():
                self.log.error(line)
            raise
        finally:
            await self.shutdown()

    async def handle_event(self, event: SupervisorEvent) -> None:
        if event.kind is EventKind.PROCESS_EXITED:
            if self.handle is None or event.pid != self.handle.pid:
                return
            if self.state in (ServiceState.READY, ServiceState.RUNNING):
                self._record_crash(event.pid, event.exit_code)
                self.launcher.release(self.handle)
                self.handle = None
            return

        if event.kind is EventKind.WINDOW_CLOSED:
            self.log.info("Main window closed")
        else:
            self.log.info(f"Shutdown requested {event.detail}".rstrip())
        await self.shutdown()

    def _record_crash(self, pid: int, exit_code: int | None) -> None:
        self._transition(ServiceState.CRASHED)
        self.crash = UnexpectedExit(pid, exit_code)
        self.log.error(f"Backend process {pid} exited unexpectedly, exit code: {exit_code}")

    async def _linger(self) -> None:
        """Stay around briefly after a detached launch so early failures still get logged."""
        handle = self.handle
        if handle is None or self.detached_linger <= 0:
            return
        try:
            exit_code = await asyncio.wait_for(handle.wait(), timeout=self.detached_linger)
        except asyncio.TimeoutError:
            return
        self.log.warning(f"Process {handle.pid} exited during startup, exit code: {exit_code}")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Terminate the backend (if any), stop capturing output, and stop."""
        if self.state in (ServiceState.SHUTTING_DOWN, ServiceState.STOPPED):
            return
        if self.state is ServiceState.NOT_STARTED:
            self._stop()
            return

        self._transition(ServiceState.SHUTTING_DOWN)

        handle, self.handle = self.handle, None
        if handle is not None:
            if self.detached:
                self.log.info(f"Leaving detached process {handle.pid} running")
            else:
                await self._terminate(handle)

        await self._drain_streams()
        if self._exit_watcher is not None:
            self._exit_watcher.cancel()
            await asyncio.gather(self._exit_watcher, return_exceptions=True)
            self._exit_watcher = None

        self.window = None
        self._stop()

    async def _terminate(self, handle: ProcessHandle) -> None:
        self.launcher.release(handle)
        if not handle.alive:
            self.log.info(f"Backend process {handle.pid} already exited, exit code: {handle.exit_code}")
            return

        self.log.info(f"Terminating backend process {handle.pid}")
        try:
            handle.terminate()
        except ProcessLookupError:
            return
        except OSError as e:
            self.log.error(f"Failed to terminate backend process {handle.pid}: {e}")
            return
        self.termination_requests.append(handle.pid)

        if self.shutdown_timeout <= 0:
            return

        try:
            exit_code = await asyncio.wait_for(handle.wait(), timeout=self.shutdown_timeout)
            self.log.info(f"Backend process exited, exit code: {exit_code}")
        except asyncio.TimeoutError:
            self.log.warning(
                f"Backend process {handle.pid} still running after {self.shutdown_timeout:g}s, killing"
            )
            try:
                handle.kill()
            except ProcessLookupError:
                pass
            except OSError as e:
                self.log.error(f"Failed to kill backend process {handle.pid}: {e}")

    async def _drain_streams(self) -> None:
        """Give capture tasks a bounded window to flush, then cancel them."""
        tasks, self._stream_tasks = self._stream_tasks, []
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=self.flush_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _stop(self) -> None:
        if self.state is not ServiceState.STOPPED:
            self._transition(ServiceState.STOPPED)
        self.log.info("Supervisor stopped")
        self.log.close()
