"""Shared fixtures for supervisor tests.

Provides a temporary application layout, an OutputLogger writing into it,
launch specs that run short Python snippets as the "backend", and fake
process handles for lifecycle tests that must not depend on OS timing.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from supervisor.models import LaunchSpec, SupervisionPolicy
from supervisor.output_logger import OutputLogger


def read_log(path: Path) -> list[str]:
    """Return the log file's lines without trailing newlines."""
    return path.read_text(encoding="utf-8").splitlines()


def entries(path: Path, marker: str) -> list[str]:
    """Log lines containing ``marker``."""
    return [line for line in read_log(path) if marker in line]


# ---------------------------------------------------------------------------
# Log fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "debug.log"


@pytest.fixture
def output_logger(log_path):
    """OutputLogger with the run header already written."""
    log = OutputLogger(log_path)
    log.start_run()
    return log


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

@pytest.fixture
def app_root(tmp_path, monkeypatch):
    """Empty application root; cwd moved there so no stray .env is picked up."""
    root = tmp_path / "app"
    root.mkdir()
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def lib_dirs(tmp_path):
    """(primary, fallback) directories for dependency resolution."""
    primary = tmp_path / "primary"
    fallback = tmp_path / "fallback"
    primary.mkdir()
    fallback.mkdir()
    return primary, fallback


# ---------------------------------------------------------------------------
# Launch specs
# ---------------------------------------------------------------------------

@pytest.fixture
def python_spec():
    """Factory: LaunchSpec that runs ``code`` with the current interpreter.

    Usage:
        spec = python_spec("print('hi')")
    """
    def _factory(code: str, policy: SupervisionPolicy = SupervisionPolicy.ATTACHED, **kwargs) -> LaunchSpec:
        return LaunchSpec(
            executable=Path(sys.executable),
            args=["-c", code],
            policy=policy,
            **kwargs,
        )
    return _factory


# ---------------------------------------------------------------------------
# Fake process handles
# ---------------------------------------------------------------------------

class FakeHandle:
    """Stand-in for ProcessHandle whose exit is controlled by the test."""

    def __init__(self, spec: LaunchSpec, pid: int = 4242, exits_on_terminate: bool = True):
        self.spec = spec
        self.pid = pid
        self.stdout = None
        self.stderr = None
        self.exits_on_terminate = exits_on_terminate
        self.terminate_calls = 0
        self.kill_calls = 0
        self.terminate_error: Exception | None = None
        self._exit_code: int | None = None
        self._exited = asyncio.Event()

    @property
    def exit_code(self):
        return self._exit_code

    @property
    def alive(self) -> bool:
        return self._exit_code is None

    def exit(self, code: int) -> None:
        self._exit_code = code
        self._exited.set()

    def terminate(self) -> None:
        self.terminate_calls += 1
        if self.terminate_error is not None:
            raise self.terminate_error
        if self.exits_on_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self._exit_code


class FakeLauncher:
    """Launcher that hands out a FakeHandle instead of spawning anything."""

    def __init__(self, **handle_kwargs):
        self.handle_kwargs = handle_kwargs
        self.launched: list[FakeHandle] = []
        self.released: list[FakeHandle] = []

    async def launch(self, spec: LaunchSpec) -> FakeHandle:
        handle = FakeHandle(spec, **self.handle_kwargs)
        self.launched.append(handle)
        return handle

    def release(self, handle: FakeHandle) -> None:
        self.released.append(handle)


class FakeWindow:
    def __init__(self):
        self.shown: list[str] = []

    def show(self, url: str) -> None:
        self.shown.append(url)

    def close(self) -> None:
        pass


@pytest.fixture
def fake_launcher():
    return FakeLauncher()


@pytest.fixture
def fake_window():
    return FakeWindow()


async def wait_for_state(coordinator, state, timeout: float = 5.0) -> None:
    """Poll until the coordinator reaches ``state``."""
    async def _poll():
        while coordinator.state is not state:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout=timeout)
