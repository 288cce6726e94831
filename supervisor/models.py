"""Data model shared by the supervisor components."""

import asyncio
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field


class DependencyState(str, Enum):
    PRESENT = "present"
    COPIED_FROM_FALLBACK = "copied_from_fallback"
    MISSING = "missing"


class RuntimeDependencySet(BaseModel):
    """Shared libraries the backend expects next to its executable."""

    filenames: list[str]
    primary_dir: Path
    fallback_dirs: list[Path] = Field(min_length=1)


class ResolutionResult(BaseModel):
    """Outcome of one dependency resolution pass."""

    statuses: dict[str, DependencyState] = {}

    @property
    def missing(self) -> list[str]:
        return [name for name, state in self.statuses.items() if state == DependencyState.MISSING]

    @property
    def copied(self) -> list[str]:
        return [
            name
            for name, state in self.statuses.items()
            if state == DependencyState.COPIED_FROM_FALLBACK
        ]

    @property
    def ready(self) -> bool:
        """True when nothing is missing; otherwise the launch is degraded."""
        return not self.missing

    @property
    def degraded(self) -> bool:
        return not self.ready


class SupervisionPolicy(str, Enum):
    DETACHED = "detached"  # fire-and-forget, parent may exit at once
    ATTACHED = "attached"  # streams retained, child bound to parent lifetime


class LaunchSpec(BaseModel):
    """Everything needed to start the backend process."""

    executable: Path
    args: list[str] = []
    cwd: Path | None = None
    env_overlay: dict[str, str] = {}
    policy: SupervisionPolicy = SupervisionPolicy.ATTACHED
    # Files the process cannot run without besides the executable itself
    required_files: list[Path] = []

    def command(self) -> list[str]:
        return [str(self.executable), *self.args]

    def build_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Inherited environment with the overlay applied on top."""
        env = dict(os.environ if base is None else base)
        env.update(self.env_overlay)
        return env


class ServiceState(str, Enum):
    NOT_STARTED = "not_started"
    IDLE = "not_started"  # alias
    RESOLVING_DEPENDENCIES = "resolving_dependencies"
    LAUNCHING = "launching"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    RUNNING = "running"
    CRASHED = "crashed"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ProcessHandle:
    """Live reference to a spawned backend process and its output streams."""

    def __init__(self, process: asyncio.subprocess.Process, spec: LaunchSpec):
        self.process = process
        self.spec = spec
        self.pid: int = process.pid
        self.stdout: asyncio.StreamReader | None = process.stdout
        self.stderr: asyncio.StreamReader | None = process.stderr
        self.started_at = datetime.now()

    @property
    def exit_code(self) -> int | None:
        return self.process.returncode

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    def terminate(self) -> None:
        self.process.terminate()

    def kill(self) -> None:
        self.process.kill()

    async def wait(self) -> int:
        return await self.process.wait()

    def __repr__(self) -> str:
        return f"<ProcessHandle pid={self.pid} exit_code={self.exit_code}>"
