"""Backend process launching."""

import asyncio
import atexit
import logging
import os
import platform
import shlex
import subprocess
from pathlib import Path
from typing import Any, Dict

from supervisor.errors import ConfigurationMissing, SpawnFailure
from supervisor.models import LaunchSpec, ProcessHandle, SupervisionPolicy
from supervisor.output_logger import OutputLogger

logger = logging.getLogger(__name__)


def search_path_overlay(*dirs: Path, base: Dict[str, str] | None = None) -> Dict[str, str]:
    """Build an environment overlay that appends ``dirs`` to the search paths.

    ``PATH`` is always extended. Off Windows the platform's shared-library
    variable is extended too, since ``PATH`` does not drive the dynamic loader there.
    """
    env = os.environ if base is None else base
    extra = [str(d) for d in dirs]

    variables = ['PATH']
    system = platform.system()
    if system == 'Darwin':
        variables.append('DYLD_LIBRARY_PATH')
    elif system != 'Windows':
        variables.append('LD_LIBRARY_PATH')

    overlay = {}
    for name in variables:
        current = [p for p in env.get(name, '').split(os.pathsep) if p]
        overlay[name] = os.pathsep.join(current + [d for d in extra if d not in current])
    return overlay


def _spawn_options(policy: SupervisionPolicy) -> Dict[str, Any]:
    if policy is SupervisionPolicy.DETACHED:
        options: Dict[str, Any] = {
            'stdin': subprocess.DEVNULL,
            'stdout': subprocess.DEVNULL,
            'stderr': subprocess.DEVNULL,
        }
        if platform.system() == 'Windows':
            options['creationflags'] = (
                subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
            )
        else:
            options['start_new_session'] = True
        return options

    return {
        'stdin': subprocess.DEVNULL,
        'stdout': asyncio.subprocess.PIPE,
        'stderr': asyncio.subprocess.PIPE,
    }


def format_command(argv: list[str]) -> str:
    """Render argv as one unambiguous, single-line shell string for the log."""
    if platform.system() == 'Windows':
        line = subprocess.list2cmdline(argv)
    else:
        line = shlex.join(argv)
    return line.replace('\r', '\\r').replace('\n', '\\n')


class ProcessLauncher:
    """Validates a LaunchSpec and spawns the process it describes.

    Attached children are tracked until released. Any still alive when the
    interpreter exits get a termination request from an ``atexit`` hook that
    is registered only while something is tracked.
    """

    def __init__(self, log: OutputLogger):
        self.log = log
        self._attached: set[ProcessHandle] = set()

    @property
    def attached(self) -> frozenset[ProcessHandle]:
        return frozenset(self._attached)

    async def launch(self, spec: LaunchSpec) -> ProcessHandle:
        """Spawn the process and return its handle without waiting for it.

        Raises ConfigurationMissing if the executable or one of the
        LaunchSpec's required files does not exist, and SpawnFailure if the
        OS refuses to create the process. Either way a single fatal entry is
        written to the run log.
        """
        executable = spec.executable
        if not executable.is_file():
            error = ConfigurationMissing(executable, 'executable')
            self.log.fatal(str(error))
            raise error

        for required in spec.required_files:
            if not required.is_file():
                error = ConfigurationMissing(required, 'required file')
                self.log.fatal(str(error))
                raise error

        self.log.info(f"Command: {format_command(spec.command())}")
        logger.debug("Environment overlay: %s", spec.env_overlay)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.command(),
                cwd=str(spec.cwd) if spec.cwd else None,
                env=spec.build_env(),
                **_spawn_options(spec.policy),
            )
        except OSError as e:
            error = SpawnFailure(executable, e)
            self.log.fatal(str(error))
            raise error from e

        handle = ProcessHandle(process, spec)
        if spec.policy is SupervisionPolicy.ATTACHED:
            if not self._attached:
                atexit.register(self.terminate_attached)
            self._attached.add(handle)
        self.log.info(f"Process started ({spec.policy.value}), PID: {handle.pid}")
        return handle

    def release(self, handle: ProcessHandle) -> None:
        """Stop tracking a handle for interpreter-exit cleanup."""
        if handle not in self._attached:
            return
        self._attached.discard(handle)
        if not self._attached:
            atexit.unregister(self.terminate_attached)

    def terminate_attached(self) -> None:
        """Send a termination request to every tracked child that is still alive."""
        for handle in list(self._attached):
            if handle.alive:
                try:
                    handle.terminate()
                except ProcessLookupError:
                    pass
                except OSError as e:
                    logger.warning("Failed to terminate process %s: %s", handle.pid, e)
        self._attached.clear()
        atexit.unregister(self.terminate_attached)
