"""Supervisor-specific exceptions for the Project Assistant launcher."""


class SupervisorError(Exception):
    """Base exception for supervisor operations."""

    pass


class ConfigurationMissing(SupervisorError):
    """Raised when a required file or path is absent.

    Fatal to the step that needed it; the supervisor itself keeps running
    long enough to record the failure and stop cleanly.
    """

    def __init__(self, path, what: str = "file"):
        super().__init__(f"{what} not found at {path}")
        self.path = path
        self.what = what


class SpawnFailure(SupervisorError):
    """Raised when the OS refuses to create the backend process."""

    def __init__(self, executable, cause: OSError):
        super().__init__(f"failed to spawn {executable}: {cause}")
        self.executable = executable
        self.cause = cause


class RuntimeIOFailure(SupervisorError):
    """A log write failed. Never propagated past the logger."""

    pass


class UnexpectedExit(SupervisorError):
    """The backend terminated while the supervisor considered it running."""

    def __init__(self, pid: int, exit_code: int | None):
        super().__init__(f"backend process {pid} exited unexpectedly with code {exit_code}")
        self.pid = pid
        self.exit_code = exit_code


class InvalidTransition(SupervisorError):
    """Raised when the lifecycle state machine is driven out of order."""

    def __init__(self, current, target):
        super().__init__(f"Invalid state transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target
