"""
Backend process supervisor for the Project Assistant desktop shell.

Verifies the backend's runtime libraries, launches it as a child process,
captures its output into a durable run log and ties its lifetime to the UI
window's.
"""
from .dependencies import DependencyResolver
from .lifecycle import LifecycleCoordinator
from .launcher import ProcessLauncher
from .output_logger import OutputLogger

__all__ = ['DependencyResolver', 'LifecycleCoordinator', 'OutputLogger', 'ProcessLauncher']
