"""Runtime dependency resolution.

Makes sure the shared libraries the backend needs sit in its primary
directory, copying them from a fallback directory when they are only found
there. A missing library never aborts startup: the backend may still find it
through its own search path, so the result is reported as degraded instead.
"""

import logging
import os
import shutil
from pathlib import Path

from supervisor.models import DependencyState, ResolutionResult, RuntimeDependencySet
from supervisor.output_logger import OutputLogger

logger = logging.getLogger(__name__)

SHARED_LIBRARY_SUFFIXES = (".dll", ".so", ".dylib")


class DependencyResolver:
    """Verifies and repairs the presence of required shared-library files."""

    def __init__(self, log: OutputLogger):
        self.log = log

    def resolve(self, deps: RuntimeDependencySet) -> ResolutionResult:
        result = ResolutionResult()

        for fallback in deps.fallback_dirs:
            self._inventory(fallback)

        for name in deps.filenames:
            result.statuses[name] = self._resolve_one(name, deps.primary_dir, deps.fallback_dirs)

        if result.copied:
            self.log.info(f"Copied from fallback: {', '.join(result.copied)}")
        if result.missing:
            self.log.warning(f"Missing runtime libraries: {', '.join(result.missing)}")
        else:
            self.log.info(f"All {len(deps.filenames)} runtime libraries present")
        return result

    def _resolve_one(self, name: str, primary_dir: Path, fallback_dirs: list[Path]) -> DependencyState:
        target = primary_dir / name
        if target.exists():
            return DependencyState.PRESENT

        for fallback in fallback_dirs:
            source = fallback / name
            if not source.is_file():
                continue
            # Copy under a temporary name so an interrupted copy never looks present.
            partial = target.with_name(f".{name}.partial")
            try:
                primary_dir.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, partial)
                if target.exists():
                    partial.unlink()
                    return DependencyState.PRESENT
                os.replace(partial, target)
            except OSError as e:
                partial.unlink(missing_ok=True)
                self.log.error(f"Failed to copy {name} from {fallback}: {e}")
                continue
            logger.debug("Copied %s -> %s", source, target)
            return DependencyState.COPIED_FROM_FALLBACK

        return DependencyState.MISSING

    def _inventory(self, directory: Path) -> None:
        if not directory.is_dir():
            self.log.warning(f"Fallback directory does not exist: {directory}")
            return
        try:
            libraries = [
                p.name for p in directory.iterdir()
                if p.is_file() and p.suffix.lower() in SHARED_LIBRARY_SUFFIXES
            ]
        except OSError as e:
            self.log.error(f"Failed to read {directory}: {e}")
            return
        self.log.info(f"Found {len(libraries)} shared libraries in {directory}")
