"""Scoped temporary files for pipeline runs.

Every pipeline invocation allocates its temp files through a ResourceScope
and the scope releases all of them on exit, whether the run succeeded or
failed part way through.
"""
import enum
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from videocut.config import settings

logger = logging.getLogger(__name__)


class ResourcePurpose(str, enum.Enum):
    """What a temp file is used for."""
    INPUT = "input"
    OUTPUT = "output"
    OVERLAY = "overlay"


class ResourceCleanupWarning(UserWarning):
    """A temp file could not be removed. Logged, never raised."""
    pass


@dataclass(frozen=True)
class TempResource:
    """A filesystem artifact owned by one pipeline run."""
    path: Path
    purpose: ResourcePurpose


class ResourceLifecycleManager:
    """Allocates unique temp paths under a scratch directory and deletes them."""

    def __init__(self, scratch_dir: Optional[Path] = None):
        self.scratch_dir = Path(scratch_dir or settings.scratch_dir)
        self._live: set[Path] = set()

    @property
    def live(self) -> frozenset:
        """Paths allocated and not yet released."""
        return frozenset(self._live)

    def allocate(
        self,
        purpose: ResourcePurpose,
        extension: str = "mp4",
        namespace: Optional[str] = None,
    ) -> TempResource:
        """
        Reserve a unique path. The file itself is not created.

        Args:
            purpose: Input, output or overlay
            extension: File extension without the dot
            namespace: Optional subdirectory, one per job

        Returns:
            TempResource for the new path
        """
        directory = self.scratch_dir / namespace if namespace else self.scratch_dir
        directory.mkdir(parents=True, exist_ok=True)

        extension = extension.lstrip(".") or "bin"
        filename = f"{purpose.value}_{int(time.time() * 1000)}_{uuid.uuid4().hex}.{extension}"
        path = directory / filename

        self._live.add(path)
        logger.debug(f"Allocated {purpose.value} resource {path}")
        return TempResource(path=path, purpose=purpose)

    def release(self, resource: TempResource) -> bool:
        """
        Delete a resource's file.

        Idempotent: returns False if the resource was already released.
        A file that is already gone is fine; any other failure is logged
        as a ResourceCleanupWarning and swallowed.
        """
        if resource.path not in self._live:
            return False
        self._live.discard(resource.path)

        try:
            resource.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            warning = ResourceCleanupWarning(f"Failed to clean up temp file {resource.path}: {e}")
            logger.warning(str(warning))
        else:
            logger.debug(f"Released {resource.purpose.value} resource {resource.path}")
        return True

    @contextmanager
    def scope(self, namespace: Optional[str] = None) -> Iterator["ResourceScope"]:
        """Yield a scope whose resources are all released on exit."""
        scope = ResourceScope(self, namespace)
        try:
            yield scope
        finally:
            scope.release_all()


class ResourceScope:
    """Resources acquired by a single pipeline run."""

    def __init__(self, manager: ResourceLifecycleManager, namespace: Optional[str] = None):
        self.manager = manager
        self.namespace = namespace
        self.resources: list[TempResource] = []

    def allocate(self, purpose: ResourcePurpose, extension: str = "mp4") -> TempResource:
        resource = self.manager.allocate(purpose, extension, self.namespace)
        self.resources.append(resource)
        return resource

    def release_all(self):
        while self.resources:
            self.manager.release(self.resources.pop())

        if self.namespace:
            directory = self.manager.scratch_dir / self.namespace
            try:
                directory.rmdir()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(str(ResourceCleanupWarning(f"Failed to remove scratch directory {directory}: {e}")))
