"""Per-job staging directories.

Each node job gets a private, uniquely named directory under the staging
root. ``workspace()`` is the only form the pipeline uses: the directory is
released on every exit path of the job.
"""

from __future__ import annotations

import shutil
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


class StagingArea:
    """Creates and removes staging directories under a root.

    Thread-safe: names come from tempfile.mkdtemp (atomic, unique per call)
    and the live-directory set is guarded by a lock.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._active: set[Path] = set()
        self._lock = threading.Lock()

    def acquire(self, job_index: int) -> Path:
        """Create a fresh, empty directory for a job.

        Raises:
            OSError: If the directory cannot be created.
        """
        path = Path(tempfile.mkdtemp(prefix=f"node-{job_index}-", dir=self.root))
        with self._lock:
            self._active.add(path)
        logger.debug("Staging directory acquired", node_index=job_index, staging_path=str(path))
        return path

    def release(self, path: Path) -> None:
        """Remove a staging directory and everything under it.

        Raises:
            ValueError: If path is not directly under the staging root.
        """
        if path.parent.resolve() != self.root.resolve():
            raise ValueError(f"Refusing to release {path}: not a staging directory under {self.root}")
        with self._lock:
            self._active.discard(path)
        if not path.exists():
            logger.debug("Staging directory already gone", staging_path=str(path))
            return
        shutil.rmtree(path)
        logger.debug("Staging directory released", staging_path=str(path))

    @contextmanager
    def workspace(self, job_index: int) -> Iterator[Path]:
        """Scoped acquire/release of a staging directory."""
        path = self.acquire(job_index)
        try:
            yield path
        finally:
            self.release(path)

    def active(self) -> frozenset[Path]:
        """Directories acquired and not yet released."""
        with self._lock:
            return frozenset(self._active)
