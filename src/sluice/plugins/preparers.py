"""Preparation commands run against staged backups.

A raw physical backup is not restorable until the preparation tool has
applied its logs. The pipeline only runs the command a preparer hands back
and inspects the exit status.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from sluice.core.config import PrepareSettings

logger = structlog.get_logger(__name__)

# Bytes of stderr kept on a failed result
STDERR_TAIL = 4096


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Exit status and captured output of a finished command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class PreparedCommand:
    """An external command bound to a staging directory, ready to run.

    Attributes:
        argv: Program and arguments
        cwd: Working directory (None = inherit)
        timeout_seconds: Kill the process after this long (None = no limit)
        env: Extra environment variables layered over the inherited ones
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    timeout_seconds: float | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    def run(self) -> CommandResult:
        """Run synchronously, capturing output.

        Raises:
            subprocess.TimeoutExpired: If the timeout elapsed (process killed).
            OSError: If the program cannot be started.
        """
        env = {**os.environ, **self.env} if self.env else None
        completed = subprocess.run(
            self.argv,
            cwd=self.cwd,
            env=env,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=self.timeout_seconds,
            check=False,
        )
        return CommandResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr[-STDERR_TAIL:],
        )


class XtraBackupPreparer:
    """Builds ``xtrabackup --prepare --target-dir=<staging>`` commands.

    The command and flag come from PrepareSettings, so any tool with the
    same "prepare this directory" shape can be configured.
    """

    def __init__(self, settings: PrepareSettings) -> None:
        self._settings = settings

    def command(self, node_index: int, staging_dir: Path) -> PreparedCommand:
        argv = (*self._settings.command, f"{self._settings.target_dir_flag}={staging_dir}")
        logger.debug("Preparation command built", node_index=node_index, argv=list(argv))
        return PreparedCommand(
            argv=argv,
            cwd=staging_dir,
            timeout_seconds=self._settings.timeout_seconds,
        )
