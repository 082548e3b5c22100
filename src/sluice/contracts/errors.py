"""Error taxonomy for node backup jobs and run aggregation.

Every NodeBackupError is attributed to exactly one node job and one stage.
The pipeline never lets a stage error escape a job; it is recorded on the
job's outcome instead. AggregateError is raised by the orchestrator only
when no node produced an artifact.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

from sluice.contracts.enums import Stage

if TYPE_CHECKING:
    from sluice.contracts.results import RunResult


class SluiceError(Exception):
    """Root of all errors raised by sluice."""


class NodeBackupError(SluiceError):
    """Failure of one node's backup job at a specific stage.

    Attributes:
        stage: Pipeline stage the failure belongs to (class-level).
        node_index: Position of the node in the configured node list.
        address: Configured node address.
        detail: Human-readable cause, without the node prefix.
    """

    stage: Stage

    def __init__(self, detail: str, *, node_index: int, address: str) -> None:
        self.detail = detail
        self.node_index = node_index
        self.address = address
        super().__init__(f"node {node_index} ({address}): {self.stage} failed: {detail}")


class StagingError(NodeBackupError):
    """Staging directory could not be created."""

    stage = Stage.STAGING


class DownloadError(NodeBackupError):
    """Backup stream could not be fetched or extracted."""

    stage = Stage.DOWNLOAD


class PreparationError(NodeBackupError):
    """External preparation command exited non-zero, timed out, or could not start."""

    stage = Stage.PREPARATION

    def __init__(
        self,
        detail: str,
        *,
        node_index: int,
        address: str,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(detail, node_index=node_index, address=address)


class ArchiveError(NodeBackupError):
    """Prepared tree could not be packaged into an archive stream."""

    stage = Stage.ARCHIVE


class EncryptionError(NodeBackupError):
    """Archive stream could not be encrypted (or decrypted for verification)."""

    stage = Stage.ENCRYPTION


class MetadataWriteError(NodeBackupError):
    """Companion metadata file could not be built or written."""

    stage = Stage.METADATA


class PromotionError(NodeBackupError):
    """Temporary artifact files could not be renamed into their final names."""

    stage = Stage.PROMOTION


class CipherError(SluiceError):
    """Low-level encryption/decryption failure not yet attributed to a node.

    Raised by the encryption provider; the pipeline converts it to
    EncryptionError with node attribution.
    """


class AggregateError(SluiceError):
    """Every configured node failed.

    Carries exactly one sub-error per failed node, in configured node order,
    preserving the original exception objects.
    """

    def __init__(self, errors: tuple[NodeBackupError, ...], result: RunResult) -> None:
        self.errors = errors
        self.result = result
        lines = "\n".join(f"  * {error}" for error in errors)
        super().__init__(f"multiple errors: {len(errors)} node backup(s) failed\n{lines}")

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self) -> Iterator[NodeBackupError]:
        return iter(self.errors)
