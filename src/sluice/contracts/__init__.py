"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
sluice.core.config.
"""

from sluice.contracts.enums import JobState, Stage
from sluice.contracts.errors import (
    AggregateError,
    ArchiveError,
    CipherError,
    DownloadError,
    EncryptionError,
    MetadataWriteError,
    NodeBackupError,
    PreparationError,
    PromotionError,
    SluiceError,
    StagingError,
)
from sluice.contracts.results import (
    ArtifactPaths,
    NodeFailure,
    NodeJob,
    NodeOutcome,
    NodeSuccess,
    RunResult,
)

__all__ = [
    "AggregateError",
    "ArchiveError",
    "ArtifactPaths",
    "CipherError",
    "DownloadError",
    "EncryptionError",
    "JobState",
    "MetadataWriteError",
    "NodeBackupError",
    "NodeFailure",
    "NodeJob",
    "NodeOutcome",
    "NodeSuccess",
    "PreparationError",
    "PromotionError",
    "RunResult",
    "SluiceError",
    "Stage",
    "StagingError",
]
