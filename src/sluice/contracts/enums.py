"""Status codes and stage names used across subsystem boundaries."""

from enum import StrEnum


class JobState(StrEnum):
    """Lifecycle state of a single node backup job.

    DONE and FAILED are terminal. Any non-terminal state may move to FAILED.
    """

    PENDING = "pending"
    STREAMING = "streaming"
    PREPARING = "preparing"
    ARCHIVING = "archiving"
    ENCRYPTING = "encrypting"
    METADATA_EMITTED = "metadata_emitted"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED)


class Stage(StrEnum):
    """Pipeline stage a NodeBackupError is attributed to."""

    STAGING = "staging"
    DOWNLOAD = "download"
    PREPARATION = "preparation"
    ARCHIVE = "archive"
    ENCRYPTION = "encryption"
    METADATA = "metadata"
    PROMOTION = "promotion"
