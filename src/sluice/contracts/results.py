"""Node job state and run outcomes.

These types answer: "What did a node job produce?"

- NodeJob is the mutable record of one node's job while it runs.
- NodeSuccess / NodeFailure are the frozen, tagged outcome of a finished job.
- RunResult is the ordered collection of outcomes for one run; its length
  always equals the number of configured nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from sluice.contracts.enums import JobState
from sluice.contracts.errors import NodeBackupError


@dataclass(frozen=True, slots=True)
class ArtifactPaths:
    """Final locations of one node's artifact pair.

    Attributes:
        name: Per-artifact identifier shared by both files
        archive_path: Encrypted archive in the output directory
        metadata_path: Metadata text file in the output directory
    """

    name: str
    archive_path: Path
    metadata_path: Path


@dataclass
class NodeJob:
    """Mutable record of one node's backup job.

    artifact is populated only on success, error only on failure.
    started_at/finished_at bracket the prepare and archive phases.
    """

    index: int
    address: str
    state: JobState = JobState.PENDING
    staging_path: Path | None = None
    artifact: ArtifactPaths | None = None
    error: NodeBackupError | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def advance(self, state: JobState) -> None:
        """Move to the next state.

        Raises:
            RuntimeError: If the job is already in a terminal state.
        """
        if self.state.is_terminal:
            raise RuntimeError(f"Job {self.index} is already {self.state}, cannot move to {state}")
        self.state = state

    def succeed(self, artifact: ArtifactPaths) -> NodeSuccess:
        self.advance(JobState.DONE)
        self.artifact = artifact
        return NodeSuccess(index=self.index, address=self.address, artifact=artifact)

    def fail(self, error: NodeBackupError) -> NodeFailure:
        self.advance(JobState.FAILED)
        self.error = error
        return NodeFailure(index=self.index, address=self.address, error=error)


@dataclass(frozen=True, slots=True)
class NodeSuccess:
    """Node job produced a promoted artifact pair."""

    index: int
    address: str
    artifact: ArtifactPaths
    succeeded: Literal[True] = True


@dataclass(frozen=True, slots=True)
class NodeFailure:
    """Node job failed; no files from this node are visible."""

    index: int
    address: str
    error: NodeBackupError
    succeeded: Literal[False] = False


NodeOutcome = NodeSuccess | NodeFailure
"""Tagged outcome of a node job. Discriminate on ``succeeded``."""


@dataclass(frozen=True)
class RunResult:
    """Ordered outcomes of one run, one per configured node."""

    run_stamp: str
    outcomes: tuple[NodeOutcome, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def ok(self) -> bool:
        """Overall success: at least one node produced an artifact."""
        return self.succeeded > 0

    @property
    def artifacts(self) -> list[ArtifactPaths]:
        return [outcome.artifact for outcome in self.outcomes if isinstance(outcome, NodeSuccess)]

    @property
    def errors(self) -> list[NodeBackupError]:
        return [outcome.error for outcome in self.outcomes if isinstance(outcome, NodeFailure)]
