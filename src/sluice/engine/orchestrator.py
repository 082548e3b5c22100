"""Orchestrator: runs one node backup pipeline per configured node.

Aggregation policy:
- Every configured node is attempted exactly once, whatever happened to
  earlier nodes.
- The run succeeds if at least one node produced an artifact pair. Failed
  nodes are still logged at error level.
- If every node failed, AggregateError is raised carrying one sub-error per
  node, in configured order.

Nodes run one at a time in configured order by default. With
concurrency.max_workers > 1 they run on a thread pool; outcomes are stored
by node index so the result order never depends on completion order.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed

import structlog

from sluice.contracts.errors import AggregateError
from sluice.contracts.protocols import Archiver, Downloader, EncryptionProvider, Preparer
from sluice.contracts.results import NodeJob, NodeOutcome, RunResult
from sluice.core.archive import TarArchiver
from sluice.core.config import SluiceSettings
from sluice.core.crypto import AesGcmEncryption, PlaintextEncryption
from sluice.core.metadata import MetadataBuilder
from sluice.core.staging import StagingArea
from sluice.engine.artifacts import artifact_name, run_stamp
from sluice.engine.clock import DEFAULT_CLOCK, Clock
from sluice.engine.pipeline import NodeBackupPipeline

logger = structlog.get_logger(__name__)


def encryption_from_settings(settings: SluiceSettings) -> EncryptionProvider:
    if not settings.encryption_enabled:
        return PlaintextEncryption()
    if settings.symmetric_key is None:
        raise ValueError("symmetric_key is required when encryption is enabled")
    return AesGcmEncryption(settings.symmetric_key)


class Orchestrator:
    """Backs up every configured node and aggregates the outcomes.

    Example:
        orchestrator = Orchestrator(settings, downloader=downloader, preparer=preparer)
        try:
            result = orchestrator.execute()
        except AggregateError as e:
            ...  # every node failed; e.errors has one entry per node
    """

    def __init__(
        self,
        settings: SluiceSettings,
        *,
        downloader: Downloader,
        preparer: Preparer,
        archiver: Archiver | None = None,
        encryption: EncryptionProvider | None = None,
        staging: StagingArea | None = None,
        metadata_builder: MetadataBuilder | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self.staging = staging or StagingArea(settings.staging_root)
        self._pipeline = NodeBackupPipeline(
            output_dir=settings.output_dir,
            downloader=downloader,
            preparer=preparer,
            archiver=archiver or TarArchiver(),
            encryption=encryption or encryption_from_settings(settings),
            staging=self.staging,
            metadata_builder=metadata_builder or MetadataBuilder(settings.metadata_fields),
            clock=clock,
        )

    def execute(self) -> RunResult:
        """Run every node job and apply the aggregation policy.

        Returns:
            RunResult with one outcome per node, in configured order.

        Raises:
            AggregateError: If no node produced an artifact.
        """
        self._settings.output_dir.mkdir(parents=True, exist_ok=True)
        stamp = run_stamp(self._clock.now())
        jobs = [NodeJob(index=index, address=address) for index, address in enumerate(self._settings.nodes)]
        max_workers = min(self._settings.concurrency.max_workers, len(jobs))

        logger.info("Backup run started", nodes=len(jobs), run_stamp=stamp, max_workers=max_workers)

        if max_workers == 1:
            outcomes = [self._run_job(job, stamp) for job in jobs]
        else:
            outcomes = self._run_concurrently(jobs, stamp, max_workers)

        result = RunResult(run_stamp=stamp, outcomes=tuple(outcomes))
        for error in result.errors:
            logger.error("Node backup not produced", node_index=error.node_index, node_address=error.address, error=str(error))

        if not result.ok:
            logger.error("All node backups failed", failed=result.failed)
            raise AggregateError(tuple(result.errors), result)

        logger.info("Backup run completed", succeeded=result.succeeded, failed=result.failed)
        return result

    def _run_job(self, job: NodeJob, stamp: str) -> NodeOutcome:
        return self._pipeline.run(job, artifact_name(self._settings.artifact_prefix, stamp, job.index))

    def _run_concurrently(self, jobs: list[NodeJob], stamp: str, max_workers: int) -> list[NodeOutcome]:
        slots: list[NodeOutcome | None] = [None] * len(jobs)
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sluice-node") as pool:
            futures = {pool.submit(self._run_job, job, stamp): job.index for job in jobs}
            for future in as_completed(futures):
                slots[futures[future]] = future.result()

        outcomes = [outcome for outcome in slots if outcome is not None]
        if len(outcomes) != len(jobs):
            raise RuntimeError(f"Lost node outcomes: expected {len(jobs)}, got {len(outcomes)}")
        return outcomes
