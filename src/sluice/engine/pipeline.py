"""NodeBackupPipeline: one node's backup stream to one artifact pair.

Stages, in order:

    STREAMING   download the node's tar stream, extracting into staging
    PREPARING   run the external preparation command on the staged tree
    ARCHIVING   re-package the prepared tree as a tar stream
    ENCRYPTING  the tar stream is encrypted as it is written to a temp file
    METADATA_EMITTED  metadata text written to a temp file
    DONE        both temp files renamed to their final names

Any stage may fail; the job then ends FAILED with a stage-specific
NodeBackupError. Stage errors never escape run(). The staging directory is
released and temp files are removed on every exit path, so a failed job
leaves nothing behind in either the staging root or the output directory.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import structlog

from sluice.contracts.enums import JobState
from sluice.contracts.errors import (
    ArchiveError,
    CipherError,
    DownloadError,
    EncryptionError,
    MetadataWriteError,
    NodeBackupError,
    PreparationError,
    PromotionError,
    StagingError,
)
from sluice.contracts.protocols import Archiver, Downloader, EncryptionProvider, Preparer
from sluice.contracts.results import ArtifactPaths, NodeJob, NodeOutcome
from sluice.core.archive import TarExtractWriter
from sluice.core.metadata import MetadataBuilder, read_tool_info
from sluice.core.staging import StagingArea
from sluice.engine.artifacts import ArtifactLayout
from sluice.engine.clock import DEFAULT_CLOCK, Clock

logger = structlog.get_logger(__name__)


class NodeBackupPipeline:
    """Runs the backup stages for one node job at a time.

    Holds no per-job state, so one instance can serve concurrent jobs as
    long as its collaborators are thread-safe.
    """

    def __init__(
        self,
        *,
        output_dir: Path,
        downloader: Downloader,
        preparer: Preparer,
        archiver: Archiver,
        encryption: EncryptionProvider,
        staging: StagingArea,
        metadata_builder: MetadataBuilder,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        self._output_dir = output_dir
        self._downloader = downloader
        self._preparer = preparer
        self._archiver = archiver
        self._encryption = encryption
        self._staging = staging
        self._metadata = metadata_builder
        self._clock = clock

    def run(self, job: NodeJob, name: str) -> NodeOutcome:
        """Run every stage for ``job``, producing artifacts named ``name``.

        Returns:
            NodeSuccess with final artifact paths, or NodeFailure with the
            stage error.
        """
        layout = ArtifactLayout.for_node(self._output_dir, name, self._encryption.suffix)
        with structlog.contextvars.bound_contextvars(node_index=job.index, node_address=job.address):
            logger.info("Node backup started", artifact=name)
            try:
                artifact = self._execute(job, layout)
            except NodeBackupError as error:
                logger.error("Node backup failed", stage=str(error.stage), error=error.detail)
                return job.fail(error)
            finally:
                layout.temp_archive_path.unlink(missing_ok=True)
                layout.temp_metadata_path.unlink(missing_ok=True)

            logger.info(
                "Node backup succeeded",
                archive=str(artifact.archive_path),
                metadata=str(artifact.metadata_path),
            )
            return job.succeed(artifact)

    def _execute(self, job: NodeJob, layout: ArtifactLayout) -> ArtifactPaths:
        try:
            with self._staging.workspace(job.index) as staging_dir:
                job.staging_path = staging_dir
                self._stream(job, staging_dir)
                self._prepare(job, staging_dir)
                self._archive(job, staging_dir, layout.temp_archive_path)
                self._emit_metadata(job, staging_dir, layout)
        except NodeBackupError:
            raise
        except OSError as e:
            # Stages wrap their own failures, so this came from the staging area
            raise StagingError(f"staging directory lifecycle failed: {e}", node_index=job.index, address=job.address) from e

        return self._promote(job, layout)

    def _transition(self, job: NodeJob, state: JobState) -> None:
        job.advance(state)
        logger.debug("Node job state changed", state=str(state))

    def _stream(self, job: NodeJob, staging_dir: Path) -> None:
        self._transition(job, JobState.STREAMING)
        writer = TarExtractWriter(self._archiver, staging_dir)
        try:
            self._downloader.download(job.address, writer)
        except Exception as e:
            raise DownloadError(f"{type(e).__name__}: {e}", node_index=job.index, address=job.address) from e

    def _prepare(self, job: NodeJob, staging_dir: Path) -> None:
        self._transition(job, JobState.PREPARING)
        job.started_at = self._clock.now()
        try:
            command = self._preparer.command(job.index, staging_dir)
            result = command.run()
        except subprocess.TimeoutExpired as e:
            raise PreparationError(
                f"command timed out after {e.timeout}s",
                node_index=job.index,
                address=job.address,
            ) from e
        except Exception as e:
            raise PreparationError(
                f"command could not be run: {type(e).__name__}: {e}",
                node_index=job.index,
                address=job.address,
            ) from e

        if not result.ok:
            raise PreparationError(
                f"{command.argv[0]} exited with status {result.returncode}",
                node_index=job.index,
                address=job.address,
                exit_code=result.returncode,
                stderr=result.stderr,
            )
        logger.debug("Preparation command succeeded", argv=list(command.argv))

    def _archive(self, job: NodeJob, staging_dir: Path, temp_archive: Path) -> None:
        self._transition(job, JobState.ARCHIVING)
        try:
            handle = open(temp_archive, "wb")
        except OSError as e:
            raise ArchiveError(f"cannot open {temp_archive}: {e}", node_index=job.index, address=job.address) from e

        with handle:
            try:
                writer = self._encryption.writer(handle)
            except Exception as e:
                raise EncryptionError(f"{type(e).__name__}: {e}", node_index=job.index, address=job.address) from e

            try:
                self._archiver.create(staging_dir, writer)  # type: ignore[arg-type]
            except CipherError as e:
                raise EncryptionError(str(e), node_index=job.index, address=job.address) from e
            except Exception as e:
                raise ArchiveError(f"{type(e).__name__}: {e}", node_index=job.index, address=job.address) from e
            job.finished_at = self._clock.now()

            self._transition(job, JobState.ENCRYPTING)
            try:
                writer.finalize()
                handle.flush()
                os.fsync(handle.fileno())
            except Exception as e:
                raise EncryptionError(f"{type(e).__name__}: {e}", node_index=job.index, address=job.address) from e

    def _emit_metadata(self, job: NodeJob, staging_dir: Path, layout: ArtifactLayout) -> None:
        try:
            text = self._metadata.build(job, name=layout.name, tool_info=read_tool_info(staging_dir))
            with open(layout.temp_metadata_path, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
        except Exception as e:
            raise MetadataWriteError(f"{type(e).__name__}: {e}", node_index=job.index, address=job.address) from e
        self._transition(job, JobState.METADATA_EMITTED)

    def _promote(self, job: NodeJob, layout: ArtifactLayout) -> ArtifactPaths:
        """Rename both temp files into place; the pair appears together or not at all."""
        for final in (layout.archive_path, layout.metadata_path):
            if final.exists():
                raise PromotionError(f"{final} already exists", node_index=job.index, address=job.address)

        try:
            os.replace(layout.temp_archive_path, layout.archive_path)
        except OSError as e:
            raise PromotionError(f"archive rename failed: {e}", node_index=job.index, address=job.address) from e

        try:
            os.replace(layout.temp_metadata_path, layout.metadata_path)
        except OSError as e:
            layout.archive_path.unlink(missing_ok=True)
            raise PromotionError(f"metadata rename failed: {e}", node_index=job.index, address=job.address) from e

        return layout.final()
