# src/sluice/engine/artifacts.py
"""Artifact naming for the output directory.

Final names:    <prefix>-<run stamp>-<node index>.tar[.enc]
                <prefix>-<run stamp>-<node index>.txt
Temporary names: .<final name>.part

Temporary names start with a dot and end in .part, so neither the archive
glob nor the metadata glob ever matches a file still being written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sluice.contracts.results import ArtifactPaths

RUN_STAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
ARCHIVE_SUFFIX = ".tar"
METADATA_SUFFIX = ".txt"
TEMP_SUFFIX = ".part"


def run_stamp(moment: datetime) -> str:
    return moment.strftime(RUN_STAMP_FORMAT)


def artifact_name(prefix: str, stamp: str, node_index: int) -> str:
    return f"{prefix}-{stamp}-{node_index}"


def archive_glob(prefix: str, encryption_suffix: str) -> str:
    return f"{prefix}-*{ARCHIVE_SUFFIX}{encryption_suffix}"


def metadata_glob(prefix: str) -> str:
    return f"{prefix}-*{METADATA_SUFFIX}"


@dataclass(frozen=True, slots=True)
class ArtifactLayout:
    """Final and temporary paths of one node's artifact pair."""

    name: str
    archive_path: Path
    metadata_path: Path
    temp_archive_path: Path
    temp_metadata_path: Path

    @classmethod
    def for_node(cls, output_dir: Path, name: str, encryption_suffix: str) -> ArtifactLayout:
        archive = f"{name}{ARCHIVE_SUFFIX}{encryption_suffix}"
        metadata = f"{name}{METADATA_SUFFIX}"
        return cls(
            name=name,
            archive_path=output_dir / archive,
            metadata_path=output_dir / metadata,
            temp_archive_path=output_dir / f".{archive}{TEMP_SUFFIX}",
            temp_metadata_path=output_dir / f".{metadata}{TEMP_SUFFIX}",
        )

    def final(self) -> ArtifactPaths:
        return ArtifactPaths(name=self.name, archive_path=self.archive_path, metadata_path=self.metadata_path)
