"""Companion metadata for backup artifacts.

Each artifact gets a plain UTF-8 text file of ``key = value`` lines: the
fixed keys below first, then one line per configured custom field.
Tool-related values come from the preparation tool's info file in the
staging directory; timestamps come from the node job.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from sluice.contracts.results import NodeJob

FIXED_KEYS: tuple[str, ...] = (
    "uuid",
    "name",
    "tool_name",
    "tool_command",
    "tool_version",
    "ibbackup_version",
    "server_version",
    "start_time",
    "end_time",
)

# Fixed keys whose values are read from the preparation tool's info file.
TOOL_INFO_KEYS: tuple[str, ...] = (
    "tool_name",
    "tool_command",
    "tool_version",
    "ibbackup_version",
    "server_version",
)

TOOL_INFO_FILENAME = "xtrabackup_info"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def read_tool_info(staging_dir: Path) -> dict[str, str]:
    """Parse the preparation tool's ``key = value`` info file.

    Returns an empty dict when the file is absent. Lines without ``=`` are
    skipped; the first ``=`` splits key from value.
    """
    info_path = staging_dir / TOOL_INFO_FILENAME
    if not info_path.is_file():
        return {}

    info: dict[str, str] = {}
    for line in info_path.read_text(encoding="utf-8", errors="replace").splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        info[key.strip()] = value.strip()
    return info


def format_timestamp(value: datetime | None) -> str:
    return value.strftime(TIMESTAMP_FORMAT) if value is not None else ""


def format_line(key: str, value: str) -> str:
    return f"{key} = {value}"


class MetadataBuilder:
    """Builds the metadata text for a completed node job.

    Example:
        builder = MetadataBuilder({"compressed": "Y", "encrypted": "Y"})
        text = builder.build(job, name="mysql-backup-2024-01-01_00-00-00-0", tool_info={})
    """

    def __init__(
        self,
        custom_fields: Mapping[str, str] | None = None,
        *,
        uuid_factory: Callable[[], object] = uuid4,
    ) -> None:
        self._custom_fields = dict(custom_fields or {})
        self._uuid_factory = uuid_factory

    def values(self, job: NodeJob, *, name: str, tool_info: Mapping[str, str]) -> dict[str, str]:
        """Ordered mapping of every metadata key to its value."""
        values = {
            "uuid": str(self._uuid_factory()),
            "name": name,
        }
        for key in TOOL_INFO_KEYS:
            values[key] = tool_info.get(key, "")
        values["start_time"] = format_timestamp(job.started_at)
        values["end_time"] = format_timestamp(job.finished_at)
        values.update(self._custom_fields)
        return values

    def build(self, job: NodeJob, *, name: str, tool_info: Mapping[str, str] | None = None) -> str:
        """Serialize metadata to text, one ``key = value`` per line.

        Args:
            job: Node job with started_at/finished_at recorded
            name: Artifact identifier shared by the archive and metadata file
            tool_info: Parsed tool info; read from job.staging_path when None
        """
        if tool_info is None:
            tool_info = read_tool_info(job.staging_path) if job.staging_path is not None else {}
        lines = [format_line(key, value) for key, value in self.values(job, name=name, tool_info=tool_info).items()]
        return "\n".join(lines) + "\n"
