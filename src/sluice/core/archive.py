"""Streaming tar archive operations.

Both directions work on non-seekable streams (tarfile's ``|`` modes), so a
backup is extracted as it arrives off the wire and re-packaged straight into
the encryption writer without an intermediate archive file.
"""

from __future__ import annotations

import io
import tarfile
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import BinaryIO

from sluice.contracts.protocols import Archiver


class IterStream(io.RawIOBase):
    """Read-only file object over an iterator of byte chunks.

    Lets iterator-based sources (HTTP response bodies) feed consumers that
    want ``read()``, pulling one chunk at a time.
    """

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks: Iterator[bytes] = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


class TarArchiver:
    """tar container via the stdlib tarfile module.

    Extraction uses the "data" filter: absolute paths, ``..`` components and
    links pointing outside the destination are rejected.
    """

    def extract(self, stream: BinaryIO, destination: Path) -> None:
        with tarfile.open(fileobj=stream, mode="r|*") as archive:
            archive.extractall(destination, filter="data")

    def create(self, source: Path, sink: BinaryIO) -> None:
        with tarfile.open(fileobj=sink, mode="w|") as archive:
            for child in sorted(source.iterdir()):
                archive.add(child, arcname=child.name)


class TarExtractWriter:
    """StreamedWriter that extracts an incoming archive into a directory."""

    def __init__(self, archiver: Archiver, destination: Path) -> None:
        self._archiver = archiver
        self.destination = destination

    def write_stream(self, stream: BinaryIO) -> None:
        self._archiver.extract(stream, self.destination)
