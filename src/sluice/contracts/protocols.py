"""Collaborator protocols consumed by the node backup pipeline.

These protocols define the capabilities the pipeline needs from the outside
world. They're used for type checking and for injecting fakes in tests, not
for runtime enforcement.

Collaborators:
- Downloader: streams a node's raw backup bytes into a StreamedWriter
- Preparer: produces an external command bound to a staging directory
- Archiver: streaming extraction into, and creation from, a directory tree
- EncryptionProvider: wraps an output file in a streaming encrypting writer
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Protocol

if TYPE_CHECKING:
    from sluice.plugins.preparers import PreparedCommand


class StreamedWriter(Protocol):
    """Destination for a backup byte stream.

    Implementations consume the stream incrementally as it arrives.
    """

    def write_stream(self, stream: BinaryIO) -> None:
        """Consume ``stream`` until EOF.

        Raises:
            Exception: If the stream cannot be consumed (corrupt, truncated).
        """
        ...


class Downloader(Protocol):
    """Fetches one node's raw backup stream."""

    def download(self, address: str, writer: StreamedWriter) -> None:
        """Stream the backup for ``address`` into ``writer``.

        Raises:
            Exception: If the stream cannot be established or is broken.
        """
        ...


class Preparer(Protocol):
    """Produces the preparation command for one node's staged backup.

    The pipeline only runs the returned command and inspects its exit status;
    which tool is behind it is the preparer's business.
    """

    def command(self, node_index: int, staging_dir: Path) -> PreparedCommand: ...


class Archiver(Protocol):
    """Streaming archive container operations."""

    def extract(self, stream: BinaryIO, destination: Path) -> None:
        """Extract an incoming archive stream into ``destination``."""
        ...

    def create(self, source: Path, sink: BinaryIO) -> None:
        """Write an archive of the tree under ``source`` into ``sink``."""
        ...


class EncryptedWriter(Protocol):
    """Write-only stream that encrypts as it writes."""

    def write(self, data: bytes) -> int: ...

    def finalize(self) -> None:
        """Flush trailing cipher state (tag) to the underlying sink."""
        ...


class EncryptionProvider(Protocol):
    """Symmetric encryption of archive streams.

    Attributes:
        suffix: File suffix appended to the archive name (e.g. ".enc").
    """

    suffix: str

    def writer(self, sink: BinaryIO) -> EncryptedWriter: ...

    def decrypt(self, source: BinaryIO, sink: BinaryIO) -> None: ...
