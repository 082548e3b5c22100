# tests/conftest.py
"""Shared test fixtures and helpers.

Collaborator fakes:
- FakeDownloader: streams an in-memory tar backup, or fails for chosen nodes
- FakePreparer: builds real subprocess commands with a chosen exit status
  per call, and records every call

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import io
import os
import sys
import tarfile
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

TOOL_INFO_TEXT = """uuid = 5d3c0c1e-0000-11ef-8000-0242ac120002
tool_name = xtrabackup
tool_command = --backup --stream=xbstream --target-dir=/tmp/backup
tool_version = 8.0.35-30
ibbackup_version = 8.0.35-30
server_version = 8.0.35-27-log
"""

BACKUP_FILES: dict[str, bytes] = {
    "ibdata1": b"\x00" * 4096,
    "mysql/user.ibd": b"user table pages",
    "shop/orders.ibd": b"orders table pages" * 100,
    "xtrabackup_info": TOOL_INFO_TEXT.encode("utf-8"),
}


def build_tar(files: dict[str, bytes]) -> bytes:
    """Build an uncompressed tar archive in memory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeDownloader:
    """Downloader double serving the same tar payload for every node.

    Addresses in ``failing`` raise ConnectionError before any byte is
    written, like a node that refuses the connection.
    """

    def __init__(self, payload: bytes, *, failing: set[str] | None = None) -> None:
        self.payload = payload
        self.failing = failing or set()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def download(self, address: str, writer: Any) -> None:
        with self._lock:
            self.calls.append(address)
        if address in self.failing:
            raise ConnectionError(f"connection refused by {address}")
        writer.write_stream(io.BytesIO(self.payload))


class FakePreparer:
    """Preparer double running a tiny Python subprocess per node.

    The command writes a ``prepared`` marker into the staging directory and
    exits with the status chosen for that call (``returns`` by default,
    overridden per call number with ``returns_on_call``).
    """

    def __init__(self, returns: int = 0) -> None:
        self.returns = returns
        self.returns_on_call: dict[int, int] = {}
        self.calls: list[tuple[int, Path]] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def command(self, node_index: int, staging_dir: Path) -> Any:
        from sluice.plugins.preparers import PreparedCommand

        with self._lock:
            call_number = len(self.calls)
            self.calls.append((node_index, staging_dir))
        status = self.returns_on_call.get(call_number, self.returns)
        script = (
            "import sys\n"
            "open('prepared', 'w').write('ok')\n"
            f"sys.stderr.write('prepare exit {status}')\n"
            f"sys.exit({status})\n"
        )
        return PreparedCommand(argv=(sys.executable, "-c", script), cwd=staging_dir)


@pytest.fixture
def backup_payload() -> bytes:
    """Raw tar stream as served by a node."""
    return build_tar(BACKUP_FILES)


@pytest.fixture
def downloader(backup_payload: bytes) -> FakeDownloader:
    return FakeDownloader(backup_payload)


@pytest.fixture
def preparer() -> FakePreparer:
    return FakePreparer()


@pytest.fixture
def fake_downloader_cls() -> type[FakeDownloader]:
    return FakeDownloader


@pytest.fixture
def fake_preparer_cls() -> type[FakePreparer]:
    return FakePreparer


@pytest.fixture
def build_tar_bytes() -> Callable[[dict[str, bytes]], bytes]:
    return build_tar


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "out"
    path.mkdir()
    return path


@pytest.fixture
def staging_root(tmp_path: Path) -> Path:
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(output_dir: Path, staging_root: Path) -> Callable[..., Any]:
    """Factory for SluiceSettings with test-friendly defaults."""

    def _make(**overrides: Any) -> Any:
        from sluice.core.config import SluiceSettings

        values: dict[str, Any] = {
            "nodes": ["node-a", "node-b", "node-c"],
            "output_dir": output_dir,
            "staging_root": staging_root,
            "symmetric_key": "correct horse battery staple",
            "metadata_fields": {"compressed": "Y", "encrypted": "Y"},
        }
        values.update(overrides)
        return SluiceSettings(**values)

    return _make


@pytest.fixture(autouse=True)
def _clear_log_context() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def clean_sluice_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove SLUICE_* variables so settings come from the file under test."""
    for name in list(os.environ):
        if name.startswith("SLUICE_"):
            monkeypatch.delenv(name, raising=False)


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
