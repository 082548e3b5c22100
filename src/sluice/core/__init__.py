# src/sluice/core/__init__.py
"""Core infrastructure: Configuration, Logging, Staging, Metadata, Archive, Crypto."""

from sluice.core.archive import IterStream, TarArchiver, TarExtractWriter
from sluice.core.config import (
    ConcurrencySettings,
    DownloadSettings,
    PrepareSettings,
    RetrySettings,
    SluiceSettings,
    describe_settings,
    load_settings,
)
from sluice.core.crypto import AesGcmEncryption, PlaintextEncryption
from sluice.core.metadata import FIXED_KEYS, MetadataBuilder, read_tool_info
from sluice.core.staging import StagingArea

__all__ = [
    "FIXED_KEYS",
    "AesGcmEncryption",
    "ConcurrencySettings",
    "DownloadSettings",
    "IterStream",
    "MetadataBuilder",
    "PlaintextEncryption",
    "PrepareSettings",
    "RetrySettings",
    "SluiceSettings",
    "StagingArea",
    "TarArchiver",
    "TarExtractWriter",
    "describe_settings",
    "load_settings",
    "read_tool_info",
]
