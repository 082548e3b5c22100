# src/sluice/plugins/clients/__init__.py
"""Network clients that fetch raw backup streams from cluster nodes.

Example:
    from sluice.plugins.clients import HTTPBackupDownloader

    with HTTPBackupDownloader(settings.download) as downloader:
        downloader.download("10.0.0.5", writer)
"""

from sluice.plugins.clients.http import BackupHTTPError, HTTPBackupDownloader

__all__ = ["BackupHTTPError", "HTTPBackupDownloader"]
