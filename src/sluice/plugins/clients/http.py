"""HTTP downloader for node backup streams.

Each node serves its physical backup as a tar stream over HTTP(S). The
response body is handed to the StreamedWriter as a file object that pulls
chunks on demand, so the backup is never held in memory.

Connection establishment is retried for transport errors. Once the body
starts flowing nothing is retried: a half-consumed stream has already been
partially extracted.
"""

from __future__ import annotations

import ssl

import httpx
import structlog
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from sluice.contracts.protocols import StreamedWriter
from sluice.core.archive import IterStream
from sluice.core.config import DownloadSettings, RetrySettings

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 64 * 1024


class BackupHTTPError(Exception):
    """Node answered the backup request with a non-success status."""

    def __init__(self, url: str, status_code: int, body: str) -> None:
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"GET {url} returned HTTP {status_code}: {body[:200]}")


class HTTPBackupDownloader:
    """Streams node backups over HTTP(S) with basic auth and optional mTLS.

    Example:
        downloader = HTTPBackupDownloader(settings.download, settings.retry)
        downloader.download("10.0.0.5", TarExtractWriter(archiver, staging_dir))
    """

    def __init__(
        self,
        settings: DownloadSettings,
        retry: RetrySettings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the downloader.

        Args:
            settings: Endpoint, auth and TLS configuration
            retry: Connection retry policy (default: single attempt)
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self._settings = settings
        self._retry = retry
        self._client = httpx.Client(
            auth=self._auth(),
            verify=self._verify(),
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    def _auth(self) -> httpx.BasicAuth | None:
        if self._settings.username is None:
            return None
        password = self._settings.password.get_secret_value() if self._settings.password else ""
        return httpx.BasicAuth(self._settings.username, password)

    def _verify(self) -> ssl.SSLContext | bool:
        if not self._settings.verify_tls:
            return False
        if self._settings.ca_cert_path is None and self._settings.client_cert_path is None:
            return True
        cafile = str(self._settings.ca_cert_path) if self._settings.ca_cert_path is not None else None
        context = ssl.create_default_context(cafile=cafile)
        if self._settings.client_cert_path is not None and self._settings.client_key_path is not None:
            context.load_cert_chain(str(self._settings.client_cert_path), str(self._settings.client_key_path))
        return context

    def url_for(self, address: str) -> str:
        return f"{self._settings.scheme}://{address}:{self._settings.port}{self._settings.path}"

    def download(self, address: str, writer: StreamedWriter) -> None:
        """Stream the backup for ``address`` into ``writer``.

        Raises:
            httpx.TransportError: If the connection could not be established
                within the configured attempts, or the stream broke mid-transfer.
            BackupHTTPError: If the node answered with a non-2xx status.
        """
        url = self.url_for(address)
        response = self._open(url)
        try:
            if not response.is_success:
                response.read()
                raise BackupHTTPError(url, response.status_code, response.text)
            logger.info("Backup stream opened", url=url, status_code=response.status_code)
            writer.write_stream(IterStream(response.iter_bytes(CHUNK_SIZE)))
        finally:
            response.close()

    def _open(self, url: str) -> httpx.Response:
        """Send the backup request, retrying transport errors until headers arrive."""
        request = self._client.build_request("GET", url)
        if self._retry is None:
            return self._client.send(request, stream=True)

        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Backup connection failed, retrying",
                url=url,
                attempt=retry_state.attempt_number,
                error=str(error),
            )

        for attempt in Retrying(
            stop=stop_after_attempt(self._retry.max_attempts),
            wait=wait_exponential(
                multiplier=self._retry.initial_delay_seconds,
                max=self._retry.max_delay_seconds,
                exp_base=self._retry.exponential_base,
            ),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return self._client.send(request, stream=True)
        raise RuntimeError("retry loop exited without a response")  # pragma: no cover

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HTTPBackupDownloader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
