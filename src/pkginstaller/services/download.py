"""Bundle download service with concurrent progress reporting."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from pkginstaller.config import Settings
from pkginstaller.errors import (
    ChecksumMismatchError,
    DownloadError,
    OperationCancelledError,
    PersistenceError,
)
from pkginstaller.models.status import ConditionType
from pkginstaller.services.conditions import ConditionStore
from pkginstaller.utils.progress import periodic_task
from pkginstaller.utils.verification import bundle_matches, verify_bundle

# Reported progress lags the raw transfer percentage by 5%
PROGRESS_SKEW = 0.05


class TransferProgress:
    """Byte counter shared between a transfer and its progress reporter."""

    def __init__(self):
        self.total = 0
        self.received = 0

    def start(self, total: int) -> None:
        self.total = total
        self.received = 0

    def advance(self, size: int) -> None:
        self.received += size

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return min(100, int(self.received * 100 / self.total))


def skewed_progress(percent: int) -> int:
    return percent - int(percent * PROGRESS_SKEW)


class DownloadService:
    """Fetches the installation bundle and verifies its MD5."""

    def __init__(self, settings: Settings):
        """Initialize download service.

        Args:
            settings: Installer settings (report interval, attempts)
        """
        self.logger = logging.getLogger("pkginstaller.download")
        self.report_interval = settings.download_report_interval
        self.attempts = settings.download_attempts
        self.chunk_size = 64 * 1024  # 64KB chunks for progress granularity
        self.timeout = 30.0

    async def download_bundle(
        self,
        url: Optional[str],
        target_path: Path,
        expected_md5: str,
        conditions: Optional[ConditionStore] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Path:
        """Make sure a verified bundle exists at ``target_path``.

        An existing file with the expected checksum is accepted without any
        transfer. Otherwise the bundle is downloaded; a failed attempt
        (transfer error or checksum mismatch) is retried once.

        Args:
            url: HTTP(S) URL of the bundle
            target_path: Where the bundle is stored
            expected_md5: Expected MD5 hash
            conditions: Condition store receiving DownloadPackage progress
            cancel_event: Set to abort the transfer between chunks

        Returns:
            Path to the verified bundle

        Raises:
            DownloadError: If the transfer fails on every attempt
            ChecksumMismatchError: If the last downloaded file has the wrong MD5
            OperationCancelledError: If the pass was cancelled
        """
        if bundle_matches(target_path, expected_md5):
            self.logger.info(f"Bundle {target_path} already present with expected MD5")
            return target_path

        if not url:
            raise DownloadError(f"bundle {target_path} is missing and no download URL is set")

        self.logger.info(f"Bundle {target_path} not present, downloading from {url}")
        progress = TransferProgress()

        def report() -> None:
            if conditions is None:
                return
            value = skewed_progress(progress.percent)
            if conditions.set_progress(ConditionType.DOWNLOAD_PACKAGE, value):
                try:
                    conditions.persist()
                except PersistenceError as e:
                    self.logger.warning(f"Failed to persist download progress {value}%: {e}")

        def before_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            self.logger.error(f"Download bundle error, will retry: {error}")
            if conditions is None:
                return
            conditions.set_reason(
                ConditionType.DOWNLOAD_PACKAGE,
                "DownloadRetry",
                f"download bundle error, will retry: {error}",
            )
            try:
                conditions.persist()
            except PersistenceError as e:
                self.logger.warning(f"Failed to persist download retry reason: {e}")

        try:
            async with periodic_task(self.report_interval, report):
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception_type((httpx.HTTPError, OSError, ChecksumMismatchError)),
                    stop=stop_after_attempt(self.attempts),
                    before_sleep=before_retry,
                    reraise=True,
                ):
                    with attempt:
                        await self._fetch(url, target_path, progress, cancel_event)
                        self._verify(target_path, expected_md5)
        except (httpx.HTTPError, OSError) as e:
            self.logger.error(f"Download bundle error, not retrying: {e}")
            raise DownloadError(f"failed to download bundle from {url}: {e}") from e

        self.logger.info(f"Successfully downloaded bundle from {url}")
        return target_path

    def _verify(self, target_path: Path, expected_md5: str) -> None:
        try:
            verify_bundle(target_path, expected_md5)
        except ChecksumMismatchError:
            target_path.unlink(missing_ok=True)  # Delete corrupted file
            raise

    async def _fetch(
        self,
        url: str,
        target_path: Path,
        progress: TransferProgress,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        """Stream the bundle to ``target_path``, counting bytes into ``progress``."""
        target_path.parent.mkdir(parents=True, exist_ok=True)

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                progress.start(int(response.headers.get("Content-Length") or 0))

                async with aiofiles.open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                        if cancel_event is not None and cancel_event.is_set():
                            raise OperationCancelledError(f"download of {url} cancelled")
                        await f.write(chunk)
                        progress.advance(len(chunk))

        self.logger.info(f"Downloaded {progress.received} bytes to {target_path}")
