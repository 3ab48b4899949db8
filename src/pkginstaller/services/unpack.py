"""Bundle extraction with proxy progress reporting."""

import asyncio
import logging
import tarfile
from pathlib import Path
from typing import Optional

from pkginstaller.config import Settings
from pkginstaller.errors import PersistenceError, UnpackError
from pkginstaller.models.status import ConditionType
from pkginstaller.services.conditions import ConditionStore
from pkginstaller.utils.images import count_image_archives
from pkginstaller.utils.progress import periodic_task


class UnpackService:
    """Extracts the bundle into the unpack directory.

    The number of images in a bundle is unknown until it is extracted, so
    progress is estimated against ``expected_image_count`` by counting the
    image archives already present in the destination.
    """

    def __init__(self, settings: Settings):
        self.logger = logging.getLogger("pkginstaller.unpack")
        self.report_interval = settings.unpack_report_interval
        self.expected_image_count = max(1, settings.expected_image_count)

    def estimate_progress(self, destination: Path) -> int:
        return count_image_archives(destination) * 100 // self.expected_image_count

    async def unpack_bundle(
        self,
        archive_path: Path,
        destination: Path,
        conditions: Optional[ConditionStore] = None,
    ) -> None:
        """Extract ``archive_path`` into ``destination``.

        Re-running over a partially extracted destination overwrites what is
        already there.

        Raises:
            UnpackError: If the archive is missing or extraction fails
        """
        self.logger.info(f"Start unpacking {archive_path} into {destination}")
        if not archive_path.is_file():
            raise UnpackError(f"bundle {archive_path} not found")

        def report() -> None:
            if conditions is None:
                return
            value = self.estimate_progress(destination)
            if conditions.set_progress(ConditionType.UNPACK_PACKAGE, value):
                try:
                    conditions.persist()
                except PersistenceError as e:
                    self.logger.warning(f"Failed to persist unpack progress {value}%: {e}")

        destination.mkdir(parents=True, exist_ok=True)
        try:
            async with periodic_task(self.report_interval, report):
                await asyncio.to_thread(self._extract, archive_path, destination)
        except (tarfile.TarError, OSError) as e:
            self.logger.error(f"Failed to unpack {archive_path}: {e}")
            raise UnpackError(f"failed to unpack {archive_path}: {e}") from e

        self.logger.info(
            f"Unpacked {archive_path}: {count_image_archives(destination)} image archives"
        )

    def _extract(self, archive_path: Path, destination: Path) -> None:
        with tarfile.open(archive_path, "r:*") as tar:
            tar.extractall(destination, filter="data")
