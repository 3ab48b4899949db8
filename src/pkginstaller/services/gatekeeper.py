"""Stage gatekeeper: decides which single stage may run in a pass."""

import logging
from typing import Optional

from pkginstaller.models.status import ConditionStatus, ConditionType
from pkginstaller.services.conditions import ConditionStore


class StageGatekeeper:
    """Select the next eligible stage from the current conditions.

    Selecting a stage claims it (Waiting → Running). Stages the install mode
    does not need are completed on the spot and do not count as the stage
    run by this pass.
    """

    def __init__(self, conditions: ConditionStore, bundle_required: bool):
        self.logger = logging.getLogger("pkginstaller.gatekeeper")
        self.conditions = conditions
        self.bundle_required = bundle_required

    def _claim(self, stage: ConditionType) -> None:
        self.conditions.set_status(stage, ConditionStatus.RUNNING)

    def can_download(self) -> bool:
        if self.conditions.get(ConditionType.DOWNLOAD_PACKAGE) is None:
            return False
        if self.conditions.is_completed(ConditionType.DOWNLOAD_PACKAGE):
            return False
        if not self.bundle_required:
            self.logger.info("No bundle download needed, completing DownloadPackage")
            self.conditions.set_status(ConditionType.DOWNLOAD_PACKAGE, ConditionStatus.COMPLETED)
            return False
        self._claim(ConditionType.DOWNLOAD_PACKAGE)
        return True

    def can_unpack(self) -> bool:
        if not self.conditions.is_completed(ConditionType.DOWNLOAD_PACKAGE):
            return False
        if self.conditions.get(ConditionType.UNPACK_PACKAGE) is None:
            return False
        if self.conditions.is_completed(ConditionType.UNPACK_PACKAGE):
            return False
        if not self.bundle_required:
            self.logger.info("No bundle to unpack, completing UnpackPackage")
            self.conditions.set_status(ConditionType.UNPACK_PACKAGE, ConditionStatus.COMPLETED)
            return False
        self._claim(ConditionType.UNPACK_PACKAGE)
        return True

    def can_push_image(self) -> bool:
        if not self.conditions.is_completed(ConditionType.UNPACK_PACKAGE):
            return False
        if self.conditions.get(ConditionType.PUSH_IMAGE) is None:
            return False
        if self.conditions.is_completed(ConditionType.PUSH_IMAGE):
            return False
        self._claim(ConditionType.PUSH_IMAGE)
        return True

    def can_ready(self) -> bool:
        if not self.conditions.is_completed(ConditionType.PUSH_IMAGE):
            return False
        if self.conditions.get(ConditionType.READY) is None:
            return False
        if self.conditions.is_completed(ConditionType.READY):
            return False
        self._claim(ConditionType.READY)
        return True

    def select(self) -> Optional[ConditionType]:
        """Return the stage this pass may run, or None."""
        if self.can_download():
            return ConditionType.DOWNLOAD_PACKAGE
        if self.can_unpack():
            return ConditionType.UNPACK_PACKAGE
        if self.can_push_image():
            return ConditionType.PUSH_IMAGE
        if self.can_ready():
            return ConditionType.READY
        return None
