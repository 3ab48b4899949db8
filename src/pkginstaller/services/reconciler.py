"""Reconciliation entry point: one pass of the package installation state machine."""

import asyncio
import logging
from typing import Callable, Optional

from pydantic import BaseModel, Field

from pkginstaller.config import Settings
from pkginstaller.errors import (
    DownloadError,
    OperationCancelledError,
    PersistenceError,
    PreconditionError,
    StageFailedError,
    UnpackError,
)
from pkginstaller.models.cluster import ClusterConfig
from pkginstaller.models.package import Package
from pkginstaller.models.status import ConditionStatus, ConditionType, InstallMode
from pkginstaller.services.conditions import ConditionStore
from pkginstaller.services.distributor import ImageDistributor
from pkginstaller.services.download import DownloadService
from pkginstaller.services.gatekeeper import StageGatekeeper
from pkginstaller.services.install_pass import InstallPass
from pkginstaller.services.state_store import StatusStore
from pkginstaller.services.unpack import UnpackService

# Reason codes recorded on a failed stage
FAILURE_REASONS = {
    ConditionType.DOWNLOAD_PACKAGE: ("DownloadFailed", "download package failure"),
    ConditionType.UNPACK_PACKAGE: ("UnpackFailed", "unpack package failure"),
    ConditionType.PUSH_IMAGE: ("PushImageFailed", "distribute images failure"),
    ConditionType.READY: ("ReadyFailed", "mark package ready failure"),
}


class ReconcileResult(BaseModel):
    """What the scheduler should do after a pass.

    ``requeue_after`` is None when no further pass is needed on a timer.
    """

    requeue_after: Optional[float] = Field(None, ge=0)
    error: Optional[str] = None
    stage: Optional[ConditionType] = Field(None, description="Stage run by this pass")
    message: str = ""


class Reconciler:
    """Runs reconciliation passes over stored packages.

    A pass loads the package, checks the cluster is ready, asks the
    gatekeeper for the next stage, runs at most that one stage, persists the
    conditions and tells the caller when to come back.
    """

    def __init__(
        self,
        store: StatusStore,
        cluster_source: Callable[[], ClusterConfig],
        settings: Settings,
        distributor: ImageDistributor,
        download_service: Optional[DownloadService] = None,
        unpack_service: Optional[UnpackService] = None,
    ):
        self.logger = logging.getLogger("pkginstaller.reconciler")
        self.store = store
        self.cluster_source = cluster_source
        self.settings = settings
        self.distributor = distributor
        self.download_service = download_service or DownloadService(settings)
        self.unpack_service = unpack_service or UnpackService(settings)

    async def reconcile(
        self, namespace: str, name: str, cancel_event: Optional[asyncio.Event] = None
    ) -> ReconcileResult:
        """Run one pass for the package ``namespace/name``."""
        key = f"{namespace}/{name}"
        try:
            package = self.store.get(namespace, name)
        except PersistenceError as e:
            self.logger.error(f"Failed to read package {key}: {e}")
            return ReconcileResult(requeue_after=self.settings.persist_requeue_seconds, error=str(e))
        if package is None:
            self.logger.info(f"Package {key} not found, nothing to do")
            return ReconcileResult(message="package not found")

        try:
            cluster = self.cluster_source()
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to load cluster config: {e}")
            return ReconcileResult(requeue_after=self.settings.precondition_requeue_seconds, error=str(e))

        if not cluster.config_completed:
            self.logger.debug("Cluster config is not completed, waiting")
            return self._wait("cluster config is not completed")

        try:
            return await self._reconcile_package(package, cluster, cancel_event)
        except PersistenceError as e:
            self.logger.error(f"Failed to update package {key} status: {e}")
            return ReconcileResult(requeue_after=self.settings.persist_requeue_seconds, error=str(e))
        except StageFailedError as e:
            self.logger.error(f"Failed to handle package {key}: {e}")
            return ReconcileResult(
                requeue_after=self.settings.failure_requeue_seconds, error=str(e), stage=e.stage
            )
        except OperationCancelledError as e:
            self.logger.warning(f"Pass for package {key} cancelled: {e}")
            return ReconcileResult(requeue_after=self.settings.running_requeue_seconds, error=str(e))

    def _wait(self, message: str) -> ReconcileResult:
        return ReconcileResult(requeue_after=self.settings.precondition_requeue_seconds, message=message)

    async def _reconcile_package(
        self, package: Package, cluster: ClusterConfig, cancel_event: Optional[asyncio.Event]
    ) -> ReconcileResult:
        try:
            conditions = ConditionStore(package, self.store)
        except ValueError as e:
            return ReconcileResult(error=str(e), message="conditions need an external reset")

        if cluster.install_mode == InstallMode.FULL_ONLINE:
            if conditions.all_completed():
                return ReconcileResult(message="package is ready")
            self.logger.info(f"Install mode {cluster.install_mode.value}: set package {package.key} ready directly")
            conditions.initialize(ConditionStatus.COMPLETED)
            conditions.persist()
            return ReconcileResult(message="package is ready")

        if conditions.is_empty:
            conditions.initialize(ConditionStatus.WAITING)
            conditions.persist()
            return ReconcileResult(requeue_after=0, message="conditions initialized")

        running = conditions.first_with_status(ConditionStatus.RUNNING)
        if running is not None:
            self.logger.debug(f"Stage {running.value} of {package.key} is running, not re-entering")
            return ReconcileResult(
                requeue_after=self.settings.running_requeue_seconds,
                message=f"stage {running.value} is running",
            )

        failed = conditions.first_with_status(ConditionStatus.FAILED)
        if failed is not None:
            self.logger.info(f"Stage {failed.value} of {package.key} failed, waiting for an external reset")
            return ReconcileResult(message=f"stage {failed.value} failed, reset it to retry")

        if conditions.all_completed():
            return ReconcileResult(message="package is ready")

        try:
            install_pass = InstallPass.build(package, cluster, conditions, self.settings, cancel_event)
        except PreconditionError as e:
            self.logger.info(f"Waiting for cluster: {e}")
            return self._wait(str(e))

        if not conditions.is_completed(ConditionType.INIT):
            conditions.set_status(ConditionType.INIT, ConditionStatus.COMPLETED)
            conditions.persist()

        stage = StageGatekeeper(conditions, install_pass.bundle_required).select()
        # Persist the claim (or any skipped stages) before the long-running work
        conditions.persist()
        if stage is None:
            self.logger.debug(f"No stage of {package.key} can be handled")
            return ReconcileResult(message="no stage eligible")

        try:
            await self._run_stage(stage, install_pass)
            conditions.set_status(stage, ConditionStatus.COMPLETED)
            conditions.persist()
        except PersistenceError as e:
            self._release_stage(stage, conditions, e)
            raise
        self.logger.info(f"Handled stage {stage.value} of {package.key} successfully")

        if stage == ConditionType.READY:
            return ReconcileResult(stage=stage, message="package is ready")
        return ReconcileResult(requeue_after=0, stage=stage, message=f"stage {stage.value} completed")

    async def _run_stage(self, stage: ConditionType, install_pass: InstallPass) -> None:
        """Run one stage, marking it Failed if it raises.

        A cancelled stage goes back to Waiting so the next pass re-enters it.

        Raises:
            StageFailedError: If the stage operation failed
            PersistenceError: If status could not be written
        """
        conditions = install_pass.conditions
        try:
            if stage == ConditionType.DOWNLOAD_PACKAGE:
                await self._download(install_pass)
            elif stage == ConditionType.UNPACK_PACKAGE:
                await self._unpack(install_pass)
            elif stage == ConditionType.PUSH_IMAGE:
                await self.distributor.distribute(install_pass)
        except PersistenceError:
            raise
        except (OperationCancelledError, asyncio.CancelledError):
            self.logger.warning(f"Stage {stage.value} of {install_pass.package.key} cancelled")
            conditions.set_status(stage, ConditionStatus.WAITING)
            conditions.set_reason(stage, "Cancelled", "pass cancelled, will re-enter")
            conditions.persist()
            raise
        except Exception as e:
            self.logger.error(f"Stage {stage.value} of {install_pass.package.key} failed: {e}", exc_info=True)
            reason, message = FAILURE_REASONS[stage]
            conditions.set_status(stage, ConditionStatus.FAILED)
            conditions.set_reason(stage, reason, f"{message}: {e}")
            conditions.persist()
            raise StageFailedError(stage, e) from e

    def _release_stage(self, stage: ConditionType, conditions: ConditionStore, error: Exception) -> None:
        """Put a claimed stage back to Waiting after a status write failed.

        Best effort: if this write fails too, the original error is the one
        reported and the stage stays as last stored.
        """
        conditions.set_status(stage, ConditionStatus.WAITING)
        conditions.set_progress(stage, 0)
        conditions.set_reason(stage, "PersistFailed", f"status update failed, will re-enter: {error}")
        try:
            conditions.persist()
        except PersistenceError as e:
            self.logger.error(f"Failed to release stage {stage.value} of {conditions.package.key}: {e}")
            return
        self.logger.warning(f"Released stage {stage.value} of {conditions.package.key} after: {error}")

    async def _download(self, install_pass: InstallPass) -> None:
        if install_pass.bundle_path is None:
            raise DownloadError("package has no bundle path")
        if not install_pass.download_md5:
            raise DownloadError("package has no expected bundle MD5")
        await self.download_service.download_bundle(
            install_pass.download_url,
            install_pass.bundle_path,
            install_pass.download_md5,
            conditions=install_pass.conditions,
            cancel_event=install_pass.cancel_event,
        )

    async def _unpack(self, install_pass: InstallPass) -> None:
        if install_pass.bundle_path is None:
            raise UnpackError("package has no bundle path")
        await self.unpack_service.unpack_bundle(
            install_pass.bundle_path, install_pass.unpack_dir, conditions=install_pass.conditions
        )
