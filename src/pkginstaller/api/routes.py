"""API route handlers for package installation endpoints."""

import logging

from fastapi import APIRouter, Depends

from pkginstaller.api.models import ApiResponse, PackageData, PackageRequest
from pkginstaller.errors import PersistenceError
from pkginstaller.models.package import Package, ObjectMeta
from pkginstaller.models.status import ConditionStatus, ConditionType
from pkginstaller.services.conditions import ConditionStore
from pkginstaller.services.reconciler import Reconciler
from pkginstaller.services.runtime import InstallerRuntime, get_runtime

router = APIRouter(prefix="/api/v1.0")
logger = logging.getLogger("pkginstaller.api")


def _package_data(package: Package) -> dict:
    return PackageData(
        namespace=package.metadata.namespace,
        name=package.metadata.name,
        resource_version=package.metadata.resource_version,
        spec=package.spec,
        status=package.status,
    ).model_dump(mode="json")


def _not_found(namespace: str, name: str) -> ApiResponse:
    return ApiResponse(code=404, msg=f"Package not found: {namespace}/{name}")


@router.get("/packages", response_model=ApiResponse)
async def list_packages(runtime: InstallerRuntime = Depends(get_runtime)):
    """GET /api/v1.0/packages - All stored packages with their status."""
    packages = runtime.store.list_packages()
    return ApiResponse(data=[_package_data(p) for p in packages])


@router.get("/packages/{namespace}/{name}", response_model=ApiResponse)
async def get_package(namespace: str, name: str, runtime: InstallerRuntime = Depends(get_runtime)):
    """GET /api/v1.0/packages/{namespace}/{name} - Query installation status.

    Response format (failed stage):
        {
            "code": 500,
            "msg": "Stage PushImage failed: PushImageFailed",
            "data": {"namespace": "rbd-system", "name": "rainbondpackage", ...}
        }
    """
    package = runtime.store.get(namespace, name)
    if package is None:
        return _not_found(namespace, name)

    for condition in package.status.conditions:
        if condition.status == ConditionStatus.FAILED:
            return ApiResponse(
                code=500,
                msg=f"Stage {condition.type.value} failed: {condition.reason}",
                data=_package_data(package),
            )
    return ApiResponse(data=_package_data(package))


@router.put("/packages/{namespace}/{name}", response_model=ApiResponse)
async def put_package(
    namespace: str,
    name: str,
    request: PackageRequest,
    runtime: InstallerRuntime = Depends(get_runtime),
):
    """PUT /api/v1.0/packages/{namespace}/{name} - Register or replace a package spec.

    An existing status is kept; a new package starts with no conditions and
    is initialized by its first reconciliation pass.
    """
    package = Package(metadata=ObjectMeta(namespace=namespace, name=name), spec=request.spec)
    stored = runtime.store.create_or_update(package)
    return ApiResponse(data=_package_data(stored))


@router.post("/packages/{namespace}/{name}/reconcile", response_model=ApiResponse)
async def post_reconcile(namespace: str, name: str, runtime: InstallerRuntime = Depends(get_runtime)):
    """POST /api/v1.0/packages/{namespace}/{name}/reconcile - Run one pass.

    The pass runs to completion before responding; ``data.requeue_after``
    tells the caller when to call again. A second request for a package whose
    pass is still in flight is refused with code 409.
    """
    key = f"{namespace}/{name}"
    if key in runtime.in_flight:
        return ApiResponse(code=409, msg=f"Reconciliation already in progress: {key}")

    runtime.in_flight.add(key)
    try:
        reconciler: Reconciler = runtime.reconciler
        result = await reconciler.reconcile(namespace, name)
    finally:
        runtime.in_flight.discard(key)

    if result.error:
        return ApiResponse(code=500, msg=result.error, data=result.model_dump(mode="json"))
    return ApiResponse(data=result.model_dump(mode="json"))


@router.post("/packages/{namespace}/{name}/conditions/{condition_type}/reset", response_model=ApiResponse)
async def post_reset_condition(
    namespace: str,
    name: str,
    condition_type: ConditionType,
    runtime: InstallerRuntime = Depends(get_runtime),
):
    """POST .../conditions/{condition_type}/reset - Clear a failed stage.

    Returns a Failed condition (or a Running one left behind by a pass that
    died) to Waiting so the next pass runs the stage again.
    """
    key = f"{namespace}/{name}"
    if key in runtime.in_flight:
        return ApiResponse(code=409, msg=f"Reconciliation in progress: {key}")

    package = runtime.store.get(namespace, name)
    if package is None:
        return _not_found(namespace, name)

    try:
        conditions = ConditionStore(package, runtime.store)
    except ValueError as e:
        return ApiResponse(code=500, msg=str(e))
    condition = conditions.get(condition_type)
    if condition is None or condition.status not in (ConditionStatus.FAILED, ConditionStatus.RUNNING):
        current = condition.status.value if condition is not None else "missing"
        return ApiResponse(
            code=409, msg=f"Condition {condition_type.value} is {current}, nothing to reset"
        )

    conditions.set_status(condition_type, ConditionStatus.WAITING)
    conditions.set_progress(condition_type, 0)
    conditions.set_reason(condition_type, "", "")
    try:
        conditions.persist()
    except PersistenceError as e:
        logger.error(f"Failed to reset {condition_type.value} of {key}: {e}")
        return ApiResponse(code=500, msg=str(e))

    logger.info(f"Reset condition {condition_type.value} of {key} to Waiting")
    return ApiResponse(data=_package_data(package))
