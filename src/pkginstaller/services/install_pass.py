"""Short-lived state of a single reconciliation pass."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from pkginstaller.config import Settings
from pkginstaller.errors import ClusterConfigNotReadyError, ImageRepositoryNotReadyError
from pkginstaller.models.cluster import ClusterConfig
from pkginstaller.models.package import Package
from pkginstaller.models.status import InstallMode
from pkginstaller.services.conditions import ConditionStore
from pkginstaller.services.engine import RegistryAuth, registry_auth

TCM_PLUGIN_VERSION = "5.1.7"


class ImageMapping(BaseModel):
    """One image to move: where it is pulled from and where it is pushed to."""

    source: str
    destination: str


def required_images(version: str, ci_version: str) -> list[tuple[str, str]]:
    """Platform images needed by an online install, as (source name:tag, destination name)."""
    return [
        (f"builder:{ci_version}", "builder"),
        (f"runner:{ci_version}", "runner"),
        (f"rbd-init-probe:{version}", "rbd-init-probe"),
        (f"rbd-mesh-data-panel:{version}", "rbd-mesh-data-panel"),
        (f"plugins-tcm:{TCM_PLUGIN_VERSION}", "tcm"),
    ]


def build_image_mapping(
    pull_domain: str, push_domain: str, version: str, ci_version: str
) -> list[ImageMapping]:
    return [
        ImageMapping(source=f"{pull_domain}/{source}", destination=f"{push_domain}/{destination}")
        for source, destination in required_images(version, ci_version)
    ]


@dataclass
class InstallPass:
    """Everything one pass needs, derived from the package and the cluster.

    Built fresh for every pass and passed explicitly to the stage services;
    nothing here survives the pass except what the condition store persists.
    """

    package: Package
    cluster: ClusterConfig
    conditions: ConditionStore
    settings: Settings
    bundle_required: bool
    bundle_path: Optional[Path]
    download_url: Optional[str]
    download_md5: Optional[str]
    unpack_dir: Path
    pull_domain: str
    push_domain: str
    images: list[ImageMapping]
    pull_auth: Optional[RegistryAuth] = None
    push_auth: Optional[RegistryAuth] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @classmethod
    def build(
        cls,
        package: Package,
        cluster: ClusterConfig,
        conditions: ConditionStore,
        settings: Settings,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> "InstallPass":
        """Derive the pass from cluster configuration.

        Raises:
            ClusterConfigNotReadyError: If the configuration is incomplete
            ImageRepositoryNotReadyError: If the destination registry is not ready
        """
        if not cluster.config_completed:
            raise ClusterConfigNotReadyError()
        if not cluster.is_image_repository_ready():
            raise ImageRepositoryNotReadyError()

        bundle_required = cluster.install_mode == InstallMode.OFFLINE
        version = cluster.install_version
        if not bundle_required and not version:
            raise ClusterConfigNotReadyError("cluster config has no install version")

        pull_domain = cluster.image_repository or settings.default_image_repository
        push_domain = cluster.push_image_domain(settings.default_push_domain)
        ci_version = cluster.ci_version or settings.default_ci_version

        spec = package.spec
        push_auth = None
        if cluster.image_hub is not None:
            push_auth = registry_auth(cluster.image_hub.username, cluster.image_hub.password)

        return cls(
            package=package,
            cluster=cluster,
            conditions=conditions,
            settings=settings,
            bundle_required=bundle_required,
            bundle_path=Path(spec.pkg_path) if spec.pkg_path else None,
            download_url=spec.download_url,
            download_md5=spec.download_md5,
            unpack_dir=settings.unpack_dir,
            pull_domain=pull_domain,
            push_domain=push_domain,
            # Offline installs discover their images from the unpacked bundle
            images=[] if bundle_required else build_image_mapping(
                pull_domain, push_domain, version, ci_version
            ),
            pull_auth=registry_auth(spec.image_hub_user, spec.image_hub_pass),
            push_auth=push_auth,
            cancel_event=cancel_event or asyncio.Event(),
        )
