"""Read-only cluster configuration consumed by the installer."""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from pkginstaller.models.status import InstallMode

# Cluster condition reporting the destination registry is reachable
IMAGE_REPOSITORY_CONDITION = "ImageRepositoryInstalled"


class ImageHub(BaseModel):
    """Destination registry for platform images."""

    domain: str = Field(..., min_length=1, description="Registry host, e.g. goodrain.me")
    namespace: str = Field(default="", description="Repository namespace inside the registry")
    username: str = Field(default="")
    password: str = Field(default="")


class ClusterCondition(BaseModel):
    """Externally reported cluster health signal."""

    type: str
    status: str = Field(default="False", description="'True', 'False' or 'Unknown'")


class ClusterConfig(BaseModel):
    """Cluster configuration as written by the cluster setup flow."""

    config_completed: bool = Field(default=False)
    install_mode: InstallMode = Field(default=InstallMode.ONLINE)
    image_repository: str = Field(
        default="", description="Source registry domain images are pulled from"
    )
    image_hub: Optional[ImageHub] = Field(None)
    install_version: str = Field(default="", description="Platform version to install")
    ci_version: str = Field(default="", description="Builder/runner image version")
    conditions: list[ClusterCondition] = Field(default_factory=list)

    def get_condition(self, condition_type: str) -> Optional[ClusterCondition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def is_image_repository_ready(self) -> bool:
        condition = self.get_condition(IMAGE_REPOSITORY_CONDITION)
        return condition is not None and condition.status == "True"

    def push_image_domain(self, default: str) -> str:
        """Destination domain (plus namespace) images are pushed under."""
        if self.image_hub is None:
            return default
        domain = self.image_hub.domain
        if self.image_hub.namespace:
            domain += "/" + self.image_hub.namespace
        return domain


def load_cluster_config(path: Path) -> ClusterConfig:
    """Load cluster configuration from a JSON file.

    A missing file means the cluster has not been configured yet.

    Raises:
        ValueError: If the file is not valid JSON or fails validation
    """
    logger = logging.getLogger("pkginstaller.cluster")
    if not path.exists():
        logger.debug(f"No cluster config at {path}, treating as incomplete")
        return ClusterConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid cluster config JSON in {path}: {e}")
    return ClusterConfig(**data)
