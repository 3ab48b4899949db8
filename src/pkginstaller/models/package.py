"""Package object models: spec, persisted status and conditions."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from pkginstaller.models.status import ConditionStatus, ConditionType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PackageCondition(BaseModel):
    """Persisted status record for one installation stage."""

    type: ConditionType = Field(..., description="Stage this condition tracks")
    status: ConditionStatus = Field(
        default=ConditionStatus.WAITING, description="Current stage status"
    )
    progress: int = Field(default=0, ge=0, le=100, description="Percentage completion")
    reason: str = Field(default="", description="Short machine-readable reason code")
    message: str = Field(default="", description="Human-readable detail")
    last_heartbeat_time: datetime = Field(
        default_factory=utcnow, description="Last time the condition was touched"
    )
    last_transition_time: datetime = Field(
        default_factory=utcnow, description="Last time the status value changed"
    )

    @field_validator("last_heartbeat_time", "last_transition_time", mode="before")
    @classmethod
    def parse_iso8601(cls, v):
        """Parse ISO 8601 timestamp strings."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v


class PackageImage(BaseModel):
    """An image reference pushed to the destination registry."""

    name: str


class PackageStatus(BaseModel):
    """Status subresource of a package object."""

    conditions: list[PackageCondition] = Field(default_factory=list)
    images_number: int = Field(default=0, ge=0, description="Images to push this run")
    images_pushed: list[PackageImage] = Field(default_factory=list)


class PackageSpec(BaseModel):
    """User-supplied description of the installation bundle.

    Example:
        {
            "pkg_path": "/opt/rainbond/pkg/tgz/rainbond.pkg.tgz",
            "download_url": "https://pkg.example.com/rainbond-5.3.3.tgz",
            "download_md5": "600aff0f78265dd25bb6907828f916dd",
            "image_hub_user": "",
            "image_hub_pass": ""
        }
    """

    pkg_path: Optional[str] = Field(None, description="Local bundle location")
    download_url: Optional[str] = Field(
        None, pattern=r"^https?://.+", description="Where the bundle is fetched from"
    )
    download_md5: Optional[str] = Field(
        None, pattern=r"^[a-f0-9]{32}$", description="Expected bundle MD5"
    )
    image_hub_user: str = Field(default="", description="Source registry username")
    image_hub_pass: str = Field(default="", description="Source registry password")


class ObjectMeta(BaseModel):
    """Identity and concurrency token of a stored package."""

    name: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1)
    resource_version: str = Field(default="", description="Optimistic concurrency token")


class Package(BaseModel):
    """A package object as kept by the status store."""

    metadata: ObjectMeta
    spec: PackageSpec = Field(default_factory=PackageSpec)
    status: PackageStatus = Field(default_factory=PackageStatus)

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"
