"""Pydantic models for HTTP API requests and responses."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from pkginstaller.models.package import PackageSpec, PackageStatus


class PackageRequest(BaseModel):
    """PUT /api/v1.0/packages/{namespace}/{name} payload.

    Example:
        {
            "spec": {
                "pkg_path": "/opt/rainbond/pkg/tgz/rainbond.pkg.tgz",
                "download_url": "https://pkg.example.com/rainbond-5.3.3.tgz",
                "download_md5": "600aff0f78265dd25bb6907828f916dd"
            }
        }
    """

    spec: PackageSpec = Field(default_factory=PackageSpec)


class PackageData(BaseModel):
    """Package identity and status nested in responses."""

    namespace: str
    name: str
    resource_version: str
    spec: PackageSpec
    status: PackageStatus


class ApiResponse(BaseModel):
    """Envelope for every endpoint.

    HTTP status code is always 200, real status in 'code' field
    (200/404/409/500).
    """

    code: int = Field(default=200, description="Application-level status code")
    msg: str = Field(default="success", description="Status message or error description")
    data: Optional[Any] = Field(None, description="Endpoint payload")
