"""Image engine capability interface and its Docker implementation."""

import logging
from typing import Any, BinaryIO, Iterator, Optional, Protocol

import docker
from docker.utils import parse_repository_tag

from pkginstaller.errors import ImageDistributionError

# {"username": ..., "password": ...}
RegistryAuth = dict[str, str]
StreamMessage = dict[str, Any]


class ImageEngine(Protocol):
    """Operations the distributor needs from an image engine.

    ``pull``, ``push`` and ``load`` return streams of decoded JSON progress
    messages (``{"stream": ..., "status": ..., "error": ...}``).
    """

    def list_images(self, reference: str) -> list[dict]: ...

    def pull(self, repository: str, tag: str, auth: Optional[RegistryAuth] = None) -> Iterator[StreamMessage]: ...

    def push(self, repository: str, tag: Optional[str], auth: Optional[RegistryAuth] = None) -> Iterator[StreamMessage]: ...

    def load(self, archive: BinaryIO) -> Iterator[StreamMessage]: ...

    def tag(self, source: str, destination: str) -> None: ...


def registry_auth(username: str, password: str) -> Optional[RegistryAuth]:
    """Credentials for one registry call; None means anonymous access."""
    if not username:
        return None
    return {"username": username, "password": password}


class DockerImageEngine:
    """ImageEngine backed by the local Docker daemon.

    The low-level API client is created on first use from the usual
    ``DOCKER_HOST`` / ``DOCKER_TLS_VERIFY`` environment, negotiating the API
    version. Registry credentials are sent by docker-py as base64-encoded
    JSON in the ``X-Registry-Auth`` header.
    """

    def __init__(self, timeout: int = 300, client: Optional[docker.APIClient] = None):
        self.logger = logging.getLogger("pkginstaller.engine")
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> docker.APIClient:
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self.timeout).api
            except docker.errors.DockerException as e:
                raise ImageDistributionError(f"create docker client: {e}") from e
            self.logger.info(f"Connected to docker daemon at {self._client.base_url}")
        return self._client

    def list_images(self, reference: str) -> list[dict]:
        return self.client.images(filters={"reference": reference})

    def pull(self, repository: str, tag: str, auth: Optional[RegistryAuth] = None) -> Iterator[StreamMessage]:
        return self.client.pull(repository, tag=tag, stream=True, decode=True, auth_config=auth)

    def push(self, repository: str, tag: Optional[str], auth: Optional[RegistryAuth] = None) -> Iterator[StreamMessage]:
        return self.client.push(repository, tag=tag, stream=True, decode=True, auth_config=auth)

    def load(self, archive: BinaryIO) -> Iterator[StreamMessage]:
        # quiet: one load per archive, the stream only announces loaded images
        return self.client.load_image(archive, quiet=True)

    def tag(self, source: str, destination: str) -> None:
        repository, tag = parse_repository_tag(destination)
        if not self.client.tag(source, repository, tag=tag, force=True):
            raise ImageDistributionError(f"docker refused to tag {source} as {destination}")
