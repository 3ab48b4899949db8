"""Global pytest fixtures and configuration."""

import sys
import time
from pathlib import Path
from typing import Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pkginstaller.config import Settings  # noqa: E402
from pkginstaller.models.cluster import ClusterCondition, ClusterConfig, ImageHub  # noqa: E402
from pkginstaller.models.package import ObjectMeta, Package, PackageSpec  # noqa: E402
from pkginstaller.models.status import InstallMode  # noqa: E402
from pkginstaller.services.state_store import FileStatusStore  # noqa: E402


class FakeImageEngine:
    """In-memory ImageEngine recording every call.

    - ``local_images``: ``name:tag`` references list_images reports as present
    - ``push_failures``: reference → number of pushes that report an error
    - ``load_streams``: archive file name → messages returned by load
    - ``push_delay``: seconds each push blocks its worker thread
    """

    def __init__(
        self, local_images=(), push_failures=None, load_streams=None, pull_stream=None, push_delay=0.0
    ):
        self.calls = []
        self.local_images = set(local_images)
        self.push_failures = dict(push_failures or {})
        self.load_streams = dict(load_streams or {})
        self.pull_stream = pull_stream
        self.push_delay = push_delay

    def ops(self, op: str) -> list:
        return [call for call in self.calls if call[0] == op]

    def list_images(self, reference: str) -> list[dict]:
        self.calls.append(("list", reference))
        if reference in self.local_images:
            return [{"Id": "sha256:abc", "RepoTags": [reference]}]
        return []

    def pull(self, repository: str, tag: str, auth: Optional[dict] = None):
        reference = f"{repository}:{tag}"
        self.calls.append(("pull", reference, auth))
        if self.pull_stream is not None:
            return iter(self.pull_stream)
        self.local_images.add(reference)
        return iter([
            {"status": f"Pulling from {repository}", "id": tag},
            {"status": f"Status: Downloaded newer image for {reference}"},
        ])

    def push(self, repository: str, tag: Optional[str], auth: Optional[dict] = None):
        reference = f"{repository}:{tag}" if tag else repository
        self.calls.append(("push", reference, auth))
        if self.push_delay:
            time.sleep(self.push_delay)
        if self.push_failures.get(reference, 0) > 0:
            self.push_failures[reference] -= 1
            return iter([
                {"status": "The push refers to repository"},
                {"errorDetail": {"message": "denied"}, "error": "denied: requested access is denied"},
            ])
        return iter([{"status": "Pushed"}, {"status": f"{tag or 'latest'}: digest: sha256:def size: 1"}])

    def load(self, archive):
        name = Path(archive.name).name
        self.calls.append(("load", name))
        return iter(self.load_streams.get(name, []))

    def tag(self, source: str, destination: str) -> None:
        self.calls.append(("tag", source, destination))


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at tmp_path with every delay at zero."""
    return Settings(
        state_dir=tmp_path / "state",
        unpack_dir=tmp_path / "files",
        cluster_config_path=tmp_path / "cluster.json",
        log_file=tmp_path / "logs" / "pkginstaller.log",
        download_report_interval=0.01,
        unpack_report_interval=0.01,
        pull_retry_delay=0,
        load_retry_delay=0,
    )


@pytest.fixture
def store(settings):
    return FileStatusStore(settings.state_dir)


@pytest.fixture
def fake_engine():
    return FakeImageEngine()


@pytest.fixture
def make_engine():
    """Factory for fake engines with preset images, failures and load output."""
    return FakeImageEngine


def _make_cluster(
    install_mode: InstallMode = InstallMode.ONLINE,
    completed: bool = True,
    registry_ready: bool = True,
    image_hub: Optional[ImageHub] = None,
) -> ClusterConfig:
    return ClusterConfig(
        config_completed=completed,
        install_mode=install_mode,
        image_repository="registry.example/rainbond",
        image_hub=image_hub or ImageHub(domain="goodrain.me"),
        install_version="v5.3.3-release",
        ci_version="v5.3.3",
        conditions=[
            ClusterCondition(
                type="ImageRepositoryInstalled", status="True" if registry_ready else "False"
            )
        ],
    )


@pytest.fixture
def make_cluster():
    """Factory for ready-to-install cluster configurations."""
    return _make_cluster


@pytest.fixture
def stored_package(store, tmp_path):
    """A registered package without any status yet."""
    package = Package(
        metadata=ObjectMeta(namespace="rbd-system", name="rainbondpackage"),
        spec=PackageSpec(pkg_path=str(tmp_path / "bundle" / "rainbond.pkg.tgz")),
    )
    return store.create_or_update(package)
