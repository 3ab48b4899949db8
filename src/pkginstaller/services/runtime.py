"""Process-wide wiring of the installer services."""

from functools import lru_cache, partial

from pkginstaller.config import Settings, get_settings
from pkginstaller.models.cluster import load_cluster_config
from pkginstaller.services.distributor import ImageDistributor
from pkginstaller.services.engine import DockerImageEngine, ImageEngine
from pkginstaller.services.reconciler import Reconciler
from pkginstaller.services.state_store import FileStatusStore


class InstallerRuntime:
    """Long-lived collaborators shared by API requests.

    Only stateless services and the store live here; pass state is rebuilt
    by the reconciler on every pass.
    """

    def __init__(self, settings: Settings, engine: ImageEngine):
        self.settings = settings
        self.store = FileStatusStore(settings.state_dir)
        self.reconciler = Reconciler(
            store=self.store,
            cluster_source=partial(load_cluster_config, settings.cluster_config_path),
            settings=settings,
            distributor=ImageDistributor(engine, settings),
        )
        # Packages whose pass is currently running in this process
        self.in_flight: set[str] = set()


@lru_cache(maxsize=1)
def get_runtime() -> InstallerRuntime:
    """Return the installer runtime, built on first use."""
    settings = get_settings()
    return InstallerRuntime(settings, DockerImageEngine(timeout=settings.docker_timeout))
