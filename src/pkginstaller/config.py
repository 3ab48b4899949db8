"""Application settings loaded from the environment."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Installer configuration.

    Every field can be overridden with a ``PKGINSTALLER_``-prefixed environment
    variable, e.g. ``PKGINSTALLER_UNPACK_DIR=/data/pkg``.
    """

    state_dir: Path = Path("./tmp/packages")
    unpack_dir: Path = Path("/opt/rainbond/pkg/files")
    cluster_config_path: Path = Path("./config/cluster.json")
    log_file: Path = Path("./logs/pkginstaller.log")
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 12316

    # Proxy total for unpack progress; the real image count is unknown until extracted
    expected_image_count: int = 23
    download_report_interval: float = 3.0
    unpack_report_interval: float = 2.0
    download_attempts: int = 2
    pull_retry_attempts: int = 3
    pull_retry_delay: float = 2.0
    load_retry_attempts: int = 3
    load_retry_delay: float = 1.0

    precondition_requeue_seconds: float = 3.0
    running_requeue_seconds: float = 3.0
    persist_requeue_seconds: float = 5.0
    failure_requeue_seconds: float = 8.0

    default_image_repository: str = "rainbond"
    default_push_domain: str = "goodrain.me"
    default_ci_version: str = "v5.3.3"
    docker_timeout: int = 300

    model_config = SettingsConfigDict(
        env_prefix="PKGINSTALLER_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return application settings instance."""

    settings = Settings()
    settings.state_dir.mkdir(parents=True, exist_ok=True)
    return settings
