"""Status persistence with optimistic concurrency."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from pkginstaller.errors import ConflictError, PackageNotFoundError, PersistenceError
from pkginstaller.models.package import Package

# Conflict retry policy: 5 attempts, 10ms apart
CONFLICT_RETRY_ATTEMPTS = 5
CONFLICT_RETRY_WAIT = 0.01


class StatusStore(Protocol):
    """Backing store for package objects.

    ``update_status`` must reject a write whose ``resource_version`` is not
    the stored one by raising ConflictError.
    """

    def get(self, namespace: str, name: str) -> Optional[Package]: ...

    def update_status(self, package: Package) -> Package: ...


class FileStatusStore:
    """Package objects kept as one JSON document each under ``root``.

    Every write bumps an integer ``resource_version``; writes go through a
    temp file and an atomic rename so readers never see a partial document.
    """

    def __init__(self, root: Path):
        self.logger = logging.getLogger("pkginstaller.store")
        self.root = Path(root)

    def _path(self, namespace: str, name: str) -> Path:
        return self.root / namespace / f"{name}.json"

    def get(self, namespace: str, name: str) -> Optional[Package]:
        """Load a package, or None if it does not exist.

        Raises:
            PersistenceError: If the stored document is corrupt
        """
        path = self._path(namespace, name)
        if not path.exists():
            self.logger.debug(f"No package stored at {path}")
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Package(**data)
        except (json.JSONDecodeError, ValueError) as e:
            self.logger.error(f"Corrupt package document {path}: {e}")
            raise PersistenceError(f"corrupt package document {path}: {e}") from e

    def list_packages(self) -> list[Package]:
        packages = []
        for path in sorted(self.root.glob("*/*.json")):
            package = self.get(path.parent.name, path.stem)
            if package is not None:
                packages.append(package)
        return packages

    def create_or_update(self, package: Package) -> Package:
        """Store a package spec, keeping any status already recorded."""
        existing = self.get(package.metadata.namespace, package.metadata.name)
        stored = package.model_copy(deep=True)
        if existing is not None:
            stored.status = existing.status
            version = int(existing.metadata.resource_version or 0)
        else:
            version = 0
        stored.metadata.resource_version = str(version + 1)
        self._write(stored)
        self.logger.info(f"Stored package {stored.key} at version {stored.metadata.resource_version}")
        return stored

    def update_status(self, package: Package) -> Package:
        """Replace the status of a stored package.

        Raises:
            PackageNotFoundError: If the package is not stored
            ConflictError: If ``package.metadata.resource_version`` is stale
        """
        existing = self.get(package.metadata.namespace, package.metadata.name)
        if existing is None:
            raise PackageNotFoundError(f"package {package.key} not found")
        if existing.metadata.resource_version != package.metadata.resource_version:
            raise ConflictError(
                f"package {package.key} changed: stored version "
                f"{existing.metadata.resource_version}, "
                f"write based on {package.metadata.resource_version}"
            )

        existing.status = package.status.model_copy(deep=True)
        existing.metadata.resource_version = str(int(existing.metadata.resource_version or 0) + 1)
        self._write(existing)
        package.metadata.resource_version = existing.metadata.resource_version
        self.logger.debug(
            f"Saved status for {package.key} at version {package.metadata.resource_version}"
        )
        return existing

    def _write(self, package: Package) -> None:
        path = self._path(package.metadata.namespace, package.metadata.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(package.model_dump(mode="json"), f, indent=2)
            os.replace(tmp_name, path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def persist_status(
    store: StatusStore,
    package: Package,
    attempts: int = CONFLICT_RETRY_ATTEMPTS,
    wait: float = CONFLICT_RETRY_WAIT,
) -> None:
    """Write ``package.status`` back with read-latest / optimistic-write.

    Each attempt re-fetches the stored object, adopts its concurrency token
    and writes; a conflicting concurrent write restarts the sequence.

    Raises:
        PackageNotFoundError: If the package no longer exists
        PersistenceError: If conflicts persist after all attempts
    """
    logger = logging.getLogger("pkginstaller.store")

    def _attempt() -> None:
        latest = store.get(package.metadata.namespace, package.metadata.name)
        if latest is None:
            raise PackageNotFoundError(f"package {package.key} not found")
        package.metadata.resource_version = latest.metadata.resource_version
        store.update_status(package)

    try:
        for attempt in Retrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(wait),
        ):
            with attempt:
                _attempt()
    except RetryError as e:
        logger.error(f"Giving up writing status for {package.key} after {attempts} conflicts")
        raise PersistenceError(
            f"failed to update package {package.key} status: {e.last_attempt.exception()}"
        ) from e
