"""Unit tests for the file status store and conflict-retrying persistence."""

from unittest.mock import MagicMock

import pytest

from pkginstaller.errors import ConflictError, PackageNotFoundError, PersistenceError
from pkginstaller.models.package import ObjectMeta, Package, PackageImage, PackageSpec
from pkginstaller.services.state_store import FileStatusStore, persist_status


@pytest.mark.unit
class TestFileStatusStore:
    def test_get_missing_returns_none(self, store):
        assert store.get("rbd-system", "nothing") is None

    def test_create_assigns_first_version(self, store, stored_package):
        assert stored_package.metadata.resource_version == "1"
        assert store.get("rbd-system", "rainbondpackage") == stored_package

    def test_update_spec_keeps_status(self, store, stored_package):
        stored_package.status.images_number = 5
        store.update_status(stored_package)

        updated = Package(
            metadata=ObjectMeta(namespace="rbd-system", name="rainbondpackage"),
            spec=PackageSpec(pkg_path="/tmp/other.tgz"),
        )
        result = store.create_or_update(updated)

        assert result.spec.pkg_path == "/tmp/other.tgz"
        assert result.status.images_number == 5
        assert result.metadata.resource_version == "3"

    def test_update_status_bumps_version(self, store, stored_package):
        stored_package.status.images_pushed = [PackageImage(name="goodrain.me/builder:v5.3.3")]

        store.update_status(stored_package)

        assert stored_package.metadata.resource_version == "2"
        reloaded = store.get("rbd-system", "rainbondpackage")
        assert reloaded.status.images_pushed[0].name == "goodrain.me/builder:v5.3.3"

    def test_stale_write_conflicts(self, store, stored_package):
        stale = stored_package.model_copy(deep=True)
        store.update_status(stored_package)

        with pytest.raises(ConflictError):
            store.update_status(stale)

    def test_update_status_of_missing_package(self, store):
        package = Package(metadata=ObjectMeta(namespace="rbd-system", name="gone"))
        with pytest.raises(PackageNotFoundError):
            store.update_status(package)

    def test_corrupt_document_raises(self, store, settings):
        path = settings.state_dir / "rbd-system" / "broken.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with pytest.raises(PersistenceError, match="corrupt"):
            store.get("rbd-system", "broken")

    def test_list_packages(self, store, stored_package):
        store.create_or_update(Package(metadata=ObjectMeta(namespace="default", name="extra")))
        assert [p.key for p in store.list_packages()] == ["default/extra", "rbd-system/rainbondpackage"]

    def test_no_temp_files_left_behind(self, store, stored_package, settings):
        store.update_status(stored_package)
        names = [p.name for p in (settings.state_dir / "rbd-system").iterdir()]
        assert names == ["rainbondpackage.json"]


@pytest.mark.unit
class TestPersistStatus:
    def test_adopts_latest_version_before_writing(self, store, stored_package):
        """A write based on an outdated read still lands."""
        stale = stored_package.model_copy(deep=True)
        store.update_status(stored_package)
        stale.status.images_number = 23

        persist_status(store, stale)

        reloaded = store.get("rbd-system", "rainbondpackage")
        assert reloaded.status.images_number == 23
        assert reloaded.metadata.resource_version == "3"

    def test_retries_conflicts_then_succeeds(self, stored_package):
        backing = MagicMock()
        backing.get.return_value = stored_package
        backing.update_status.side_effect = [ConflictError("changed"), ConflictError("changed"), stored_package]

        persist_status(backing, stored_package, wait=0)

        assert backing.update_status.call_count == 3

    def test_gives_up_after_five_conflicts(self, stored_package):
        backing = MagicMock()
        backing.get.return_value = stored_package
        backing.update_status.side_effect = ConflictError("changed")

        with pytest.raises(PersistenceError, match="failed to update package"):
            persist_status(backing, stored_package, wait=0)

        assert backing.update_status.call_count == 5

    def test_missing_package_is_not_retried(self, stored_package):
        backing = MagicMock()
        backing.get.return_value = None

        with pytest.raises(PackageNotFoundError):
            persist_status(backing, stored_package, wait=0)

        assert backing.get.call_count == 1
        backing.update_status.assert_not_called()


@pytest.mark.unit
def test_store_root_is_created_lazily(tmp_path):
    store = FileStatusStore(tmp_path / "state")
    assert store.list_packages() == []
    assert not (tmp_path / "state").exists()
