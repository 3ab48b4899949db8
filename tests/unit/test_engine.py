"""Unit tests for the Docker image engine adapter."""

from unittest.mock import MagicMock, patch

import docker
import pytest

from pkginstaller.errors import ImageDistributionError
from pkginstaller.services.engine import DockerImageEngine, registry_auth


@pytest.mark.unit
class TestRegistryAuth:
    def test_anonymous_without_username(self):
        assert registry_auth("", "ignored") is None

    def test_credentials(self):
        assert registry_auth("admin", "pw") == {"username": "admin", "password": "pw"}


@pytest.mark.unit
class TestDockerImageEngine:
    @pytest.fixture
    def api(self):
        return MagicMock(spec=docker.APIClient)

    def test_list_images_filters_by_reference(self, api):
        api.images.return_value = [{"Id": "sha256:abc"}]
        engine = DockerImageEngine(client=api)

        assert engine.list_images("rainbond/builder:v5.3.3") == [{"Id": "sha256:abc"}]
        api.images.assert_called_once_with(filters={"reference": "rainbond/builder:v5.3.3"})

    def test_pull_streams_decoded_messages(self, api):
        engine = DockerImageEngine(client=api)
        auth = {"username": "u", "password": "p"}

        engine.pull("rainbond/builder", "v5.3.3", auth)

        api.pull.assert_called_once_with(
            "rainbond/builder", tag="v5.3.3", stream=True, decode=True, auth_config=auth
        )

    def test_push_streams_decoded_messages(self, api):
        engine = DockerImageEngine(client=api)

        engine.push("goodrain.me/builder", None)

        api.push.assert_called_once_with(
            "goodrain.me/builder", tag=None, stream=True, decode=True, auth_config=None
        )

    def test_tag_splits_destination(self, api):
        api.tag.return_value = True
        engine = DockerImageEngine(client=api)

        engine.tag("rainbond/rbd-api:v5.3.3", "goodrain.me/rbd-api:v5.3.3")

        api.tag.assert_called_once_with(
            "rainbond/rbd-api:v5.3.3", "goodrain.me/rbd-api", tag="v5.3.3", force=True
        )

    def test_refused_tag_raises(self, api):
        api.tag.return_value = False
        with pytest.raises(ImageDistributionError, match="refused"):
            DockerImageEngine(client=api).tag("a:1", "goodrain.me/a:1")

    def test_load_is_quiet(self, api):
        archive = MagicMock()
        DockerImageEngine(client=api).load(archive)
        api.load_image.assert_called_once_with(archive, quiet=True)

    def test_unreachable_daemon(self):
        with patch("docker.from_env", side_effect=docker.errors.DockerException("no socket")):
            engine = DockerImageEngine(timeout=5)
            with pytest.raises(ImageDistributionError, match="no socket"):
                engine.list_images("rainbond/builder:v5.3.3")
