"""Image reference and bundle file helpers."""

import os
import re
from pathlib import Path
from typing import Optional

from docker.utils import parse_repository_tag

DEFAULT_TAG = "latest"
LOADED_IMAGE_MARKER = "Loaded image: "
# Bundle members are gzipped image tarballs
IMAGE_ARCHIVE_SUFFIX = ".tgz"
# AppleDouble artifacts left by macOS archivers
HIDDEN_FILE_PREFIX = "._"

_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_DOMAIN = (
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*(?::[0-9]+)?"
)
_REPOSITORY_RE = re.compile(rf"^(?:{_DOMAIN}/)?{_COMPONENT}(?:/{_COMPONENT})*$")
_TAG_RE = re.compile(r"^\w[\w.-]{0,127}$")


def parse_reference(image: str) -> tuple[str, Optional[str]]:
    """Split an image reference into repository and tag.

    Args:
        image: Reference such as ``goodrain.me/builder:v5.3.3``

    Returns:
        (repository, tag) where tag is None when the reference has none

    Raises:
        ValueError: If the reference is malformed or pinned by digest
    """
    image = image.strip()
    if "@" in image:
        raise ValueError(f"Digest references are not supported: {image}")
    repository, tag = parse_repository_tag(image)
    if not _REPOSITORY_RE.match(repository):
        raise ValueError(f"Invalid image repository: {image!r}")
    if tag is not None and not _TAG_RE.match(tag):
        raise ValueError(f"Invalid image tag: {image!r}")
    return repository, tag


def image_full_name(image: str) -> str:
    """Reference with an explicit tag, as used for exact image lookups."""
    repository, tag = parse_reference(image)
    return f"{repository}:{tag or DEFAULT_TAG}"


def trim_latest(image: str) -> str:
    suffix = ":" + DEFAULT_TAG
    if image.endswith(suffix):
        return image[: -len(suffix)]
    return image


def parse_loaded_image(line: str) -> str:
    """Extract the image name from an image-load progress line.

    Returns an empty string when the line does not announce a loaded image.
    """
    if LOADED_IMAGE_MARKER not in line:
        return ""
    name = line.replace(LOADED_IMAGE_MARKER, "").replace("\n", "").strip()
    return trim_latest(name)


def new_image_with_new_domain(image: str, new_domain: str) -> str:
    """Move an image under another registry domain, keeping name and tag.

    ``registry.example/foo/bar:1.2`` under ``dest.example/ns`` becomes
    ``dest.example/ns/bar:1.2``; an untagged image gets ``:latest``.

    Raises:
        ValueError: If the image reference cannot be parsed
    """
    repository, tag = parse_reference(image)
    name = repository.rsplit("/", 1)[-1]
    return f"{new_domain.rstrip('/')}/{name}:{tag or DEFAULT_TAG}"


def is_image_archive(file_path: Path) -> bool:
    name = file_path.name
    return name.endswith(IMAGE_ARCHIVE_SUFFIX) and not name.startswith(HIDDEN_FILE_PREFIX)


def list_image_archives(directory: Path) -> list[Path]:
    """All image archives below ``directory``, in a stable order.

    A missing directory yields no archives.
    """
    archives = []
    for root, dirs, files in os.walk(directory):
        dirs.sort()
        for name in sorted(files):
            path = Path(root) / name
            if path.is_file() and is_image_archive(path):
                archives.append(path)
    return archives


def count_image_archives(directory: Path) -> int:
    return len(list_image_archives(directory))
