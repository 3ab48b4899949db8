"""Bundle integrity checks."""

import hashlib
import logging
from pathlib import Path

from pkginstaller.errors import ChecksumMismatchError

logger = logging.getLogger("pkginstaller.verification")


def file_md5(file_path: Path, chunk_size: int = 64 * 1024) -> str:
    """Return the lowercase hex MD5 of a file, read in chunks.

    Raises:
        FileNotFoundError: If file doesn't exist
        OSError: If file read fails
    """
    md5_hash = hashlib.md5()
    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            md5_hash.update(chunk)
    return md5_hash.hexdigest()


def bundle_matches(file_path: Path, expected_md5: str) -> bool:
    """Whether a bundle is already present with the expected checksum.

    A missing or unreadable file simply does not match.
    """
    if not file_path.is_file():
        return False
    try:
        actual = file_md5(file_path)
    except OSError as e:
        logger.warning(f"Cannot read existing bundle {file_path}: {e}")
        return False
    return actual == expected_md5.lower()


def verify_bundle(file_path: Path, expected_md5: str) -> None:
    """Verify a downloaded bundle against its expected MD5.

    Raises:
        ChecksumMismatchError: If the checksum differs
        FileNotFoundError: If file doesn't exist
    """
    expected = expected_md5.lower()
    actual = file_md5(file_path)
    if actual != expected:
        logger.error(f"MD5 mismatch for {file_path.name}: expected {expected}, got {actual}")
        raise ChecksumMismatchError(expected, actual)
    logger.info(f"MD5 verification passed for {file_path.name}")
