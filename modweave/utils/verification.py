"""Checksum and signature verification for mod payloads."""

import hashlib
import hmac
import logging
from pathlib import Path
from typing import Literal

from modweave.utils.filesystem import compute_file_hash, iter_files

logger = logging.getLogger(__name__)

ChecksumAlgorithm = Literal["sha1", "sha256", "sha384", "sha512", "md5"]

SUPPORTED_ALGORITHMS: tuple[str, ...] = ("sha1", "sha256", "sha384", "sha512", "md5")


def compute_checksum(path: Path, algorithm: str = "sha256") -> str:
    """Compute the hex digest of a payload.

    A directory payload is digested as the sorted sequence of its relative
    paths and file contents, so the same tree always yields the same digest.

    Args:
        path: File or directory to digest
        algorithm: One of sha1, sha256, sha384, sha512, md5

    Returns:
        Lower-case hex digest

    Raises:
        ValueError: If the algorithm is not supported
    """
    algorithm = algorithm.lower().replace("-", "")
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")

    if path.is_file():
        return compute_file_hash(path, algorithm)

    hasher = hashlib.new(algorithm)
    for file_path in iter_files(path):
        hasher.update(file_path.relative_to(path).as_posix().encode("utf-8"))
        hasher.update(b"\0")
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                hasher.update(chunk)
    return hasher.hexdigest()


def checksums_match(expected: str, actual: str) -> bool:
    """Compare two hex digests case-insensitively in constant time."""
    return hmac.compare_digest(expected.strip().lower(), actual.strip().lower())


def verify_signature(path: Path, signature: str, key: str | bytes) -> bool:
    """Verify a publisher signature over a payload.

    Signatures are HMAC-SHA256 over the payload's sha256 digest, hex-encoded.

    Args:
        path: Payload file or directory
        signature: Hex signature from the release metadata
        key: Publisher signing key

    Returns:
        True if the signature is valid
    """
    if not signature or not key:
        logger.debug("Missing signature or key for %s", path)
        return False

    if isinstance(key, str):
        key = key.encode("utf-8")
    digest = compute_checksum(path, "sha256")
    expected = hmac.new(key, digest.encode("ascii"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def sign_payload(path: Path, key: str | bytes) -> str:
    """Produce the signature :func:`verify_signature` expects for a payload."""
    if isinstance(key, str):
        key = key.encode("utf-8")
    digest = compute_checksum(path, "sha256")
    return hmac.new(key, digest.encode("ascii"), hashlib.sha256).hexdigest()
