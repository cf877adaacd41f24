"""Filesystem utilities for modweave."""

import hashlib
import os
import shutil
import tarfile
import tempfile
import zipfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath


def copy_directory(src: Path, dest: Path) -> Path:
    """Copy a directory recursively, replacing any existing destination.

    Args:
        src: Source directory path
        dest: Destination directory path

    Returns:
        Path to the copied directory
    """
    if dest.exists():
        shutil.rmtree(dest)
    shutil.copytree(src, dest)
    return dest


def remove_directory(path: Path) -> bool:
    """Remove a directory and its contents.

    Returns:
        True if the directory was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


def make_temp_directory(prefix: str = "modweave_", parent: Path | None = None) -> Path:
    """Create an isolated temporary directory, optionally below ``parent``."""
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=prefix, dir=parent))


def normalize_relpath(path: str | Path) -> str:
    """Normalize a plugin-relative path for comparison.

    Separators become ``/``, a leading ``./`` is stripped and the result
    is case-folded, since the loader runtime treats paths case-insensitively.
    """
    text = str(path).replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return str(PurePosixPath(text)).casefold()


def iter_files(root: Path) -> Iterator[Path]:
    """Yield every regular file below ``root`` in a stable order."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def prune_empty_dirs(start: Path, stop: Path) -> None:
    """Remove empty directories from ``start`` upwards, stopping at ``stop``."""
    parent = start
    try:
        while parent != stop and stop in parent.parents:
            if parent.is_dir() and not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent
            else:
                break
    except OSError:
        pass


def _check_member_path(name: str) -> None:
    member_path = PurePosixPath(name.replace("\\", "/"))
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ValueError(f"Unsafe path in archive: {name}")


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a zip or gzipped tarball to a destination directory.

    Args:
        archive_path: Path to the .zip, .tar.gz or .tgz file
        dest_dir: Destination directory

    Returns:
        Path to the extracted content directory. If the archive contains a
        single top-level directory, that directory is returned.

    Raises:
        ValueError: If the archive is of an unknown type or contains unsafe paths
    """
    dest_dir.mkdir(parents=True, exist_ok=True)

    if zipfile.is_zipfile(archive_path):
        with zipfile.ZipFile(archive_path) as zf:
            # Security: prevent path traversal
            for name in zf.namelist():
                _check_member_path(name)
            zf.extractall(dest_dir)
    elif tarfile.is_tarfile(archive_path):
        with tarfile.open(archive_path, "r:*") as tar:
            for member in tar.getmembers():
                _check_member_path(member.name)
                if member.issym() or member.islnk():
                    raise ValueError(f"Links are not allowed in mod archives: {member.name}")
            tar.extractall(dest_dir)
    else:
        raise ValueError(f"Unsupported archive format: {archive_path.name}")

    # Ignore macOS metadata files (._*) and other hidden files
    contents = [
        p for p in dest_dir.iterdir() if not p.name.startswith("._") and not p.name.startswith(".")
    ]
    if len(contents) == 1 and contents[0].is_dir():
        return contents[0]
    return dest_dir


def create_zip(source_dir: Path, zip_path: Path) -> Path:
    """Create a zip archive from a directory's contents."""
    zip_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zf:
        for file_path in iter_files(source_dir):
            zf.write(file_path, file_path.relative_to(source_dir).as_posix())
    return zip_path


def compute_file_hash(path: Path, algorithm: str = "sha256") -> str:
    """Compute the hash of a file.

    Args:
        path: Path to the file
        algorithm: Hash algorithm name understood by hashlib

    Returns:
        Hex-encoded hash string
    """
    hasher = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_tree(root: Path) -> dict[str, str]:
    """Map every file below ``root`` (as a posix relative path) to its sha256."""
    return {
        file_path.relative_to(root).as_posix(): compute_file_hash(file_path)
        for file_path in iter_files(root)
    }


def write_text_atomic(path: Path, content: str) -> None:
    """Write text to a file via a sibling temp file and an atomic replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
