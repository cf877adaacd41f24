"""Shared fixtures for modweave tests."""

import json
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from modweave.core.installation import Installation
from modweave.utils.filesystem import create_zip, remove_directory
from modweave.utils.verification import compute_checksum


def write_payload(
    dest: Path,
    mod_id: str,
    version: str,
    files: dict[str, str | bytes] | None = None,
    **manifest: Any,
) -> Path:
    """Write a mod payload directory: manifest.json plus the given files.

    ``files`` maps payload-relative paths to content. A payload without files
    gets a single ``<mod_id>.dll``.
    """
    dest.mkdir(parents=True, exist_ok=True)
    data = {"id": mod_id, "name": mod_id, "version": version, **manifest}
    (dest / "manifest.json").write_text(json.dumps(data, indent=2), encoding="utf-8")

    if files is None:
        files = {f"{mod_id}.dll": f"{mod_id} {version}"}
    for relpath, content in files.items():
        path = dest / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    return dest


class CatalogBuilder:
    """Builds a local release catalog directory for tests.

    Payloads live under ``payloads/`` next to catalog.json and are referenced
    by relative download URLs.
    """

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.packages: dict[str, dict[str, Any]] = {}
        self.save()

    @property
    def url(self) -> str:
        return str(self.root)

    def add(
        self,
        mod_id: str,
        version: str,
        files: dict[str, str | bytes] | None = None,
        channel: str = "stable",
        archive: bool = True,
        checksum: bool = True,
        embed_manifest: bool = False,
        **manifest: Any,
    ) -> Path:
        """Publish a release and return the path of its payload."""
        payload_dir = self.root / "payloads" / f"{mod_id}-{version}"
        write_payload(payload_dir, mod_id, version, files, **manifest)

        payload = payload_dir
        if archive:
            payload = create_zip(payload_dir, payload_dir.parent / f"{payload_dir.name}.zip")
            remove_directory(payload_dir)

        release: dict[str, Any] = {
            "version": version,
            "channel": channel,
            "download_url": payload.relative_to(self.root).as_posix(),
        }
        if checksum:
            release["checksum"] = compute_checksum(payload)
        if embed_manifest:
            release["manifest"] = {"id": mod_id, "name": mod_id, "version": version, **manifest}

        package = self.packages.setdefault(mod_id, {"releases": []})
        package["releases"].append(release)
        self.save()
        return payload

    def release(self, mod_id: str, version: str) -> dict[str, Any]:
        for release in self.packages[mod_id]["releases"]:
            if release["version"] == version:
                return release
        raise KeyError(f"{mod_id}@{version}")

    def save(self) -> None:
        data = {"version": "1.0", "packages": self.packages}
        (self.root / "catalog.json").write_text(json.dumps(data, indent=2), encoding="utf-8")


def snapshot_tree(root: Path) -> dict[str, bytes]:
    """Map every file below ``root`` to its bytes, skipping restore points."""
    result = {}
    for path in sorted(root.rglob("*")):
        relpath = path.relative_to(root).as_posix()
        if path.is_file() and "restore_points" not in relpath:
            result[relpath] = path.read_bytes()
    return result


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="modweave_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def game_dir(temp_dir: Path) -> Path:
    """Create an empty game directory."""
    path = temp_dir / "game"
    path.mkdir()
    return path


@pytest.fixture
def catalog(temp_dir: Path) -> CatalogBuilder:
    """An empty local release catalog."""
    return CatalogBuilder(temp_dir / "catalog")


@pytest.fixture
def installation(game_dir: Path, catalog: CatalogBuilder) -> Installation:
    """An initialized installation pointing at the local catalog."""
    return Installation.init(game_dir, game_name="Test Game", catalog=catalog.url)


@pytest.fixture
def make_payload():
    """Factory writing mod payload directories."""
    return write_payload


@pytest.fixture
def tree_snapshot():
    """Function mapping every file below a root to its bytes."""
    return snapshot_tree
