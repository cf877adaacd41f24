"""Local file system release catalog."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from urllib.parse import urlparse

from modweave.config.parser import CATALOG_FILE, ConfigError, load_catalog
from modweave.config.schemas import Catalog, ReleaseInfo
from modweave.core.errors import ReleaseLookupError
from modweave.registry.base import CatalogReleaseLookup
from modweave.utils.filesystem import copy_directory

logger = logging.getLogger(__name__)


def parse_file_url(url: str, base: Path | None = None) -> Path:
    """Convert a ``file://`` URL, ``file:`` URL or plain path to a Path.

    Relative paths are resolved against ``base`` (or the working directory).
    """
    if url.startswith("file://"):
        return Path(urlparse(url).path)
    if url.startswith("file:"):
        url = url[5:]
    path = Path(url).expanduser()
    if not path.is_absolute() and base is not None:
        path = base / path
    return path.resolve()


def copy_payload(source: Path, dest_dir: Path) -> Path:
    """Copy a local payload (archive or directory) into ``dest_dir``.

    Raises:
        ReleaseLookupError: If the source does not exist or cannot be copied
    """
    if not source.exists():
        raise ReleaseLookupError(f"Payload not found: {source}", url=str(source))

    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        if source.is_dir():
            return copy_directory(source, dest_dir / source.name)
        return Path(shutil.copy2(source, dest_dir / source.name))
    except OSError as e:
        raise ReleaseLookupError(f"Cannot copy payload {source}: {e}", url=str(source)) from e


class LocalCatalogClient(CatalogReleaseLookup):
    """Release lookup for a catalog directory on the local file system.

    The directory holds catalog.json; relative ``download_url`` entries are
    resolved against it.

    URL format:
    - file:///path/to/catalog
    - file:../relative/path
    - /plain/path
    """

    def __init__(self, url: str):
        """Initialize the local catalog client.

        Args:
            url: Local file URL (file:// or file:) or path
        """
        super().__init__()
        self._url = url
        self._path = parse_file_url(url)
        self._catalog: Catalog | None = None
        self._catalog_stamp: tuple[int, int] | None = None

        logger.info("Initializing local catalog client for %s", self._path)

    @property
    def protocol(self) -> str:
        return "file"

    @property
    def path(self) -> Path:
        return self._path

    def get_catalog(self) -> Catalog:
        """Load catalog.json, re-reading it whenever the file changes."""
        try:
            stat = (self._path / CATALOG_FILE).stat()
            stamp = (stat.st_mtime_ns, stat.st_size)
        except OSError:
            stamp = None
        if self._catalog is not None and stamp is not None and stamp == self._catalog_stamp:
            return self._catalog

        try:
            self._catalog = load_catalog(self._path)
        except ConfigError as e:
            raise ReleaseLookupError(str(e), url=self._url) from e
        self._catalog_stamp = stamp
        logger.debug("Loaded catalog %s", self._path / CATALOG_FILE)
        return self._catalog

    def fetch_payload(self, release: ReleaseInfo, dest_dir: Path) -> Path:
        logger.info(
            "Fetching %s@%s from %s", release.mod_id, release.version, release.download_url
        )
        if release.download_url.startswith("https://"):
            from modweave.registry.https import download_file

            filename = Path(urlparse(release.download_url).path).name or release.mod_id
            return download_file(release.download_url, dest_dir / filename)

        source = parse_file_url(release.download_url, base=self._path)
        return copy_payload(source, dest_dir)
