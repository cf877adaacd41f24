"""Release lookup factory and payload transport dispatch."""

import logging
from pathlib import Path
from urllib.parse import urlparse

from modweave.core.errors import ReleaseLookupError
from modweave.registry.base import ReleaseLookup
from modweave.registry.local import LocalCatalogClient, copy_payload, parse_file_url

logger = logging.getLogger(__name__)


class UnsupportedProtocolError(ReleaseLookupError):
    """Error when a catalog or payload URL uses an unsupported protocol."""

    def __init__(self, protocol: str, url: str):
        self.protocol = protocol
        super().__init__(f"Unsupported protocol: {protocol} (in {url})", url=url)


def _protocol(url: str) -> str:
    if url.startswith("file:"):
        return "file"
    scheme = urlparse(url).scheme.lower()
    # Windows drive letters parse as one-letter schemes
    if len(scheme) == 1:
        return "file"
    return scheme or "file"


def create_release_lookup(url: str, cache_dir: Path | None = None) -> ReleaseLookup:
    """Create a release lookup for a catalog URL.

    Args:
        url: Catalog location (file://, file:, plain path, or https://)
        cache_dir: Optional directory for caching remote catalogs

    Raises:
        UnsupportedProtocolError: If the protocol is not supported
    """
    logger.debug("Creating release lookup for URL: %s", url)
    protocol = _protocol(url)

    if protocol == "file":
        return LocalCatalogClient(url)
    if protocol == "https":
        from modweave.registry.https import HttpsCatalogClient

        return HttpsCatalogClient(url, cache_dir=cache_dir)

    logger.error("Unsupported protocol: %s in URL %s", protocol, url)
    raise UnsupportedProtocolError(protocol, url)


def fetch_location(location: str, dest_dir: Path) -> Path:
    """Fetch a payload given only its location.

    Used for payloads that are not published through a catalog, such as a
    manifest's ``payload_location`` or a path given on the command line.

    Returns:
        Path to the fetched archive or directory inside ``dest_dir``

    Raises:
        ReleaseLookupError: If the payload cannot be fetched
    """
    protocol = _protocol(location)
    if protocol == "file":
        return copy_payload(parse_file_url(location), dest_dir)
    if protocol == "https":
        from modweave.registry.https import download_file

        filename = Path(urlparse(location).path).name or "payload"
        return download_file(location, dest_dir / filename)
    raise UnsupportedProtocolError(protocol, location)


def is_local_source(source: str) -> bool:
    """Check if a source string names a local file or directory."""
    if source.startswith("file:"):
        return True
    if source.startswith(("./", "../", "/", "~")):
        return True
    # Windows absolute path
    return len(source) > 2 and source[1] == ":" and source[2] in ("/", "\\")
