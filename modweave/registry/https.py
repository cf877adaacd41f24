"""HTTPS release catalog."""

from __future__ import annotations

import json
import logging
import ssl
import tempfile
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin, urlparse
from urllib.request import Request, urlopen

from modweave.config.parser import ConfigError, parse_catalog
from modweave.config.schemas import Catalog, ReleaseInfo
from modweave.core.errors import ReleaseLookupError
from modweave.registry.base import CatalogReleaseLookup
from modweave.registry.cache import CatalogCache

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30  # seconds


def http_get(
    url: str,
    headers: dict[str, str] | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    context: ssl.SSLContext | None = None,
) -> bytes:
    """GET a URL and return the response body.

    Raises:
        ReleaseLookupError: If the request fails
    """
    logger.debug("GET %s", url)
    request = Request(url, method="GET")
    for key, value in (headers or {}).items():
        request.add_header(key, value)

    context = context or ssl.create_default_context()
    try:
        with urlopen(request, timeout=timeout, context=context) as response:
            body: bytes = response.read()
    except HTTPError as e:
        logger.error("HTTP error %d: %s for %s", e.code, e.reason, url)
        raise ReleaseLookupError(
            f"HTTP {e.code}: {e.reason} for {url}", url=url, status_code=e.code
        ) from e
    except URLError as e:
        logger.error("Failed to connect to %s: %s", url, e.reason)
        raise ReleaseLookupError(f"Failed to connect to {url}: {e.reason}", url=url) from e
    except TimeoutError as e:
        logger.error("Request timed out for %s", url)
        raise ReleaseLookupError(f"Request timed out for {url}", url=url) from e

    logger.debug("Received %d bytes from %s", len(body), url)
    return body


def download_file(
    url: str,
    dest: Path,
    headers: dict[str, str] | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> Path:
    """Download a URL to a local file.

    Raises:
        ReleaseLookupError: If the download fails
    """
    if urlparse(url).scheme != "https":
        raise ReleaseLookupError(f"Refusing non-HTTPS download: {url}", url=url)

    body = http_get(url, headers=headers, timeout=timeout)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(body)
    except OSError as e:
        raise ReleaseLookupError(f"Cannot write {dest}: {e}", url=url) from e
    return dest


class HttpsCatalogClient(CatalogReleaseLookup):
    """Release lookup for a catalog published over HTTPS.

    The base URL points to a directory containing catalog.json; relative
    ``download_url`` entries are resolved against it. The catalog document is
    cached on disk for ``ttl_seconds``.

    Supports optional request headers (Bearer tokens, Basic auth, etc.).
    """

    def __init__(
        self,
        url: str,
        cache_dir: Path | None = None,
        headers: dict[str, str] | None = None,
        timeout: int | None = None,
        ttl_seconds: int | None = None,
    ):
        """Initialize the HTTPS catalog client.

        Args:
            url: HTTPS URL of the catalog directory or of catalog.json itself
            cache_dir: Directory for the catalog cache
            headers: Optional HTTP headers
            timeout: Request timeout in seconds (default: 30)
            ttl_seconds: Catalog cache lifetime

        Raises:
            ReleaseLookupError: If the URL is not HTTPS
        """
        super().__init__()
        parsed = urlparse(url)
        if parsed.scheme != "https":
            raise ReleaseLookupError(
                f"Invalid URL scheme: {parsed.scheme} (expected https)", url=url
            )

        if url.endswith(".json"):
            self._catalog_url = url
            self._base_url = url.rsplit("/", 1)[0] + "/"
        else:
            self._base_url = url.rstrip("/") + "/"
            self._catalog_url = urljoin(self._base_url, "catalog.json")

        self._headers = headers or {}
        self._timeout = timeout or DEFAULT_TIMEOUT
        self._ssl_context = ssl.create_default_context()
        if cache_dir is None:
            cache_dir = Path(tempfile.gettempdir()) / "modweave-cache" / "https"
        self._cache = CatalogCache(cache_dir, ttl_seconds)
        self._catalog: Catalog | None = None
        self._catalog_body: bytes | None = None

        logger.info("Initializing HTTPS catalog client for %s", self._catalog_url)

    @property
    def protocol(self) -> str:
        return "https"

    @property
    def base_url(self) -> str:
        return self._base_url

    def get_catalog(self) -> Catalog:
        """Fetch catalog.json, going to the network once the cached copy expires."""
        body = self._cache.get(self._catalog_url)
        if body is None:
            body = http_get(
                self._catalog_url,
                headers=self._headers,
                timeout=self._timeout,
                context=self._ssl_context,
            )
            fetched = True
        else:
            fetched = False
        if self._catalog is not None and body == self._catalog_body:
            return self._catalog

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._cache.invalidate(self._catalog_url)
            raise ReleaseLookupError(
                f"Invalid JSON in catalog.json: {e}", url=self._catalog_url
            ) from e
        if not isinstance(data, dict):
            raise ReleaseLookupError("catalog.json must contain an object", url=self._catalog_url)

        try:
            self._catalog = parse_catalog(data)
        except ConfigError as e:
            raise ReleaseLookupError(str(e), url=self._catalog_url) from e
        self._catalog_body = body

        if fetched:
            self._cache.put(self._catalog_url, body)
        return self._catalog

    def resolve_url(self, download_url: str) -> str:
        """Resolve a catalog download URL against the catalog location."""
        return urljoin(self._base_url, download_url)

    def fetch_payload(self, release: ReleaseInfo, dest_dir: Path) -> Path:
        url = self.resolve_url(release.download_url)
        logger.info("Downloading %s@%s from %s", release.mod_id, release.version, url)
        filename = Path(urlparse(url).path).name or f"{release.mod_id}-{release.version}.zip"
        return download_file(url, dest_dir / filename, headers=self._headers, timeout=self._timeout)
