"""File cache for catalog documents fetched over the network."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path

logger = logging.getLogger(__name__)


class CatalogCache:
    """Time-limited cache of downloaded documents keyed by URL.

    Cache structure:
        cache_dir/
            index.json       # url -> {file, fetched_at}
            <url-hash>.bin   # cached response bodies
    """

    DEFAULT_TTL_SECONDS = 3600

    def __init__(self, cache_dir: Path, ttl_seconds: int | None = None):
        self._cache_dir = cache_dir
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else self.DEFAULT_TTL_SECONDS
        self._index_file = cache_dir / "index.json"
        self._index: dict[str, dict[str, float | str]] = self._read_index()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def _read_index(self) -> dict[str, dict[str, float | str]]:
        if not self._index_file.exists():
            return {}
        try:
            with open(self._index_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable cache index %s", self._index_file)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_index(self) -> None:
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        with open(self._index_file, "w", encoding="utf-8") as f:
            json.dump(self._index, f, indent=2)

    @staticmethod
    def _key(url: str) -> str:
        return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]

    def get(self, url: str) -> bytes | None:
        """Get a cached body, or None when missing or older than the TTL."""
        entry = self._index.get(url)
        if entry is None:
            logger.debug("Cache miss for %s", url)
            return None

        path = self._cache_dir / str(entry["file"])
        if time.time() - float(entry["fetched_at"]) >= self._ttl_seconds or not path.exists():
            logger.debug("Cache entry stale for %s", url)
            self.invalidate(url)
            return None

        logger.debug("Cache hit for %s", url)
        return path.read_bytes()

    def put(self, url: str, body: bytes) -> None:
        """Store a response body for a URL."""
        filename = f"{self._key(url)}.bin"
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        (self._cache_dir / filename).write_bytes(body)
        self._index[url] = {"file": filename, "fetched_at": time.time()}
        self._write_index()

    def invalidate(self, url: str) -> None:
        """Drop a URL from the cache."""
        entry = self._index.pop(url, None)
        if entry is None:
            return
        (self._cache_dir / str(entry["file"])).unlink(missing_ok=True)
        self._write_index()
