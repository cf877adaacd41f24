"""Tests for modweave.registry.https module."""

import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from modweave.core.errors import ReleaseLookupError
from modweave.registry.https import HttpsCatalogClient, download_file, http_get

CATALOG = {
    "version": "1.0",
    "packages": {
        "mod": {
            "releases": [
                {"version": "1.0.0", "download_url": "files/mod-1.0.0.zip"},
                {"version": "1.1.0", "download_url": "https://cdn.example.com/mod-1.1.0.zip"},
            ]
        }
    },
}


def response(body: bytes) -> MagicMock:
    mock = MagicMock()
    mock.__enter__.return_value.read.return_value = body
    return mock


class TestHttpGet:
    """Tests for http_get()."""

    @patch("modweave.registry.https.urlopen")
    def test_success_with_headers(self, mock_urlopen):
        """Headers are sent and the body returned."""
        mock_urlopen.return_value = response(b"data")
        body = http_get("https://mods.example.com/x", headers={"Authorization": "Bearer t"})
        assert body == b"data"
        request = mock_urlopen.call_args[0][0]
        assert request.get_header("Authorization") == "Bearer t"

    @patch("modweave.registry.https.urlopen")
    def test_http_error(self, mock_urlopen):
        """HTTP errors carry the status code."""
        mock_urlopen.side_effect = HTTPError("https://x", 404, "Not Found", {}, None)
        with pytest.raises(ReleaseLookupError, match="HTTP 404") as exc_info:
            http_get("https://mods.example.com/x")
        assert exc_info.value.status_code == 404

    @patch("modweave.registry.https.urlopen")
    def test_connection_error(self, mock_urlopen):
        """Connection failures raise ReleaseLookupError."""
        mock_urlopen.side_effect = URLError("refused")
        with pytest.raises(ReleaseLookupError, match="Failed to connect"):
            http_get("https://mods.example.com/x")

    @patch("modweave.registry.https.urlopen")
    def test_timeout(self, mock_urlopen):
        """Timeouts raise ReleaseLookupError."""
        mock_urlopen.side_effect = TimeoutError()
        with pytest.raises(ReleaseLookupError, match="timed out"):
            http_get("https://mods.example.com/x")


class TestDownloadFile:
    """Tests for download_file()."""

    def test_refuses_plain_http(self, temp_dir):
        """Only HTTPS downloads are allowed."""
        with pytest.raises(ReleaseLookupError, match="non-HTTPS"):
            download_file("http://mods.example.com/mod.zip", temp_dir / "mod.zip")

    @patch("modweave.registry.https.urlopen")
    def test_writes_body(self, mock_urlopen, temp_dir):
        """The body is written to the destination."""
        mock_urlopen.return_value = response(b"zip")
        dest = download_file("https://mods.example.com/mod.zip", temp_dir / "dl" / "mod.zip")
        assert dest.read_bytes() == b"zip"


class TestHttpsCatalogClient:
    """Tests for HttpsCatalogClient."""

    def test_rejects_non_https(self, temp_dir):
        """Only HTTPS catalog URLs are accepted."""
        with pytest.raises(ReleaseLookupError, match="expected https"):
            HttpsCatalogClient("http://mods.example.com/", cache_dir=temp_dir)

    def test_catalog_url_forms(self, temp_dir):
        """The URL may name the directory or catalog.json itself."""
        client = HttpsCatalogClient("https://mods.example.com/game", cache_dir=temp_dir)
        assert client.base_url == "https://mods.example.com/game/"
        url = "https://mods.example.com/game/catalog.json"
        client = HttpsCatalogClient(url, cache_dir=temp_dir)
        assert client.base_url == "https://mods.example.com/game/"

    @patch("modweave.registry.https.urlopen")
    def test_catalog_is_cached(self, mock_urlopen, temp_dir):
        """A second client within the TTL does not hit the network."""
        mock_urlopen.return_value = response(json.dumps(CATALOG).encode())
        first = HttpsCatalogClient("https://mods.example.com/", cache_dir=temp_dir)
        assert first.list_versions("mod") == ["1.0.0", "1.1.0"]

        second = HttpsCatalogClient("https://mods.example.com/", cache_dir=temp_dir)
        assert second.list_versions("mod") == ["1.0.0", "1.1.0"]
        assert mock_urlopen.call_count == 1

    @patch("modweave.registry.https.urlopen")
    def test_expired_cache_refetches(self, mock_urlopen, temp_dir):
        """The same client sees a changed catalog once the cached copy expires."""
        updated = json.loads(json.dumps(CATALOG))
        updated["packages"]["mod"]["releases"].append(
            {"version": "1.2.0", "download_url": "files/mod-1.2.0.zip"}
        )
        mock_urlopen.side_effect = [
            response(json.dumps(CATALOG).encode()),
            response(json.dumps(updated).encode()),
        ]
        client = HttpsCatalogClient(
            "https://mods.example.com/", cache_dir=temp_dir, ttl_seconds=0
        )
        assert client.list_versions("mod") == ["1.0.0", "1.1.0"]

        assert client.list_versions("mod") == ["1.0.0", "1.1.0", "1.2.0"]
        assert mock_urlopen.call_count == 2

    @patch("modweave.registry.https.urlopen")
    def test_cached_catalog_reused_by_one_client(self, mock_urlopen, temp_dir):
        """Repeated reads within the TTL do not hit the network."""
        mock_urlopen.return_value = response(json.dumps(CATALOG).encode())
        client = HttpsCatalogClient("https://mods.example.com/", cache_dir=temp_dir)
        first = client.get_catalog()
        assert client.get_catalog() is first
        assert mock_urlopen.call_count == 1

    @patch("modweave.registry.https.urlopen")
    def test_invalid_catalog_json(self, mock_urlopen, temp_dir):
        """Invalid JSON raises ReleaseLookupError."""
        mock_urlopen.return_value = response(b"<html>")
        client = HttpsCatalogClient("https://mods.example.com/", cache_dir=temp_dir)
        with pytest.raises(ReleaseLookupError, match="Invalid JSON"):
            client.get_catalog()

    def test_resolve_url(self, temp_dir):
        """Relative download URLs resolve against the catalog; absolute ones stay."""
        client = HttpsCatalogClient("https://mods.example.com/game/", cache_dir=temp_dir)
        assert client.resolve_url("files/mod.zip") == "https://mods.example.com/game/files/mod.zip"
        absolute = "https://cdn.example.com/m.zip"
        assert client.resolve_url(absolute) == absolute

    @patch("modweave.registry.https.urlopen")
    def test_fetch_payload(self, mock_urlopen, temp_dir):
        """Payloads download into the destination under their URL's file name."""
        mock_urlopen.side_effect = [response(json.dumps(CATALOG).encode()), response(b"zip")]
        client = HttpsCatalogClient("https://mods.example.com/", cache_dir=temp_dir / "cache")
        release = client.get_release("mod", "1.0.0")

        path = client.fetch_payload(release, temp_dir / "dl")

        assert path == temp_dir / "dl" / "mod-1.0.0.zip"
        assert path.read_bytes() == b"zip"
        assert mock_urlopen.call_args[0][0].full_url == (
            "https://mods.example.com/files/mod-1.0.0.zip"
        )
