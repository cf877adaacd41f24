"""Release lookup interface and the catalog-backed base implementation."""

import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from modweave.config.parser import ConfigError, load_mod_manifest
from modweave.config.schemas import (
    Catalog,
    CatalogRelease,
    ModManifest,
    ReleaseInfo,
    UpdateChannel,
)
from modweave.core.errors import ReleaseLookupError
from modweave.utils.filesystem import extract_archive
from modweave.utils.version import SemVer

logger = logging.getLogger(__name__)

# A channel sees its own releases and every more stable one
CHANNEL_RANK: dict[str, int] = {"stable": 0, "beta": 1, "alpha": 2}


def channel_allows(subscribed: UpdateChannel, release_channel: str) -> bool:
    """Check whether a release published on ``release_channel`` is visible."""
    return CHANNEL_RANK.get(release_channel, 0) <= CHANNEL_RANK[subscribed]


class ReleaseLookup(ABC):
    """Source of published mod releases.

    The orchestrator is the only component that talks to a release lookup;
    the resolver receives its answers through plain callables.
    """

    @property
    @abstractmethod
    def protocol(self) -> str:
        """Get the protocol this client handles (e.g., "file", "https")."""
        ...

    @abstractmethod
    def get_latest_release(
        self, mod_id: str, channel: UpdateChannel = "stable"
    ) -> ReleaseInfo | None:
        """Get the newest release of a mod visible on a channel.

        Returns:
            ReleaseInfo, or None if the mod has no visible release
        """
        ...

    @abstractmethod
    def list_versions(self, mod_id: str) -> list[str]:
        """List every published version of a mod."""
        ...

    @abstractmethod
    def get_release(self, mod_id: str, version: str) -> ReleaseInfo | None:
        """Get one specific release of a mod."""
        ...

    @abstractmethod
    def get_descriptor(self, mod_id: str, version: str) -> ModManifest | None:
        """Get the manifest of a published release."""
        ...

    @abstractmethod
    def fetch_payload(self, release: ReleaseInfo, dest_dir: Path) -> Path:
        """Download a release payload into ``dest_dir``.

        Returns:
            Path to the downloaded archive or payload directory

        Raises:
            ReleaseLookupError: If the payload cannot be fetched
        """
        ...


class CatalogReleaseLookup(ReleaseLookup):
    """Release lookup answering from a catalog.json document.

    Subclasses provide the catalog and the payload transport.
    """

    def __init__(self) -> None:
        self._descriptors: dict[tuple[str, str], ModManifest] = {}

    @abstractmethod
    def get_catalog(self) -> Catalog:
        """Load the catalog.

        Raises:
            ReleaseLookupError: If the catalog cannot be read
        """
        ...

    def _releases(self, mod_id: str) -> list[CatalogRelease]:
        package = self.get_catalog().packages.get(mod_id)
        if package is None:
            return []
        return package.releases

    def _to_release_info(self, mod_id: str, release: CatalogRelease) -> ReleaseInfo:
        return ReleaseInfo(
            mod_id=mod_id,
            version=release.version,
            download_url=release.download_url,
            checksum=release.checksum,
            checksum_algorithm=release.checksum_algorithm,
            signature=release.signature,
            published_at=release.published_at,
            channel=release.channel,
        )

    def get_latest_release(
        self, mod_id: str, channel: UpdateChannel = "stable"
    ) -> ReleaseInfo | None:
        candidates = [r for r in self._releases(mod_id) if channel_allows(channel, r.channel)]
        if not candidates:
            logger.debug("No %s release of %s in catalog", channel, mod_id)
            return None
        latest = max(candidates, key=lambda r: SemVer.coerce(r.version))
        return self._to_release_info(mod_id, latest)

    def list_versions(self, mod_id: str) -> list[str]:
        return [r.version for r in self._releases(mod_id)]

    def get_release(self, mod_id: str, version: str) -> ReleaseInfo | None:
        for release in self._releases(mod_id):
            if release.version == version:
                return self._to_release_info(mod_id, release)
        return None

    def get_descriptor(self, mod_id: str, version: str) -> ModManifest | None:
        """Get a release manifest from the catalog, or from the payload itself.

        Payload manifests are read once and remembered for the lifetime of
        the client.
        """
        key = (mod_id, version)
        if key in self._descriptors:
            return self._descriptors[key]

        for release in self._releases(mod_id):
            if release.version != version:
                continue
            if release.manifest is not None:
                manifest = release.manifest
            else:
                manifest = self._read_payload_manifest(self._to_release_info(mod_id, release))
            self._descriptors[key] = manifest
            return manifest
        return None

    def _read_payload_manifest(self, release: ReleaseInfo) -> ModManifest:
        logger.debug("Reading manifest of %s@%s from payload", release.mod_id, release.version)
        with tempfile.TemporaryDirectory(prefix="modweave_manifest_") as tmp:
            tmp_path = Path(tmp)
            payload = self.fetch_payload(release, tmp_path / "download")
            try:
                payload_dir = payload
                if payload.is_file():
                    payload_dir = extract_archive(payload, tmp_path / "unpacked")
                return load_mod_manifest(payload_dir)
            except (ConfigError, ValueError, OSError) as e:
                raise ReleaseLookupError(
                    f"Cannot read manifest of {release.mod_id}@{release.version}: {e}",
                    url=release.download_url,
                ) from e
