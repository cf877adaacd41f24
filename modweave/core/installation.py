"""Installation context for a single moddable game.

An :class:`Installation` is passed explicitly to every operation; there is no
process-wide "current installation".
"""

import threading
from pathlib import Path

from modweave.config.parser import (
    INSTALLATION_CONFIG_FILE,
    load_installation_config,
    save_installation_config,
)
from modweave.config.schemas import InstallationConfig

STATE_DIR_NAME = ".modweave"

_locks: dict[Path, threading.RLock] = {}
_locks_guard = threading.Lock()


def installation_lock(root: Path) -> threading.RLock:
    """Get the lock serializing mutations of the installation at ``root``.

    The same lock is returned for every path that resolves to the same
    directory, so different Installation objects for one game still
    exclude each other.
    """
    key = root.resolve()
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _locks[key] = lock
        return lock


class Installation:
    """A game installation managed by modweave.

    Layout below the game root:
    - ``<plugin_root>/<mod_dir>/``: enabled mod payloads
    - ``.modweave/disabled/<mod_dir>/``: disabled mod payloads
    - ``.modweave/installed.yaml``: installed mod state
    - ``.modweave/update_settings.json``: per-mod update settings
    - ``.modweave/shipped/<mod_id>/<version>/``: shipped config defaults
    - ``.modweave/restore_points/<id>/``: restore point snapshots
    """

    def __init__(self, root: Path, config: InstallationConfig | None = None):
        """Initialize an Installation.

        Args:
            root: Game installation directory
            config: Installation configuration (defaults if None)
        """
        self._root = root.resolve()
        self._config = config or InstallationConfig()

    @classmethod
    def load(cls, root: Path) -> "Installation":
        """Load an installation, reading modweave.yaml if present.

        Raises:
            FileNotFoundError: If the game directory does not exist
        """
        root = root.resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Game directory not found: {root}")
        return cls(root, load_installation_config(root))

    @classmethod
    def init(
        cls,
        root: Path,
        game_name: str | None = None,
        catalog: str | None = None,
    ) -> "Installation":
        """Initialize modweave for a game directory.

        Raises:
            FileExistsError: If modweave.yaml already exists
        """
        root = root.resolve()
        config_path = root / INSTALLATION_CONFIG_FILE
        if config_path.exists():
            raise FileExistsError(f"Installation already initialized: {config_path}")

        config = InstallationConfig(game_name=game_name or root.name, catalog=catalog)
        installation = cls(root, config)
        installation.save()
        installation.state_dir.mkdir(parents=True, exist_ok=True)
        installation.plugin_root.mkdir(parents=True, exist_ok=True)
        return installation

    def save(self) -> None:
        """Save the installation configuration to disk."""
        save_installation_config(self._root, self._config)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def config(self) -> InstallationConfig:
        return self._config

    @property
    def plugin_root(self) -> Path:
        """Live directory the loader runtime reads plugins from."""
        return self._root / self._config.plugin_root

    @property
    def config_root(self) -> Path:
        return self._root / self._config.config_root

    @property
    def state_dir(self) -> Path:
        return self._root / STATE_DIR_NAME

    @property
    def disabled_root(self) -> Path:
        return self.state_dir / "disabled"

    @property
    def shipped_root(self) -> Path:
        return self.state_dir / "shipped"

    @property
    def restore_points_root(self) -> Path:
        return self.state_dir / "restore_points"

    @property
    def cache_dir(self) -> Path:
        if self._config.cache_dir:
            return self._root / self._config.cache_dir
        return self.state_dir / "cache"

    @property
    def lock(self) -> threading.RLock:
        return installation_lock(self._root)

    def mod_directory(self, directory_name: str, enabled: bool = True) -> Path:
        """Get the payload directory of a mod in its enabled or disabled location."""
        base = self.plugin_root if enabled else self.disabled_root
        return base / directory_name

    def shipped_config_dir(self, mod_id: str, version: str) -> Path:
        """Directory holding the config defaults shipped with a mod version."""
        return self.shipped_root / mod_id / version

    def __repr__(self) -> str:
        return f"Installation({str(self._root)!r})"
