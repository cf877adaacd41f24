"""modweave - install, update and roll back mods of a game installation."""

__version__ = "0.1.0"
