"""
shelfdb Path Configuration

Centralized path management for all shelfdb data files.
The home directory comes from SHELFDB_HOME, defaulting to ~/.shelfdb.

Directory Structure:
~/.shelfdb/
├── <name>.sqlite3       # One file per database
├── backups/             # Snapshot JSON files written by the CLI
└── logs/                # Log files (opt-in)
"""

import os
import re
from pathlib import Path
from typing import Optional

from shelfdb.exceptions import ValidationError


_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class ShelfPaths:
    """
    Centralized path configuration for shelfdb.

    All paths are lazily resolved relative to the home directory.
    """

    HOME_ENV = "SHELFDB_HOME"
    DEFAULT_HOME = Path.home() / ".shelfdb"

    DATABASE_SUFFIX = ".sqlite3"

    BACKUPS_DIR = "backups"
    LOGS_DIR = "logs"

    def __init__(self, home: Optional[Path] = None):
        """
        Initialize paths configuration.

        Args:
            home: Home directory override. Defaults to $SHELFDB_HOME or ~/.shelfdb.
        """
        self._home = Path(home) if home is not None else None

    @property
    def home(self) -> Path:
        """Get the home directory."""
        if self._home is not None:
            return self._home
        env_home = os.getenv(self.HOME_ENV)
        if env_home:
            return Path(env_home)
        return self.DEFAULT_HOME

    @property
    def backups_dir(self) -> Path:
        """Get the backups directory path."""
        return self.home / self.BACKUPS_DIR

    @property
    def logs_dir(self) -> Path:
        """Get the logs directory path."""
        return self.home / self.LOGS_DIR

    def database_file(self, name: str) -> Path:
        """
        Get the file backing database `name`.

        Raises:
            ValidationError: If the name is not usable as a file name
        """
        if not name or not _NAME_RE.match(name) or name in (".", ".."):
            raise ValidationError(
                f"Invalid database name {name!r}: use letters, digits, '_', '.' or '-'"
            )
        return self.home / f"{name}{self.DATABASE_SUFFIX}"

    def list_databases(self):
        """Names of the databases present in the home directory."""
        if not self.home.exists():
            return []
        return sorted(p.name[: -len(self.DATABASE_SUFFIX)] for p in self.home.glob(f"*{self.DATABASE_SUFFIX}"))

    def ensure_dirs(self) -> None:
        """Create all necessary directories if they don't exist."""
        self.home.mkdir(parents=True, exist_ok=True)
        self.backups_dir.mkdir(exist_ok=True)
        self.logs_dir.mkdir(exist_ok=True)


# Global instance for convenience
_default_paths: Optional[ShelfPaths] = None


def get_paths(home: Optional[Path] = None) -> ShelfPaths:
    """
    Get the paths configuration.

    Args:
        home: Optional home directory override

    Returns:
        ShelfPaths instance
    """
    global _default_paths
    if home is not None:
        return ShelfPaths(home)
    if _default_paths is None:
        _default_paths = ShelfPaths()
    return _default_paths


def reset_paths() -> None:
    """Reset the global paths instance (useful for testing)."""
    global _default_paths
    _default_paths = None
