"""Configuration stored in the GSync database."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from .database import Database

logger = logging.getLogger(__name__)

# Google Drive alias for the root of "My Drive"
DEFAULT_ROOT_FOLDER = "root"

ENV_PREFIX = "GSYNC_"


@dataclass
class Config:
    """User configuration for GSync.

    Every field is optional so partial updates from the CLI can be merged
    into the stored configuration.
    """

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    input_files: Optional[str] = None
    drive_id: Optional[str] = None
    root_folder: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def is_complete(self) -> tuple[bool, str]:
        """Check that everything needed for a sync is present.

        Returns:
            Tuple of (complete, reason); reason is empty when complete
        """
        for name in ("client_id", "client_secret", "input_files"):
            if not getattr(self, name):
                return False, f"'{name}' is empty"
        return True, ""

    def merge(self, other: "Config") -> "Config":
        """Return a config with this config's values, falling back to *other*."""
        values = {}
        for f in fields(self):
            value = getattr(self, f.name)
            values[f.name] = value if value is not None else getattr(other, f.name)
        return Config(**values)

    @property
    def root_folder_id(self) -> str:
        return self.root_folder or DEFAULT_ROOT_FOLDER

    @property
    def input_paths(self) -> list[Path]:
        """Configured input files as absolute paths."""
        if not self.input_files:
            return []
        return [
            normalize_path(part)
            for part in self.input_files.split(",")
            if part.strip()
        ]

    @classmethod
    def from_env(cls) -> "Config":
        """Read ``GSYNC_*`` environment variables."""
        values = {}
        for f in fields(cls):
            values[f.name] = os.environ.get(ENV_PREFIX + f.name.upper()) or None
        return cls(**values)

    @classmethod
    def load(cls, database: Database) -> "Config":
        """Load the stored configuration (empty if nothing was stored yet)."""
        with database.connect() as conn:
            row = conn.execute(
                "SELECT client_id, client_secret, input_files, drive_id, root_folder "
                "FROM config"
            ).fetchone()
        if row is None:
            return cls()
        return cls(**{key: row[key] for key in row.keys()})

    def save(self, database: Database) -> None:
        """Replace the stored configuration with this one."""
        with database.connect() as conn:
            conn.execute("DELETE FROM config")
            conn.execute(
                "INSERT INTO config "
                "(client_id, client_secret, input_files, drive_id, root_folder) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    self.client_id,
                    self.client_secret,
                    self.input_files,
                    self.drive_id,
                    self.root_folder,
                ),
            )
        logger.debug("Configuration saved to %s", database.path)


def load_config(database: Database) -> Config:
    """Stored configuration with environment overrides applied."""
    return Config.from_env().merge(Config.load(database))


def normalize_path(value: str) -> Path:
    """Turn a configured input path into an absolute path.

    Relative paths are resolved against the current working directory.
    """
    path = Path(value.strip()).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    return Path(os.path.normpath(path))
