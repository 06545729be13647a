"""Access to the local sqlite database shared by config, tokens and sync state.

The database only tolerates a single open connection at a time. Every
consumer goes through :meth:`Database.connect`, which hands out the
connection for the duration of a ``with`` block and refuses to open a second
one while the first is still alive.
"""

import logging
import os
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .exceptions import GSyncStorageError

logger = logging.getLogger(__name__)

DATABASE_FILE_NAME = "data.db3"

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS user ("
    "access_token TEXT, refresh_token TEXT, expiry INTEGER)",
    "CREATE TABLE IF NOT EXISTS config ("
    "client_id TEXT, client_secret TEXT, input_files TEXT, "
    "drive_id TEXT, root_folder TEXT)",
    "CREATE TABLE IF NOT EXISTS files ("
    "path TEXT PRIMARY KEY, id TEXT NOT NULL, "
    "modification_time INTEGER NOT NULL, include INTEGER NOT NULL DEFAULT 1)",
)


def get_home_dir() -> Path:
    """Return the GSync home directory (``~/.gsync`` unless GSYNC_HOME is set)."""
    home = os.environ.get("GSYNC_HOME")
    if home:
        return Path(home)
    return Path.home() / ".gsync"


class Database:
    """Owner of the one allowed sqlite connection."""

    def __init__(self, path: Optional[Path] = None):
        """Initialize the database.

        Args:
            path: Database file. Defaults to ``<home>/data.db3``; the parent
                directory is created when missing.
        """
        if path is None:
            path = get_home_dir() / DATABASE_FILE_NAME
        self.path = path
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise GSyncStorageError(
                f"Failed to create database folder at {self.path.parent}: {e}"
            ) from e
        self._init_schema()

    def _init_schema(self) -> None:
        with self.connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    @property
    def in_use(self) -> bool:
        """True while a connection is open."""
        return self._lock.locked()

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Open the connection for the duration of a ``with`` block.

        The transaction is committed when the block exits normally and
        rolled back otherwise. sqlite errors are raised as
        :class:`GSyncStorageError`.

        Raises:
            GSyncStorageError: If another connection is still open
        """
        if not self._lock.acquire(blocking=False):
            raise GSyncStorageError(
                "A database connection is already open; close it before "
                "opening another one"
            )
        try:
            try:
                conn = sqlite3.connect(self.path)
            except sqlite3.Error as e:
                raise GSyncStorageError(
                    f"Failed to open database {self.path}: {e}"
                ) from e
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise GSyncStorageError(f"Database operation failed: {e}") from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()
        finally:
            self._lock.release()
