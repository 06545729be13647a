"""Durable mapping between local paths and Drive ids.

One record exists per local path that was synced successfully. The
``include`` flag is cleared at the start of every run and set again for
every path the run still finds; records left without the flag after the
walk belong to paths that disappeared locally and are swept.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..database import Database
from ..utils import decode_path, encode_path

logger = logging.getLogger(__name__)


@dataclass
class SyncRecord:
    """State of a local path at its last successful sync."""

    path: Path
    """Absolute local path"""

    remote_id: str
    """Drive id of the file or folder"""

    modification_time: int
    """Local modification time (epoch seconds) at the last sync"""

    include: bool = True
    """Whether the path was seen by the current run"""

    @classmethod
    def from_row(cls, row) -> "SyncRecord":
        return cls(
            path=decode_path(row["path"]),
            remote_id=row["id"],
            modification_time=row["modification_time"],
            include=bool(row["include"]),
        )


class SyncStateStore:
    """Sync records kept in the ``files`` table of the GSync database.

    Each method opens the database connection for its own duration only, so
    no connection is held while remote calls (and the token refreshes they
    may trigger) run.
    """

    def __init__(self, database: Database):
        self.database = database

    def get(self, path: Path) -> Optional[SyncRecord]:
        """Look up the record for a local path."""
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT path, id, modification_time, include FROM files "
                "WHERE path = ?",
                (encode_path(path),),
            ).fetchone()
        return SyncRecord.from_row(row) if row is not None else None

    def all_records(self) -> list[SyncRecord]:
        with self.database.connect() as conn:
            rows = conn.execute(
                "SELECT path, id, modification_time, include FROM files"
            ).fetchall()
        return sorted((SyncRecord.from_row(row) for row in rows), key=lambda r: r.path)

    def reset_include_flags(self) -> None:
        """Mark every record as not yet seen by the current run."""
        with self.database.connect() as conn:
            conn.execute("UPDATE files SET include = 0")

    def upsert(self, path: Path, remote_id: str, modification_time: int) -> None:
        """Create or replace the record for *path* and mark it as seen."""
        if not remote_id:
            raise ValueError(f"Refusing to store an empty remote id for {path}")
        with self.database.connect() as conn:
            conn.execute(
                "INSERT INTO files (path, id, modification_time, include) "
                "VALUES (?, ?, ?, 1) "
                "ON CONFLICT(path) DO UPDATE SET id = excluded.id, "
                "modification_time = excluded.modification_time, include = 1",
                (encode_path(path), remote_id, modification_time),
            )

    def touch(self, path: Path, modification_time: int) -> None:
        """Mark an existing record as seen, keeping its remote id."""
        with self.database.connect() as conn:
            conn.execute(
                "UPDATE files SET modification_time = ?, include = 1 WHERE path = ?",
                (modification_time, encode_path(path)),
            )

    def remove(self, path: Path) -> None:
        with self.database.connect() as conn:
            conn.execute("DELETE FROM files WHERE path = ?", (encode_path(path),))

    def stale_records(self) -> list[SyncRecord]:
        """Records not seen by the current run, parents before children."""
        with self.database.connect() as conn:
            rows = conn.execute(
                "SELECT path, id, modification_time, include FROM files "
                "WHERE include = 0"
            ).fetchall()
        return sorted((SyncRecord.from_row(row) for row in rows), key=lambda r: r.path)

    def sweep(
        self, on_stale: Optional[Callable[[SyncRecord], None]] = None
    ) -> list[SyncRecord]:
        """Remove records not seen by the current run.

        For every stale record *on_stale* runs first (deleting the remote
        entity) and the record is dropped only after it returns. If it
        raises, the record stays in the store so the next run retries it,
        and the exception propagates.

        Args:
            on_stale: Called with each stale record before it is removed

        Returns:
            The removed records
        """
        swept: list[SyncRecord] = []
        for record in self.stale_records():
            if on_stale is not None:
                on_stale(record)
            self.remove(record.path)
            swept.append(record)
        if swept:
            logger.debug("Swept %d stale record(s)", len(swept))
        return swept
