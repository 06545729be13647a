"""Reconciliation engine mirroring local trees onto Google Drive."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..api import DriveClient
from ..exceptions import GSyncError, GSyncIOError, GSyncNotFoundError
from ..output import OutputFormatter
from ..utils import get_modification_time
from .ignore import IGNORE_FILE_NAME
from .state import SyncRecord, SyncStateStore
from .tree import Directory, File, Node, build_trees

logger = logging.getLogger(__name__)


@dataclass
class _ResolvedFolder:
    """A remote folder on the path from the sync root to the current node.

    ``node`` is None for the configured root folder, which is never
    recreated.
    """

    node: Optional[Directory]
    remote_id: str


class SyncEngine:
    """Mirrors local trees onto Drive, one node at a time.

    Every node is first looked up in the state store. Known directories are
    reused, known files are re-uploaded only when their modification time
    increased, and unknown nodes are created remotely. After the walk, records
    the walk did not confirm are swept and their remote entities deleted.
    """

    def __init__(
        self,
        client: DriveClient,
        state: SyncStateStore,
        output: Optional[OutputFormatter] = None,
        root_folder_id: str = "root",
        ignore_file_name: str = IGNORE_FILE_NAME,
    ):
        """Initialize sync engine.

        Args:
            client: Drive API client
            state: Store of sync records
            output: Output formatter for displaying progress/status
            root_folder_id: Drive folder the configured inputs are synced into
            ignore_file_name: Name of the ignore files to honor
        """
        self.client = client
        self.state = state
        self.output = output or OutputFormatter()
        self.root_folder_id = root_folder_id
        self.ignore_file_name = ignore_file_name
        self.dry_run = False
        self.stats = self._create_empty_stats()
        self._seen: set[Path] = set()

    def _create_empty_stats(self) -> dict:
        return {
            "folders_created": 0,
            "folders_adopted": 0,
            "uploads": 0,
            "updates": 0,
            "skips": 0,
            "deletes": 0,
        }

    # =========================
    # Full run
    # =========================

    def sync(self, roots: Iterable[Path], dry_run: bool = False) -> dict:
        """Sync every root into the root folder, then delete vanished entries.

        Args:
            roots: Local files or directories to mirror
            dry_run: If True, only report what would be done

        Returns:
            Dictionary with sync statistics

        Examples:
            >>> engine = SyncEngine(client, SyncStateStore(database))
            >>> stats = engine.sync([Path("/home/user/notes")])
            >>> print(f"Uploaded {stats['uploads']} files")
        """
        self.dry_run = dry_run
        self.stats = self._create_empty_stats()
        self._seen = set()
        roots = list(roots)

        if dry_run:
            self.output.info("Dry run: No changes will be made")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet or self.output.json_output,
        ) as progress:
            task = progress.add_task("Traversing local files...", total=None)
            nodes = build_trees(roots, self.ignore_file_name)
            count = sum(node.count_files() for node in nodes)
            progress.update(task, description=f"Found {count} local file(s)")

        self.output.info("All directories traversed. Beginning sync now.")

        if not dry_run:
            self.state.reset_include_flags()

        self.reconcile(nodes, self.root_folder_id)
        self.sweep()

        self._display_summary()
        return self.stats

    # =========================
    # Reconciliation
    # =========================

    def reconcile(self, nodes: Iterable[Node], parent_id: str) -> None:
        """Sync nodes (and everything below them) into a remote folder.

        Errors abort the walk and propagate with the failing local path
        attached. The only error handled here is a missing parent folder
        during folder creation, which is repaired and retried once.
        """
        chain = [_ResolvedFolder(node=None, remote_id=parent_id)]
        for node in nodes:
            self._sync_node(node, chain)

    def _sync_node(self, node: Node, chain: list[_ResolvedFolder]) -> None:
        try:
            if isinstance(node, Directory):
                self._sync_directory(node, chain)
            else:
                self._sync_file(node, chain[-1].remote_id)
        except GSyncError as e:
            if e.path is None:
                e.path = node.local_path
            raise

    def _sync_directory(
        self, directory: Directory, chain: list[_ResolvedFolder]
    ) -> None:
        path = directory.local_path
        mtime = self._modification_time(path)
        self._seen.add(path)

        record = self.state.get(path)
        if record is not None:
            logger.debug("Directory '%s' is known as %s", path, record.remote_id)
            if not self.dry_run:
                self.state.touch(path, mtime)
            folder_id = record.remote_id
        else:
            folder_id = self._resolve_folder(directory, chain, mtime)

        child_chain = chain + [_ResolvedFolder(node=directory, remote_id=folder_id)]
        for child in directory.children:
            self._sync_node(child, child_chain)

    def _resolve_folder(
        self, directory: Directory, chain: list[_ResolvedFolder], mtime: int
    ) -> str:
        """Find or create the remote folder for a directory without a record."""
        parent_id = chain[-1].remote_id

        if self.dry_run:
            self.output.info(f"Would create directory '{directory.name}'")
            self.stats["folders_created"] += 1
            return f"<new folder {directory.name}>"

        logger.debug("Querying Drive for directory '%s'", directory.name)
        existing = self.client.find_folder(directory.name, parent_id)
        if existing is not None:
            logger.info("Adopting existing folder '%s' (%s)", directory.name, existing.id)
            folder_id = existing.id
            self.stats["folders_adopted"] += 1
        else:
            self.output.info(f"Creating directory '{directory.name}'")
            folder_id = self._create_folder(directory, chain)
            self.stats["folders_created"] += 1

        self.state.upsert(directory.local_path, folder_id, mtime)
        return folder_id

    def _create_folder(
        self, directory: Directory, chain: list[_ResolvedFolder]
    ) -> str:
        """Create a folder under ``chain[-1]``, repairing a missing parent once."""
        try:
            return self.client.create_folder(directory.name, chain[-1].remote_id)
        except GSyncNotFoundError:
            parent = chain[-1]
            if parent.node is None:
                raise
            logger.warning(
                "Parent folder of '%s' no longer exists on Drive, recreating it",
                directory.local_path,
            )
            self._repair_folder(parent.node, chain)
            return self.client.create_folder(directory.name, chain[-1].remote_id)

    def _repair_folder(
        self, directory: Directory, chain: list[_ResolvedFolder]
    ) -> None:
        """Re-resolve *directory* under its own parent and store the new id.

        Walks further up the chain when the grandparent is missing too.
        """
        folder = chain[-1]
        parent_chain = chain[:-1]

        existing = self.client.find_folder(directory.name, parent_chain[-1].remote_id)
        if existing is not None:
            new_id = existing.id
        else:
            new_id = self._create_folder(directory, parent_chain)
            self.stats["folders_created"] += 1

        self.state.upsert(
            directory.local_path,
            new_id,
            self._modification_time(directory.local_path),
        )
        logger.info(
            "Folder for '%s' moved from %s to %s",
            directory.local_path,
            folder.remote_id,
            new_id,
        )
        folder.remote_id = new_id

    def _sync_file(self, file: File, parent_id: str) -> None:
        path = file.local_path
        mtime = self._modification_time(path)
        self._seen.add(path)

        record = self.state.get(path)
        if record is None:
            if self.dry_run:
                self.output.info(f"Would upload file '{file.name}'")
            else:
                self.output.info(f"Uploading file '{file.name}'")
                file_id = self.client.upload_file(path, parent_id)
                self.state.upsert(path, file_id, mtime)
            self.stats["uploads"] += 1
            return

        if mtime > record.modification_time:
            if self.dry_run:
                self.output.info(f"Would update file '{file.name}'")
            else:
                self.output.info(f"Updating file '{file.name}'")
                self.client.update_file(path, record.remote_id)
                self.state.upsert(path, record.remote_id, mtime)
            self.stats["updates"] += 1
            return

        logger.debug("File '%s' is up-to-date", path)
        if not self.dry_run:
            self.state.touch(path, mtime)
        self.stats["skips"] += 1

    def _modification_time(self, path: Path) -> int:
        try:
            return get_modification_time(path)
        except OSError as e:
            raise GSyncIOError(path, f"failed to read modification time: {e}") from e

    # =========================
    # Deletion sweep
    # =========================

    def sweep(self) -> list[SyncRecord]:
        """Delete remote entities whose local path was not seen this run.

        Returns:
            The records that were (or, in a dry run, would be) removed
        """
        if self.dry_run:
            stale = [r for r in self.state.all_records() if r.path not in self._seen]
            for record in stale:
                self.output.info(f"Would delete '{record.path}'")
            self.stats["deletes"] += len(stale)
            return stale

        return self.state.sweep(self._delete_remote)

    def _delete_remote(self, record: SyncRecord) -> None:
        self.output.info(f"Deleting '{record.path}'")
        try:
            self.client.delete_file(record.remote_id)
        except GSyncNotFoundError:
            # Already removed, usually together with a deleted parent folder
            logger.debug(
                "Remote entity %s for '%s' is already gone",
                record.remote_id,
                record.path,
            )
        except GSyncError as e:
            if e.path is None:
                e.path = record.path
            raise
        self.stats["deletes"] += 1

    def _display_summary(self) -> None:
        # In JSON mode the caller prints the stats dict itself
        if self.output.json_output:
            return
        self.output.print_summary(
            "Dry Run Summary" if self.dry_run else "Sync Complete",
            [
                ("Folders created", self.stats["folders_created"]),
                ("Folders adopted", self.stats["folders_adopted"]),
                ("Files uploaded", self.stats["uploads"]),
                ("Files updated", self.stats["updates"]),
                ("Files unchanged", self.stats["skips"]),
                ("Entries deleted", self.stats["deletes"]),
            ],
        )
