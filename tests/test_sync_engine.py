"""Tests for the sync engine."""

import itertools
import os
from pathlib import Path
from unittest.mock import Mock

import pytest

from gsync.api import DriveClient
from gsync.database import Database
from gsync.exceptions import GSyncAPIError, GSyncNotFoundError
from gsync.models import DriveFile
from gsync.output import OutputFormatter
from gsync.sync import SyncEngine, SyncStateStore

MUTATIONS = ("create_folder", "upload_file", "update_file", "delete_file")


def _set_mtime(path: Path, mtime: int) -> None:
    os.utime(path, (mtime, mtime))


def _mutation_count(client) -> int:
    return sum(getattr(client, name).call_count for name in MUTATIONS)


class TestSyncEngine:
    """Test SyncEngine functionality."""

    @pytest.fixture
    def mock_client(self):
        """Create a mock Drive client handing out unique ids."""
        client = Mock(spec=DriveClient)
        counter = itertools.count(1)
        client.find_folder.return_value = None
        client.create_folder.side_effect = lambda name, parent_id: (
            f"folder-{next(counter)}"
        )
        client.upload_file.side_effect = lambda path, parent_id: (
            f"file-{next(counter)}"
        )
        return client

    @pytest.fixture
    def mock_output(self):
        """Create a mock output formatter."""
        output = Mock(spec=OutputFormatter)
        output.quiet = True  # Suppress output during tests
        output.json_output = False
        return output

    @pytest.fixture
    def store(self, tmp_path):
        """Create a state store backed by a temporary database."""
        return SyncStateStore(Database(tmp_path / "state" / "data.db3"))

    @pytest.fixture
    def sync_engine(self, mock_client, store, mock_output):
        """Create a sync engine instance."""
        return SyncEngine(mock_client, store, mock_output, root_folder_id="root-id")

    @pytest.fixture
    def tree(self, tmp_path):
        """Create /a with x.txt and b/y.txt."""
        root = tmp_path / "a"
        (root / "b").mkdir(parents=True)
        (root / "x.txt").write_text("x")
        (root / "b" / "y.txt").write_text("y")
        for path in (root / "x.txt", root / "b" / "y.txt"):
            _set_mtime(path, 1_000_000)
        return root

    def test_create_sync_engine(self, mock_client, store, mock_output):
        """Test creating a sync engine."""
        engine = SyncEngine(mock_client, store, mock_output)
        assert engine.client == mock_client
        assert engine.state == store
        assert engine.output == mock_output
        assert engine.root_folder_id == "root"

    def test_first_run_converges(self, sync_engine, mock_client, store, tree):
        """Test that every directory and file gets a record after one run."""
        stats = sync_engine.sync([tree])

        for path in (tree, tree / "b", tree / "x.txt", tree / "b" / "y.txt"):
            record = store.get(path)
            assert record is not None, path
            assert record.remote_id
        assert stats["folders_created"] == 2
        assert stats["uploads"] == 2

        a_id = store.get(tree).remote_id
        b_id = store.get(tree / "b").remote_id
        mock_client.create_folder.assert_any_call("a", "root-id")
        mock_client.create_folder.assert_any_call("b", a_id)
        mock_client.upload_file.assert_any_call(tree / "x.txt", a_id)
        mock_client.upload_file.assert_any_call(tree / "b" / "y.txt", b_id)

    def test_second_run_is_idempotent(self, sync_engine, mock_client, store, tree):
        """Test that an unchanged tree causes no remote calls at all."""
        sync_engine.sync([tree])
        mock_client.reset_mock()

        stats = sync_engine.sync([tree])

        assert _mutation_count(mock_client) == 0
        mock_client.find_folder.assert_not_called()
        assert stats["skips"] == 2
        assert stats["deletes"] == 0
        assert all(r.include for r in store.all_records())

    def test_changed_file_is_updated_once(self, sync_engine, mock_client, store, tree):
        """Test that a newer modification time triggers one update."""
        sync_engine.sync([tree])
        x_id = store.get(tree / "x.txt").remote_id
        mock_client.reset_mock()
        _set_mtime(tree / "x.txt", 1_000_500)

        stats = sync_engine.sync([tree])

        mock_client.update_file.assert_called_once_with(tree / "x.txt", x_id)
        assert _mutation_count(mock_client) == 1
        assert stats["updates"] == 1
        record = store.get(tree / "x.txt")
        assert record.remote_id == x_id
        assert record.modification_time == 1_000_500

    def test_older_file_is_not_updated(self, sync_engine, mock_client, store, tree):
        """Test that a decreased modification time causes no remote call."""
        sync_engine.sync([tree])
        mock_client.reset_mock()
        _set_mtime(tree / "x.txt", 999_000)

        sync_engine.sync([tree])

        assert _mutation_count(mock_client) == 0
        assert store.get(tree / "x.txt").include is True

    def test_deleted_file_is_removed_remotely(
        self, sync_engine, mock_client, store, tree
    ):
        """Test that a vanished file is deleted once and forgotten."""
        sync_engine.sync([tree])
        x_id = store.get(tree / "x.txt").remote_id
        mock_client.reset_mock()
        (tree / "x.txt").unlink()

        stats = sync_engine.sync([tree])

        mock_client.delete_file.assert_called_once_with(x_id)
        assert _mutation_count(mock_client) == 1
        assert stats["deletes"] == 1
        assert store.get(tree / "x.txt") is None

        mock_client.reset_mock()
        sync_engine.sync([tree])
        mock_client.delete_file.assert_not_called()

    def test_deleted_directory_removes_all_records(
        self, sync_engine, mock_client, store, tree
    ):
        """Test removing a directory whose children vanish with it remotely."""
        sync_engine.sync([tree])
        b_id = store.get(tree / "b").remote_id
        y_id = store.get(tree / "b" / "y.txt").remote_id
        mock_client.reset_mock()
        (tree / "b" / "y.txt").unlink()
        (tree / "b").rmdir()

        def delete_file(file_id):
            if file_id == y_id:
                raise GSyncNotFoundError("File not found", code=404)

        mock_client.delete_file.side_effect = delete_file

        sync_engine.sync([tree])

        assert [c.args[0] for c in mock_client.delete_file.call_args_list] == [
            b_id,
            y_id,
        ]
        assert store.get(tree / "b") is None
        assert store.get(tree / "b" / "y.txt") is None

    def test_failed_delete_keeps_record(self, sync_engine, mock_client, store, tree):
        """Test that a failing remote delete aborts and is retried next run."""
        sync_engine.sync([tree])
        (tree / "x.txt").unlink()
        mock_client.delete_file.side_effect = GSyncAPIError("Backend error", code=500)

        with pytest.raises(GSyncAPIError) as exc_info:
            sync_engine.sync([tree])

        assert exc_info.value.path == tree / "x.txt"
        assert store.get(tree / "x.txt") is not None

        mock_client.delete_file.side_effect = None
        sync_engine.sync([tree])
        assert store.get(tree / "x.txt") is None

    def test_excluded_directory_scenario(self, sync_engine, mock_client, store, tree):
        """Test that an excluded subtree produces no calls and no records."""
        (tree / ".gitignore").write_text("b\n.gitignore\n")

        sync_engine.sync([tree])

        mock_client.upload_file.assert_called_once()
        assert mock_client.upload_file.call_args.args[0] == tree / "x.txt"
        mock_client.create_folder.assert_called_once_with("a", "root-id")
        assert store.get(tree / "b") is None
        assert store.get(tree / "b" / "y.txt") is None

    def test_excluded_scenario_follow_up_runs(
        self, sync_engine, mock_client, store, tree
    ):
        """Test the unchanged second run and the deletion third run."""
        (tree / ".gitignore").write_text("b\n.gitignore\n")
        sync_engine.sync([tree])
        x_id = store.get(tree / "x.txt").remote_id
        mock_client.reset_mock()

        stats = sync_engine.sync([tree])

        assert _mutation_count(mock_client) == 0
        assert store.get(tree / "x.txt").include is True
        assert stats["deletes"] == 0

        (tree / "x.txt").unlink()
        stats = sync_engine.sync([tree])

        mock_client.delete_file.assert_called_once_with(x_id)
        assert stats["deletes"] == 1
        assert store.get(tree / "x.txt") is None

    def test_ignore_file_itself_is_synced(self, sync_engine, mock_client, tree):
        """Test that a rule file not excluding itself is uploaded."""
        (tree / ".gitignore").write_text("b\n")

        sync_engine.sync([tree])

        uploaded = {c.args[0] for c in mock_client.upload_file.call_args_list}
        assert uploaded == {tree / ".gitignore", tree / "x.txt"}

    def test_newly_excluded_path_is_deleted(
        self, sync_engine, mock_client, store, tree
    ):
        """Test that excluding a synced directory deletes it remotely."""
        sync_engine.sync([tree])
        b_id = store.get(tree / "b").remote_id
        (tree / ".gitignore").write_text("b\n")

        sync_engine.sync([tree])

        mock_client.delete_file.assert_any_call(b_id)
        assert store.get(tree / "b") is None

    def test_existing_remote_folder_is_adopted(
        self, sync_engine, mock_client, store, tree
    ):
        """Test that a folder found on Drive is reused instead of created."""
        mock_client.find_folder.side_effect = lambda name, parent_id: (
            DriveFile(id="existing-a", name="a") if name == "a" else None
        )

        stats = sync_engine.sync([tree])

        assert store.get(tree).remote_id == "existing-a"
        mock_client.create_folder.assert_called_once_with("b", "existing-a")
        assert stats["folders_adopted"] == 1

    def test_top_level_file(self, sync_engine, mock_client, store, tree):
        """Test syncing a single file root into the root folder."""
        sync_engine.sync([tree / "x.txt"])

        mock_client.upload_file.assert_called_once_with(tree / "x.txt", "root-id")
        mock_client.create_folder.assert_not_called()
        assert store.get(tree / "x.txt") is not None

    def test_upload_error_propagates_with_path(
        self, sync_engine, mock_client, store, tree
    ):
        """Test that remote errors abort the run and name the failing path."""
        mock_client.upload_file.side_effect = GSyncAPIError("Forbidden", code=403)

        with pytest.raises(GSyncAPIError) as exc_info:
            sync_engine.sync([tree])

        assert exc_info.value.path == tree / "b" / "y.txt"
        assert store.get(tree / "b" / "y.txt") is None
        assert store.get(tree / "b") is not None

    def test_missing_root_folder_is_not_repaired(
        self, sync_engine, mock_client, store, tree
    ):
        """Test that a missing configured root folder propagates."""
        mock_client.create_folder.side_effect = GSyncNotFoundError(
            "File not found: root-id", code=404
        )

        with pytest.raises(GSyncNotFoundError):
            sync_engine.sync([tree])

        assert mock_client.create_folder.call_count == 1
        assert store.get(tree) is None

    def test_dry_run_makes_no_changes(self, sync_engine, mock_client, store, tree):
        """Test that a dry run neither calls Drive nor writes state."""
        stats = sync_engine.sync([tree], dry_run=True)

        assert _mutation_count(mock_client) == 0
        mock_client.find_folder.assert_not_called()
        assert store.all_records() == []
        assert stats["folders_created"] == 2
        assert stats["uploads"] == 2

    def test_dry_run_reports_deletions(self, sync_engine, mock_client, store, tree):
        """Test that a dry run lists stale records without removing them."""
        sync_engine.sync([tree])
        (tree / "x.txt").unlink()
        mock_client.reset_mock()

        stats = sync_engine.sync([tree], dry_run=True)

        assert stats["deletes"] == 1
        mock_client.delete_file.assert_not_called()
        assert store.get(tree / "x.txt") is not None

    def test_summary_is_printed(self, sync_engine, mock_output, tree):
        """Test that a normal run ends with a summary."""
        sync_engine.sync([tree])

        title, items = mock_output.print_summary.call_args.args
        assert title == "Sync Complete"
        assert ("Files uploaded", 2) in items

    def test_no_summary_in_json_mode(self, sync_engine, mock_output, tree):
        """Test that JSON mode leaves printing the stats to the caller."""
        mock_output.json_output = True

        stats = sync_engine.sync([tree])

        mock_output.print_summary.assert_not_called()
        assert stats["uploads"] == 2


class TestAncestorRepair:
    """Tests for recreating parent folders deleted on Drive."""

    @pytest.fixture
    def store(self, tmp_path):
        return SyncStateStore(Database(tmp_path / "state" / "data.db3"))

    @pytest.fixture
    def mock_client(self):
        client = Mock(spec=DriveClient)
        client.find_folder.return_value = None
        return client

    @pytest.fixture
    def sync_engine(self, mock_client, store):
        output = Mock(spec=OutputFormatter)
        output.quiet = True
        output.json_output = False
        return SyncEngine(mock_client, store, output, root_folder_id="root-id")

    @pytest.fixture
    def root(self, tmp_path, store):
        """Create /a/new with a record for /a pointing at a deleted folder."""
        root = tmp_path / "a"
        (root / "new").mkdir(parents=True)
        store.upsert(root, "stale-a", int(root.stat().st_mtime))
        return root

    def test_parent_is_recreated_and_creation_retried(
        self, sync_engine, mock_client, store, root
    ):
        """Test that a 404 parent is recreated and the folder retried once."""
        mock_client.create_folder.side_effect = [
            GSyncNotFoundError("File not found: stale-a", code=404),
            "fresh-a",
            "new-id",
        ]

        sync_engine.sync([root])

        assert mock_client.create_folder.call_args_list[0].args == ("new", "stale-a")
        assert mock_client.create_folder.call_args_list[1].args == ("a", "root-id")
        assert mock_client.create_folder.call_args_list[2].args == ("new", "fresh-a")
        assert store.get(root).remote_id == "fresh-a"
        assert store.get(root / "new").remote_id == "new-id"

    def test_parent_found_by_name_is_adopted(
        self, sync_engine, mock_client, store, root
    ):
        """Test that repair reuses a folder that still exists under the name."""
        mock_client.create_folder.side_effect = [
            GSyncNotFoundError("File not found", code=404),
            "new-id",
        ]
        mock_client.find_folder.side_effect = lambda name, parent_id: (
            DriveFile(id="moved-a", name="a") if name == "a" else None
        )

        sync_engine.sync([root])

        assert store.get(root).remote_id == "moved-a"
        mock_client.create_folder.assert_called_with("new", "moved-a")

    def test_second_failure_propagates(self, sync_engine, mock_client, store, root):
        """Test that the folder creation is retried exactly once."""
        mock_client.create_folder.side_effect = [
            GSyncNotFoundError("File not found", code=404),
            "fresh-a",
            GSyncNotFoundError("File not found", code=404),
        ]

        with pytest.raises(GSyncNotFoundError) as exc_info:
            sync_engine.sync([root])

        assert mock_client.create_folder.call_count == 3
        assert exc_info.value.path == root / "new"
        assert store.get(root / "new") is None

    def test_later_siblings_use_repaired_parent(
        self, sync_engine, mock_client, store, root
    ):
        """Test that siblings after a repair are created in the new parent."""
        (root / "other").mkdir()
        mock_client.create_folder.side_effect = [
            GSyncNotFoundError("File not found", code=404),
            "fresh-a",
            "new-id",
            "other-id",
        ]

        sync_engine.sync([root])

        assert mock_client.create_folder.call_args_list[3].args == (
            "other",
            "fresh-a",
        )

    def test_grandparent_chain_is_repaired(self, sync_engine, mock_client, store, root):
        """Test repairing two missing levels at once."""
        (root / "new").rmdir()
        (root / "mid" / "new").mkdir(parents=True)
        store.upsert(root / "mid", "stale-mid", 1)
        mock_client.create_folder.side_effect = [
            # new under stale mid
            GSyncNotFoundError("File not found", code=404),
            # mid under stale a
            GSyncNotFoundError("File not found", code=404),
            "fresh-a",
            "fresh-mid",
            "new-id",
        ]

        sync_engine.sync([root])

        calls = [c.args for c in mock_client.create_folder.call_args_list]
        assert calls == [
            ("new", "stale-mid"),
            ("mid", "stale-a"),
            ("a", "root-id"),
            ("mid", "fresh-a"),
            ("new", "fresh-mid"),
        ]
        assert store.get(root).remote_id == "fresh-a"
        assert store.get(root / "mid").remote_id == "fresh-mid"
        assert store.get(root / "mid" / "new").remote_id == "new-id"
