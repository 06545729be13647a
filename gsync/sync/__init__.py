"""Sync engine for GSync - one-way mirroring of local trees onto Drive."""

from .engine import SyncEngine
from .ignore import IGNORE_FILE_NAME, ExclusionRules, parse_ignore_file
from .state import SyncRecord, SyncStateStore
from .tree import Directory, File, Node, build_trees, traverse

__all__ = [
    "SyncEngine",
    "SyncStateStore",
    "SyncRecord",
    "Directory",
    "File",
    "Node",
    "build_trees",
    "traverse",
    "ExclusionRules",
    "IGNORE_FILE_NAME",
    "parse_ignore_file",
]
