"""Local file tree with exclusion rules applied."""

import logging
import stat
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from ..exceptions import GSyncIOError
from .ignore import IGNORE_FILE_NAME, ExclusionRules

logger = logging.getLogger(__name__)


@dataclass
class File:
    """A local file."""

    local_path: Path
    """Absolute path to the file"""

    @property
    def name(self) -> str:
        return self.local_path.name

    def count_files(self) -> int:
        return 1


@dataclass
class Directory:
    """A local directory and its (non-excluded) children."""

    name: str
    """Directory name, used as the remote folder name"""

    local_path: Path
    """Absolute path to the directory"""

    children: list["Node"] = field(default_factory=list)
    """Children in traversal order"""

    def count_files(self) -> int:
        """Number of files anywhere below this directory."""
        return sum(child.count_files() for child in self.children)


Node = Union[Directory, File]


def traverse(
    path: Path,
    rules: Optional[ExclusionRules] = None,
    ignore_file_name: str = IGNORE_FILE_NAME,
) -> tuple[list[Node], ExclusionRules]:
    """Build the node tree for *path*.

    Depth-first pre-order walk. A directory's ignore file is read before its
    children are listed, excluded children are skipped, and the rules
    returned by each child's walk are handed to the next sibling, so a
    sibling visited later sees every rule found before it.

    Args:
        path: File or directory to walk
        rules: Rules accumulated so far (empty for a new root)
        ignore_file_name: Name of the ignore files to honor

    Returns:
        Tuple of (nodes, accumulated rules). The node list holds a single
        node for *path* itself.

    Raises:
        GSyncIOError: If a directory cannot be listed or a path cannot be
            inspected
    """
    if rules is None:
        rules = ExclusionRules()

    logger.debug("Traversing '%s'", path)

    try:
        is_dir = stat.S_ISDIR(path.stat().st_mode)
    except OSError as e:
        raise GSyncIOError(path, f"failed to inspect path: {e}") from e

    if not is_dir:
        if path.name == ignore_file_name:
            rules = rules.with_ignore_file(path)
        return [File(local_path=path)], rules

    ignore_file = path / ignore_file_name
    if ignore_file.is_file():
        rules = rules.with_ignore_file(ignore_file)

    try:
        entries = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise GSyncIOError(path, f"failed to list directory: {e}") from e

    children: list[Node] = []
    for entry in entries:
        if rules.matches(entry):
            logger.debug("Ignoring (from rules): %s", entry)
            continue
        child_nodes, rules = traverse(entry, rules, ignore_file_name)
        children.extend(child_nodes)

    return [Directory(name=path.name, local_path=path, children=children)], rules


def build_trees(
    roots: Iterable[Path], ignore_file_name: str = IGNORE_FILE_NAME
) -> list[Node]:
    """Traverse independent roots, each with its own empty rule set."""
    nodes: list[Node] = []
    for root in roots:
        root_nodes, _ = traverse(root, ExclusionRules(), ignore_file_name)
        count = sum(node.count_files() for node in root_nodes)
        logger.info("Found %d file(s) for input '%s'", count, root)
        nodes.extend(root_nodes)
    return nodes
