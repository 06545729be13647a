"""Exclusion rules read from ignore files found while walking a tree.

Each non-empty, non-comment line of an ignore file names one path relative
to the directory containing the file. Matching is exact: a path is excluded
when it equals one of the resolved rule paths. There is no glob expansion,
no negation and no trailing-slash directory marker. A leading ``/`` is
stripped, so ``/build`` and ``build`` mean the same thing.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from ..exceptions import GSyncIOError

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".gitignore"


def parse_ignore_file(ignore_file: Path) -> frozenset[Path]:
    """Parse an ignore file into absolute rule paths.

    Args:
        ignore_file: Path to the ignore file

    Returns:
        Rule paths anchored to the ignore file's parent directory

    Raises:
        GSyncIOError: If the file cannot be read

    Examples:
        >>> # /a/b/.gitignore containing "foo" and "/bar"
        >>> parse_ignore_file(Path("/a/b/.gitignore"))
        frozenset({PosixPath('/a/b/foo'), PosixPath('/a/b/bar')})
    """
    try:
        contents = ignore_file.read_text(encoding="utf-8", errors="surrogateescape")
    except OSError as e:
        raise GSyncIOError(ignore_file, f"failed to read ignore file: {e}") from e

    base = ignore_file.parent
    rules = set()
    for line in contents.splitlines():
        if not line or line.startswith("#"):
            continue
        if line.startswith("/"):
            line = line[1:]
        rules.add(base / line)

    logger.debug("Loaded %d rule(s) from %s", len(rules), ignore_file)
    return frozenset(rules)


@dataclass(frozen=True)
class ExclusionRules:
    """Immutable snapshot of the rules accumulated so far.

    Rules are only ever added: :meth:`extend` returns a new snapshot and
    leaves the original untouched.
    """

    rules: frozenset[Path] = field(default_factory=frozenset)

    def __len__(self) -> int:
        return len(self.rules)

    def matches(self, path: Path) -> bool:
        """True if *path* is excluded by one of the rules."""
        return path in self.rules

    def extend(self, rules: Iterable[Path]) -> "ExclusionRules":
        """Return a snapshot with *rules* added."""
        new_rules = self.rules.union(rules)
        if len(new_rules) == len(self.rules):
            return self
        return ExclusionRules(frozenset(new_rules))

    def with_ignore_file(self, ignore_file: Path) -> "ExclusionRules":
        """Return a snapshot with the rules of *ignore_file* added."""
        return self.extend(parse_ignore_file(ignore_file))
