"""Pool of pre-generated Drive file ids."""

import logging
import threading
from typing import Callable

from .exceptions import GSyncAPIError

logger = logging.getLogger(__name__)


class IdPool:
    """Hands out ids for new files and folders.

    Drive lets clients choose the id of a new file, which lets the caller
    know the id before the upload finishes. Ids are fetched in batches and
    handed out one at a time.
    """

    def __init__(self, fetch: Callable[[], list[str]]):
        """Initialize the pool.

        Args:
            fetch: Callable returning a fresh batch of unused ids
        """
        self._fetch = fetch
        self._ids: list[str] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def acquire(self) -> str:
        """Take one id, replenishing the pool first when it is empty."""
        with self._lock:
            if not self._ids:
                self._replenish_locked()
            return self._ids.pop()

    def replenish(self) -> None:
        """Fetch another batch of ids and add it to the pool."""
        with self._lock:
            self._replenish_locked()

    def _replenish_locked(self) -> None:
        new_ids = self._fetch()
        if not new_ids:
            raise GSyncAPIError("Drive returned no file ids")
        logger.debug("Fetched %d new file ids", len(new_ids))
        self._ids.extend(new_ids)
