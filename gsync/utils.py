"""Utility functions for GSync."""

import base64
import os
from pathlib import Path

# =============================================================================
# Constants
# =============================================================================

# Number of ids requested per files/generateIds call
DEFAULT_ID_BATCH_SIZE: int = 100

# Refresh access tokens this many seconds before they expire
TOKEN_EXPIRY_MARGIN: int = 60

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def get_modification_time(path: Path) -> int:
    """Local modification time in whole epoch seconds."""
    return int(path.stat().st_mtime)


# =============================================================================
# Path encoding
# =============================================================================


def encode_path(path: Path) -> str:
    """Encode a local path as a database key.

    Uses urlsafe base64 over the filesystem bytes so names that are not valid
    UTF-8 survive the round trip.
    """
    return base64.urlsafe_b64encode(os.fsencode(path)).decode("ascii")


def decode_path(value: str) -> Path:
    """Reverse :func:`encode_path`."""
    return Path(os.fsdecode(base64.urlsafe_b64decode(value.encode("ascii"))))


def quote_query_value(value: str) -> str:
    """Quote a string for use inside a Drive search query."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"
