"""Configuration constants for workspace-tree."""

import os
from pathlib import Path

# Backend bridge location. The environment variable wins over the default.
STORE_URL_ENV = "WORKSPACE_TREE_STORE_URL"
DEFAULT_STORE_URL = "http://127.0.0.1:1420/api"

# Bearer token location. First file found is used; no token is fine for a local bridge.
API_TOKEN_FILES: list[Path] = [
    Path("~/.config/workspace-tree/token.txt").expanduser(),
    Path("~/.config/secret/workspace-tree-token.txt").expanduser(),
]

REQUEST_TIMEOUT_SECONDS: float = 10.0

# Pointer travel (px) before a press becomes a drag rather than a click.
DRAG_ACTIVATION_DISTANCE: float = 8.0

# Entity name rules.
MAX_NAME_LENGTH = 50
INVALID_NAME_CHARS = '<>:"/\\|?*'
RESERVED_NAMES: frozenset[str] = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

DEFAULT_FOLDER_NAME = "New Folder"
DEFAULT_NOTE_TITLE = "Untitled"

# Expanded-folder state. First candidate whose directory exists is used.
STATE_FILE_ENV = "WORKSPACE_TREE_STATE_FILE"
STATE_FILE_CANDIDATES: list[Path] = [
    Path("~/.local/share/workspace-tree/expanded.json").expanduser(),
    Path("~/.workspace-tree/expanded.json").expanduser(),
]


def resolve_store_url() -> str:
    """Return the backend bridge base URL, without a trailing slash."""
    return os.environ.get(STORE_URL_ENV, DEFAULT_STORE_URL).rstrip("/")


def resolve_state_file() -> Path:
    """Return where the expanded-folder state is persisted.

    Uses the environment override when set, otherwise the first candidate whose
    parent directory exists, otherwise the first candidate.
    """
    override = os.environ.get(STATE_FILE_ENV)
    if override:
        return Path(override).expanduser()
    for candidate in STATE_FILE_CANDIDATES:
        if candidate.parent.is_dir():
            return candidate
    return STATE_FILE_CANDIDATES[0]
