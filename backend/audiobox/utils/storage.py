"""Filesystem helpers for the local blob store."""

import os
from pathlib import Path

# Determine base data directory:
# 1. Use DATA_ROOT env var if set.
# 2. Else, if /data exists, assume Docker environment and use /data.
# 3. Otherwise, use project_root/data (development environment).
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_DATA_ROOT = os.getenv("DATA_ROOT")
if _ENV_DATA_ROOT:
    DATA_ROOT = Path(_ENV_DATA_ROOT)
elif Path("/data").exists():
    DATA_ROOT = Path("/data")
else:
    DATA_ROOT = _PROJECT_ROOT / "data"

# Buckets live directly below the data root
BUCKETS_DIR = DATA_ROOT / "buckets"


def ensure_dir_exists(path: Path) -> Path:
    """Ensure that the given directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_join(root: Path, relative: str) -> Path:
    """Join ``relative`` below ``root`` refusing anything that escapes it."""
    if not relative or relative.startswith("/") or "\\" in relative:
        raise ValueError(f"Invalid storage path: {relative!r}")
    parts = relative.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise ValueError(f"Invalid storage path: {relative!r}")
    return root.joinpath(*parts)
