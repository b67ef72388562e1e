# Ensure the `backend` directory is importable so `audiobox.*` resolves
from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

# Use an in-memory SQLite DB and throwaway directories during tests unless overridden
_TMP = Path(tempfile.mkdtemp(prefix="audiobox-tests-"))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DB_ECHO", "0")
os.environ.setdefault("DATA_ROOT", str(_TMP / "data"))
os.environ.setdefault("LOG_DIR", str(_TMP / "logs"))
os.environ.setdefault("STORAGE_BACKEND", "local")
