# storage/json_store.py
"""
JSON file helpers shared by the mapping cache and the Q&A bank.

Writes go to a temp file in the same directory, are fsynced, then
atomically replace the target, so readers never see a half-written file.
Read-modify-write sequences that span processes hold file_lock.
"""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_json(path: Path, default: Any) -> Any:
    """Load JSON from path; default when the file is missing, empty or corrupt."""
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as f:
            text = f.read().strip()
        if not text:
            return default
        return json.loads(text)
    except (json.JSONDecodeError, IOError):
        return default


def save_json(path: Path, data: Any):
    """Atomic write + fsync."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, str(path))
        dir_fd = os.open(str(path.parent), os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


@contextmanager
def file_lock(path: Path):
    """Exclusive advisory lock on <path>.lock, shared by every process using path."""
    lock_path = path.with_name(path.name + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a") as f:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
