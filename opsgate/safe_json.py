"""
Safe JSON Persistence.
Atomic, owner-only JSON writes and tolerant reads for the shared state files.
"""

import json
import logging
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger("OpsGate.safe_json")

T = TypeVar("T")

FILE_MODE = 0o600
DIR_MODE = 0o700


def ensure_parent_dir(path: str) -> None:
    dir_path = os.path.dirname(os.path.abspath(path))
    os.makedirs(dir_path, mode=DIR_MODE, exist_ok=True)


def atomic_write_json(path: str, data: Any) -> None:
    """
    Atomically write JSON data to a file.

    The payload goes to a temp file in the target directory, is chmod'ed
    owner-only and fsync'ed, then renamed over the target. Readers never
    observe a partial file.
    """
    ensure_parent_dir(path)
    dir_path = os.path.dirname(os.path.abspath(path))

    fd, tmp_path = tempfile.mkstemp(
        prefix=f"{os.path.basename(path)}.", suffix=".tmp", dir=dir_path
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, FILE_MODE)
        os.replace(tmp_path, path)
    except Exception:
        # Clean up temp file on error
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def read_json(path: str, default_factory: Callable[[], T]) -> Any:
    """
    Read a JSON file, returning `default_factory()` when the file is missing,
    unreadable or not valid JSON.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default_factory()
    except (OSError, ValueError) as e:
        logger.warning(f"Unreadable JSON state file {path}: {e}")
        return default_factory()


def append_ndjson(path: str, record: Dict[str, Any]) -> None:
    """Append one JSON line to an owner-only NDJSON file."""
    ensure_parent_dir(path)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, FILE_MODE)
    with os.fdopen(fd, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")


def read_ndjson(path: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Read NDJSON records, skipping blank or malformed lines."""
    records: List[Dict[str, Any]] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    parsed = json.loads(line)
                except ValueError:
                    continue
                if isinstance(parsed, dict):
                    records.append(parsed)
    except FileNotFoundError:
        return []
    if limit is not None:
        return records[-limit:]
    return records
