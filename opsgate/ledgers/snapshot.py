"""
Ledger Snapshots.
Key/value ledgers under `<state>/workspace/ledgers/<name>.json`, mutated only
through validated patches.
"""

import logging
import math
import os
import re
from typing import Any, Dict, Optional

from ..file_lock import FileLock
from ..safe_json import atomic_write_json, read_json

logger = logging.getLogger("OpsGate.ledgers.snapshot")

LEDGER_NAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
SNAPSHOT_VERSION = 1
SUMMARY_MAX_ITEMS = 6


def is_valid_ledger_name(name: Any) -> bool:
    return isinstance(name, str) and bool(LEDGER_NAME_RE.match(name))


def _empty_snapshot() -> Dict[str, Any]:
    return {"version": SNAPSHOT_VERSION, "entries": {}}


def _is_ledger_value(value: Any) -> bool:
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, (str, int, bool))


def validate_ledger_patch(patch: Any) -> Optional[str]:
    """Return a rejection reason for `patch`, or None when it is applicable."""
    if patch is None:
        return "patch-empty"
    set_values = getattr(patch, "set", None)
    remove = getattr(patch, "remove", None)
    if set_values:
        if not isinstance(set_values, dict):
            return "patch-set-invalid"
        for key, value in set_values.items():
            if not isinstance(key, str) or not key.strip():
                return "patch-set-key-empty"
            if not is_valid_ledger_name(key):
                return "patch-set-key-invalid"
            if not _is_ledger_value(value):
                return "patch-set-value-invalid"
    if remove:
        if not isinstance(remove, list):
            return "patch-remove-invalid"
        for key in remove:
            if isinstance(key, str) and not key.strip():
                return "patch-remove-empty"
            if not is_valid_ledger_name(key):
                return "patch-remove-key-invalid"
    return None


def summarize_ledger_patch(patch: Any) -> str:
    parts = [f"+{k}={v}" for k, v in (getattr(patch, "set", None) or {}).items()]
    parts.extend(f"-{k}" for k in getattr(patch, "remove", None) or [])
    if not parts:
        return "no changes"
    return ", ".join(parts[:SUMMARY_MAX_ITEMS])


class LedgerSnapshotStore:
    def __init__(self, snapshots_dir: str):
        self.snapshots_dir = snapshots_dir

    def path_for(self, ledger: str) -> str:
        if not is_valid_ledger_name(ledger):
            raise ValueError(f"invalid ledger name: {ledger!r}")
        return os.path.join(self.snapshots_dir, f"{ledger}.json")

    def read(self, ledger: str) -> Dict[str, Any]:
        """Current snapshot; missing or malformed files read as empty."""
        path = self.path_for(ledger)
        data = read_json(path, _empty_snapshot)
        if (
            not isinstance(data, dict)
            or data.get("version") != SNAPSHOT_VERSION
            or not isinstance(data.get("entries"), dict)
        ):
            return _empty_snapshot()
        return data

    def apply_patch(self, ledger: str, patch: Any) -> Dict[str, Any]:
        """Apply set-then-remove to the ledger under its file lock."""
        path = self.path_for(ledger)
        with FileLock(path):
            current = self.read(ledger)
            entries = dict(current["entries"])
            entries.update(getattr(patch, "set", None) or {})
            for key in getattr(patch, "remove", None) or []:
                entries.pop(key, None)
            snapshot = {"version": SNAPSHOT_VERSION, "entries": entries}
            atomic_write_json(path, snapshot)
        logger.info(f"Ledger {ledger} patched ({len(entries)} entries)")
        return snapshot
