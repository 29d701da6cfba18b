"""
Ledger Journal.
Append-only NDJSON journal of approved double-entry postings, one file per
ledger at `<state>/ledgers/<name>/journal.ndjson`.
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..safe_json import append_ndjson, read_ndjson
from .snapshot import is_valid_ledger_name

logger = logging.getLogger("OpsGate.ledgers.journal")


def hash_ledger_payload(payload: Any) -> str:
    """sha256 hex digest of the compact JSON form of `payload`."""
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass
class LedgerJournalEntry:
    run_id: str
    approval_id: str
    timestamp: str
    postings: List[Dict[str, Any]] = field(default_factory=list)
    provenance: Dict[str, Any] = field(default_factory=dict)
    payload_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "approval_id": self.approval_id,
            "timestamp": self.timestamp,
            "postings": self.postings,
            "provenance": self.provenance,
            "payload_hash": self.payload_hash,
        }


class LedgerJournal:
    def __init__(self, journals_dir: str):
        self.journals_dir = journals_dir

    def path_for(self, ledger: str) -> str:
        if not is_valid_ledger_name(ledger):
            raise ValueError(f"invalid ledger name: {ledger!r}")
        return os.path.join(self.journals_dir, ledger, "journal.ndjson")

    def append(self, ledger: str, entry: LedgerJournalEntry) -> str:
        path = self.path_for(ledger)
        append_ndjson(path, entry.to_dict())
        logger.info(
            f"Journaled run {entry.run_id} on ledger {ledger} "
            f"({len(entry.postings)} postings)"
        )
        return path

    def read(self, ledger: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return read_ndjson(self.path_for(ledger), limit=limit)
