"""
Ledgers Package.
Key/value ledger snapshots and the append-only postings journal.
"""

from .journal import LedgerJournal, LedgerJournalEntry, hash_ledger_payload
from .snapshot import (
    LedgerSnapshotStore,
    is_valid_ledger_name,
    summarize_ledger_patch,
    validate_ledger_patch,
)

__all__ = [
    "LedgerJournal",
    "LedgerJournalEntry",
    "LedgerSnapshotStore",
    "hash_ledger_payload",
    "is_valid_ledger_name",
    "summarize_ledger_patch",
    "validate_ledger_patch",
]
