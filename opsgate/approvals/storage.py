"""
Approval Storage.
Lock-guarded atomic JSON persistence for approval requests.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..file_lock import FileLock
from ..safe_json import atomic_write_json, read_json
from .models import ApprovalRequest, ApprovalStatus

logger = logging.getLogger("OpsGate.approvals.storage")

STORE_VERSION = 1

Transform = Callable[[ApprovalRequest], ApprovalRequest]


@dataclass
class StoreSnapshot:
    version: int = STORE_VERSION
    approvals: List[ApprovalRequest] = field(default_factory=list)


def _empty_document() -> Dict[str, Any]:
    return {"version": STORE_VERSION, "approvals": []}


def _raw_records(document: Any, path: str) -> List[Any]:
    if not isinstance(document, dict):
        logger.warning(f"Approval store {path} is not an object; treating as empty")
        return []
    if document.get("version") != STORE_VERSION:
        logger.warning(
            f"Approval store {path} has unsupported version {document.get('version')!r}; "
            "treating as empty"
        )
        return []
    records = document.get("approvals")
    if not isinstance(records, list):
        logger.warning(f"Approval store {path} has no approvals list; treating as empty")
        return []
    return records


def _parse(raw: Any) -> Optional[ApprovalRequest]:
    if not isinstance(raw, dict):
        return None
    try:
        return ApprovalRequest.from_dict(raw)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Skipping invalid approval record: {e}")
        return None


class ApprovalStore:
    """
    File-backed approval store shared by every process on the host.

    Reads are lock-free (writers always rename a complete file into place).
    Mutations take the `<path>.lock` file lock for the whole
    read-modify-write cycle; `LockExhaustedError` propagates to the caller.
    """

    def __init__(self, path: str, lock_factory: Callable[[str], FileLock] = FileLock):
        self.path = path
        self._lock_factory = lock_factory

    def _load_raw(self) -> List[Any]:
        return _raw_records(read_json(self.path, _empty_document), self.path)

    def _write_raw(self, records: List[Any]) -> None:
        atomic_write_json(self.path, {"version": STORE_VERSION, "approvals": records})

    def read(self) -> StoreSnapshot:
        approvals = []
        for raw in self._load_raw():
            request = _parse(raw)
            if request is not None:
                approvals.append(request)
        return StoreSnapshot(version=STORE_VERSION, approvals=approvals)

    def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        for request in self.read().approvals:
            if request.approval_id == approval_id:
                return request
        return None

    def list_by_status(
        self, status: Optional[ApprovalStatus] = None
    ) -> List[ApprovalRequest]:
        approvals = self.read().approvals
        if status is None:
            return approvals
        return [a for a in approvals if a.status == status]

    def append(self, request: ApprovalRequest) -> None:
        with self._lock_factory(self.path):
            records = self._load_raw()
            records.append(request.to_dict())
            self._write_raw(records)
        logger.debug(f"Appended approval {request.approval_id} ({request.kind.value})")

    def update(self, approval_id: str, transform: Transform) -> Optional[ApprovalRequest]:
        """
        Apply `transform` to the stored request under the lock and persist it.

        Returns the updated request, or None when no record has that id.
        Records that fail to parse are written back untouched.
        """
        with self._lock_factory(self.path):
            records = self._load_raw()
            for index, raw in enumerate(records):
                if not isinstance(raw, dict) or raw.get("approval_id") != approval_id:
                    continue
                current = _parse(raw)
                if current is None:
                    continue
                updated = transform(current)
                records[index] = updated.to_dict()
                self._write_raw(records)
                return updated
        return None
