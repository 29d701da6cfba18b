"""
Budgeted Run Approvals.
Approved metered runs are dropped into `<state>/ops/budgeted/approved/` for
the job runner, which moves each one to `consumed/` once it starts.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..safe_json import atomic_write_json, ensure_parent_dir, read_json

logger = logging.getLogger("OpsGate.ops.budgeted")

RUN_ID_RE = re.compile(r"^[a-zA-Z0-9._-]{1,128}$")


def is_valid_run_id(value: Any) -> bool:
    return isinstance(value, str) and bool(RUN_ID_RE.match(value))


@dataclass
class BudgetedApprovalRecord:
    run_id: str
    job: str
    approved_by: Dict[str, Any]
    approved_at: str
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "job": self.job,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BudgetedApprovalRecord":
        return cls(
            run_id=data["run_id"],
            job=data["job"],
            approved_by=data.get("approved_by") or {},
            approved_at=data.get("approved_at", ""),
            payload=data.get("payload") or {},
        )


class BudgetedApprovals:
    def __init__(self, root: str):
        self.approved_dir = os.path.join(root, "approved")
        self.consumed_dir = os.path.join(root, "consumed")

    def _path(self, directory: str, run_id: str) -> str:
        if not is_valid_run_id(run_id):
            raise ValueError(f"invalid run id: {run_id!r}")
        return os.path.join(directory, f"{run_id}.json")

    def write(self, record: BudgetedApprovalRecord) -> str:
        path = self._path(self.approved_dir, record.run_id)
        atomic_write_json(path, record.to_dict())
        logger.info(f"Budgeted run {record.run_id} ({record.job}) approved")
        return path

    def list_approved(self) -> List[BudgetedApprovalRecord]:
        """Approved, not yet consumed runs, oldest approval first."""
        try:
            names = sorted(os.listdir(self.approved_dir))
        except FileNotFoundError:
            return []
        records = []
        for name in names:
            if not name.endswith(".json"):
                continue
            data = read_json(os.path.join(self.approved_dir, name), dict)
            if not isinstance(data, dict) or not data.get("run_id") or not data.get("job"):
                continue
            records.append(BudgetedApprovalRecord.from_dict(data))
        return sorted(records, key=lambda r: r.approved_at)

    def consume(self, run_id: str) -> Optional[str]:
        """Move an approved run to consumed/; None when it was not approved."""
        source = self._path(self.approved_dir, run_id)
        target = self._path(self.consumed_dir, run_id)
        if not os.path.exists(source):
            return None
        ensure_parent_dir(target)
        os.replace(source, target)
        logger.info(f"Budgeted run {run_id} consumed")
        return target
