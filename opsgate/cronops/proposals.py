"""
Cron Proposals.
Locating pending cron proposals and running the cronops apply wrapper.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, List, Optional

logger = logging.getLogger("OpsGate.cronops.proposals")

PROPOSAL_ID_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]{0,63}$")
APPLY_WRAPPER = os.path.join("bin", "cronops_exec_apply.sh")
ALLOW_RECREATE_ARG = "ALLOW_RECREATE"


def is_valid_proposal_id(value: Any) -> bool:
    return isinstance(value, str) and bool(PROPOSAL_ID_RE.match(value))


@dataclass
class CronProposalSummary:
    logical_id: Optional[str] = None
    schedule: Optional[str] = None


@dataclass
class WrapperRun:
    ok: bool
    returncode: Optional[int]
    message: Optional[str] = None
    log_ref: Optional[str] = None


def _first_str(data: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str):
            return value
    return None


class CronOpsWorkspace:
    """The cronops tree: `proposals/pending/<id>/`, `bin/`, `logs/`."""

    def __init__(self, root: str):
        self.root = root

    def proposal_dir(self, proposal_id: str) -> str:
        return os.path.join(self.root, "proposals", "pending", proposal_id)

    def proposal_exists(self, proposal_id: str) -> bool:
        return is_valid_proposal_id(proposal_id) and os.path.isdir(
            self.proposal_dir(proposal_id)
        )

    def load_summary(self, proposal_id: str) -> Optional[CronProposalSummary]:
        """Read logical id and schedule from proposal.json, falling back to meta.json."""
        if not is_valid_proposal_id(proposal_id):
            return None
        proposal_dir = self.proposal_dir(proposal_id)
        for name in ("proposal.json", "meta.json"):
            path = os.path.join(proposal_dir, name)
            if not os.path.exists(path):
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    parsed = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable proposal metadata {path}: {e}")
                return None
            if not isinstance(parsed, dict):
                return None
            return CronProposalSummary(
                logical_id=_first_str(parsed, "logical_id", "logicalId"),
                schedule=_first_str(parsed, "schedule", "cron"),
            )
        return None

    def resolve_log_ref(self, proposal_id: str) -> Optional[str]:
        logs_dir = os.path.join(self.root, "logs")
        if os.path.exists(os.path.join(logs_dir, f"{proposal_id}.log")):
            return os.path.join("cronops", "logs", f"{proposal_id}.log")
        if os.path.exists(logs_dir):
            return os.path.join("cronops", "logs")
        return None

    async def run_apply(self, proposal_id: str, allow_recreate: bool = False) -> WrapperRun:
        """Run `bin/cronops_exec_apply.sh <id> [ALLOW_RECREATE]` from the cronops root."""
        script = os.path.join(self.root, APPLY_WRAPPER)
        if not os.path.exists(script):
            return WrapperRun(ok=False, returncode=None, message="cronops wrapper not found")

        args: List[str] = [proposal_id]
        if allow_recreate:
            args.append(ALLOW_RECREATE_ARG)

        logger.info(f"Running cronops apply for {proposal_id} (recreate={allow_recreate})")
        try:
            proc = await asyncio.create_subprocess_exec(
                script,
                *args,
                cwd=self.root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate()
        except OSError as e:
            return WrapperRun(
                ok=False,
                returncode=None,
                message=f"cronops wrapper failed: {e}",
                log_ref=self.resolve_log_ref(proposal_id),
            )

        log_ref = self.resolve_log_ref(proposal_id)
        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            message = f"cronops wrapper failed: exit {proc.returncode}"
            if tail:
                message = f"{message}: {tail}"
            return WrapperRun(
                ok=False, returncode=proc.returncode, message=message, log_ref=log_ref
            )
        return WrapperRun(ok=True, returncode=0, log_ref=log_ref)
