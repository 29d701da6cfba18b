"""
Approval Executors.
One validate/execute pair per approval kind. Validation is synchronous and
side-effect free; execution runs only after an approver's click.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..async_utils import run_io_in_thread
from ..config import OpsGateConfig
from ..cronops.metrics import CronUsageEvent, CronUsageLog
from ..cronops.proposals import CronOpsWorkspace, is_valid_proposal_id
from ..ledgers.journal import LedgerJournal, LedgerJournalEntry, hash_ledger_payload
from ..ledgers.snapshot import (
    LedgerSnapshotStore,
    is_valid_ledger_name,
    validate_ledger_patch,
)
from ..ops.budgeted import BudgetedApprovalRecord, BudgetedApprovals, is_valid_run_id
from ..paths import GatingPaths
from ..trading.kraken import KrakenClient, split_symbol
from ..trading.store import TradeExecutionLog, TradeExecutionRecord
from .models import (
    ApprovalActor,
    ApprovalKind,
    BudgetedRunPayload,
    CronApplyBudgetedPayload,
    CronApplyPayload,
    LedgerPatchPayload,
    LedgerPostingsApplyPayload,
    TradeExecutePayload,
    utc_now,
)

logger = logging.getLogger("OpsGate.approvals.executors")

TRADE_LEDGER = "finance"


@dataclass(frozen=True)
class ExecutorValidation:
    ok: bool
    reason: Optional[str] = None


VALID = ExecutorValidation(ok=True)


def _reject(reason: str) -> ExecutorValidation:
    return ExecutorValidation(ok=False, reason=reason)


@dataclass
class ExecutorResult:
    ok: bool
    message: Optional[str] = None
    log_ref: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ApprovalExecutor:
    kind: ApprovalKind
    validate: Callable[[Any], ExecutorValidation]
    execute: Callable[[Any, ApprovalActor], Awaitable[ExecutorResult]]


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _non_blank(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_cron_payload(
    payload: CronApplyPayload, workspace: CronOpsWorkspace
) -> ExecutorValidation:
    if not _non_blank(payload.proposal_id):
        return _reject("proposal-id-missing")
    if not is_valid_proposal_id(payload.proposal_id):
        return _reject("proposal-id-invalid")
    if not workspace.proposal_exists(payload.proposal_id):
        return _reject("proposal-not-found")
    return VALID


def validate_ledger_patch_payload(payload: LedgerPatchPayload) -> ExecutorValidation:
    if not _non_blank(payload.ledger):
        return _reject("ledger-missing")
    if not is_valid_ledger_name(payload.ledger):
        return _reject("ledger-invalid")
    if payload.patch is None:
        return _reject("ledger-patch-missing")
    reason = validate_ledger_patch(payload.patch)
    return _reject(reason) if reason else VALID


def validate_postings_payload(payload: LedgerPostingsApplyPayload) -> ExecutorValidation:
    if not _non_blank(payload.ledger):
        return _reject("ledger-missing")
    if not is_valid_ledger_name(payload.ledger):
        return _reject("ledger-invalid")
    if not _non_blank(payload.run_id):
        return _reject("run-id-missing")
    if not payload.postings:
        return _reject("postings-missing")
    for posting in payload.postings:
        if not _non_blank(posting.account) or not _non_blank(posting.asset):
            return _reject("posting-invalid")
        if not _is_number(posting.amount):
            return _reject("posting-amount-invalid")
    if payload.provenance is None or not isinstance(payload.provenance.exchange, str):
        return _reject("provenance-missing")
    return VALID


def validate_budgeted_run_payload(payload: BudgetedRunPayload) -> ExecutorValidation:
    if not _non_blank(payload.run_id):
        return _reject("run-id-missing")
    if not is_valid_run_id(payload.run_id):
        return _reject("run-id-invalid")
    if not _non_blank(payload.job):
        return _reject("job-missing")
    for value in (payload.estimated_tokens, payload.estimated_cost_usd):
        if value is not None and (not _is_number(value) or value < 0):
            return _reject("estimate-invalid")
    return VALID


def resolve_trade_postings(payload: TradeExecutePayload):
    """
    Double-entry postings for a fill: the base position moves by the signed
    quantity and cash moves the opposite way by the notional. Returns
    (postings, notes).
    """
    base, quote = split_symbol(payload.symbol)
    direction = 1 if payload.side == "buy" else -1
    postings: List[Dict[str, Any]] = [
        {"account": "trading:position", "amount": direction * payload.quantity, "asset": base}
    ]
    notes = None
    notional = payload.resolve_notional_usd()
    if notional is not None:
        postings.append(
            {"account": "trading:cash", "amount": -direction * notional, "asset": quote or "USD"}
        )
    else:
        notes = "Notional USD unavailable; cash posting omitted."
    return postings, notes


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class DefaultExecutors:
    """Owns the side-effect collaborators shared by the built-in executors."""

    def __init__(
        self,
        config: OpsGateConfig,
        paths: GatingPaths,
        kraken: Optional[KrakenClient] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.cronops = CronOpsWorkspace(paths.cronops_root)
        self.cron_usage = CronUsageLog(paths.cron_usage_path)
        self.ledgers = LedgerSnapshotStore(paths.ledger_snapshots_dir)
        self.journal = LedgerJournal(paths.ledger_journals_dir)
        self.trades = TradeExecutionLog(paths.trade_executions_path)
        self.budgeted = BudgetedApprovals(paths.budgeted_dir)
        self.kraken = kraken or KrakenClient(config.kraken)
        self.now = now

    def validate_cron(self, payload: CronApplyPayload) -> ExecutorValidation:
        return validate_cron_payload(payload, self.cronops)

    def validate_trade(self, payload: TradeExecutePayload) -> ExecutorValidation:
        validation = self.kraken.validate(payload)
        return VALID if validation.ok else _reject(validation.reason or "trade-invalid")

    async def cron_apply(
        self, payload: CronApplyPayload, actor: ApprovalActor, allow_recreate: bool = False
    ) -> ExecutorResult:
        run = await self.cronops.run_apply(
            payload.proposal_id, allow_recreate=allow_recreate or payload.allow_recreate
        )
        return ExecutorResult(ok=run.ok, message=run.message, log_ref=run.log_ref)

    async def cron_apply_recreate(
        self, payload: CronApplyPayload, actor: ApprovalActor
    ) -> ExecutorResult:
        return await self.cron_apply(payload, actor, allow_recreate=True)

    async def cron_apply_budgeted(
        self, payload: CronApplyBudgetedPayload, actor: ApprovalActor
    ) -> ExecutorResult:
        started = self.now()
        result = await self.cron_apply(payload, actor)
        metrics = payload.metrics
        self.cron_usage.append(
            CronUsageEvent(
                proposal_id=payload.proposal_id,
                start_time=started.isoformat(),
                end_time=self.now().isoformat(),
                tokens_used=metrics.estimated_tokens if metrics else None,
                model=metrics.model_tier if metrics else None,
                estimated_cost_usd=metrics.estimated_cost_usd if metrics else None,
                exit_status="success" if result.ok else "failed",
            )
        )
        return result

    async def ledger_patch(
        self, payload: LedgerPatchPayload, actor: ApprovalActor
    ) -> ExecutorResult:
        snapshot = await run_io_in_thread(
            self.ledgers.apply_patch, payload.ledger, payload.patch
        )
        return ExecutorResult(
            ok=True,
            details={"ledger": payload.ledger, "entries": len(snapshot["entries"])},
        )

    async def ledger_postings_apply(
        self, payload: LedgerPostingsApplyPayload, actor: ApprovalActor
    ) -> ExecutorResult:
        entry = LedgerJournalEntry(
            run_id=payload.run_id,
            approval_id=payload.approval_id or "unknown",
            timestamp=self.now().isoformat(),
            postings=[p.to_dict() for p in payload.postings],
            provenance=payload.provenance.to_dict() if payload.provenance else {},
            payload_hash=hash_ledger_payload(payload.to_dict()),
        )
        self.journal.append(payload.ledger, entry)
        return ExecutorResult(ok=True, details={"ledger": payload.ledger})

    async def trade_execute(
        self, payload: TradeExecutePayload, actor: ApprovalActor
    ) -> ExecutorResult:
        execution = await self.kraken.execute(payload)
        postings, notes = resolve_trade_postings(payload)
        self.trades.append(
            TradeExecutionRecord(
                executed_at=self.now().isoformat(),
                approval_id=None,
                exchange=payload.exchange,
                symbol=payload.symbol,
                side=payload.side,
                quantity=payload.quantity,
                order_type=payload.order_type,
                mode="dry-run" if execution.dry_run else "live",
                ok=execution.ok,
                notional_usd=payload.resolve_notional_usd(),
                order_id=execution.order_id,
                message=execution.message,
            )
        )
        provenance = {"exchange": payload.exchange, "dry_run": execution.dry_run}
        if execution.order_id:
            provenance["order_id"] = execution.order_id
        ledger_request: Dict[str, Any] = {
            "ledger": TRADE_LEDGER,
            "run_id": str(uuid.uuid4()),
            "postings": postings,
            "provenance": provenance,
        }
        if notes:
            ledger_request["notes"] = notes
        return ExecutorResult(
            ok=execution.ok,
            message=execution.message,
            details={
                "intent": payload.to_dict(),
                "exchange": payload.exchange,
                "order_id": execution.order_id,
                "dry_run": execution.dry_run,
                "validation": execution.summary,
                "ledger_request": ledger_request,
            },
        )

    async def budgeted_run(
        self, payload: BudgetedRunPayload, actor: ApprovalActor
    ) -> ExecutorResult:
        path = self.budgeted.write(
            BudgetedApprovalRecord(
                run_id=payload.run_id,
                job=payload.job,
                approved_by=actor.to_dict(),
                approved_at=self.now().isoformat(),
                payload=payload.to_dict(),
            )
        )
        return ExecutorResult(ok=True, details={"run_id": payload.run_id, "path": path})


def create_default_executors(
    config: OpsGateConfig,
    paths: GatingPaths,
    kraken: Optional[KrakenClient] = None,
    now: Callable[[], datetime] = utc_now,
) -> Dict[ApprovalKind, ApprovalExecutor]:
    impl = DefaultExecutors(config, paths, kraken=kraken, now=now)
    executors = [
        ApprovalExecutor(ApprovalKind.CRON_APPLY, impl.validate_cron, impl.cron_apply),
        ApprovalExecutor(
            ApprovalKind.CRON_APPLY_RECREATE, impl.validate_cron, impl.cron_apply_recreate
        ),
        ApprovalExecutor(
            ApprovalKind.CRON_APPLY_BUDGETED, impl.validate_cron, impl.cron_apply_budgeted
        ),
        ApprovalExecutor(
            ApprovalKind.LEDGER_PATCH, validate_ledger_patch_payload, impl.ledger_patch
        ),
        ApprovalExecutor(
            ApprovalKind.LEDGER_POSTINGS_APPLY,
            validate_postings_payload,
            impl.ledger_postings_apply,
        ),
        ApprovalExecutor(ApprovalKind.TRADE_EXECUTE, impl.validate_trade, impl.trade_execute),
        ApprovalExecutor(
            ApprovalKind.OPS_BUDGETED_RUN, validate_budgeted_run_payload, impl.budgeted_run
        ),
    ]
    return {e.kind: e for e in executors}
