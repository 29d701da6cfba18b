"""
Approval Request Helpers.
One coroutine per gated action, building the resource and payload the
service expects.
"""

from typing import Any, Dict, Iterable, List, Optional

from ..cronops.metrics import CronUsageEvent, CronUsageLog
from .budgets import enforce_cron_budget
from .models import (
    ApprovalActor,
    ApprovalKind,
    ApprovalResource,
    BudgetedRunPayload,
    CronApplyBudgetedPayload,
    CronApplyPayload,
    CronMetrics,
    LedgerPatch,
    LedgerPatchPayload,
    LedgerPostingsApplyPayload,
    ResourceType,
    TradeExecutePayload,
)
from .service import GatingService, RequestResult


def _usage_events(service: GatingService) -> List[CronUsageEvent]:
    return CronUsageLog(service.paths.cron_usage_path).read()


async def request_cron_apply_approval(
    service: GatingService,
    proposal_id: str,
    actor: ApprovalActor,
    allow_recreate: bool = False,
) -> RequestResult:
    kind = ApprovalKind.CRON_APPLY_RECREATE if allow_recreate else ApprovalKind.CRON_APPLY
    return await service.request_approval(
        kind,
        ApprovalResource(ResourceType.CRON_PROPOSAL, proposal_id),
        CronApplyPayload(proposal_id=proposal_id, allow_recreate=allow_recreate),
        actor,
    )


async def request_cron_apply_budgeted_approval(
    service: GatingService,
    proposal_id: str,
    actor: ApprovalActor,
    metrics: Optional[CronMetrics] = None,
    allow_recreate: bool = False,
    usage_events: Optional[Iterable[CronUsageEvent]] = None,
) -> RequestResult:
    """Refuse up front when the run's estimates break the configured budgets."""
    check = enforce_cron_budget(
        service.config.budgets,
        metrics,
        usage_events if usage_events is not None else _usage_events(service),
        service.now(),
    )
    if not check.ok:
        return RequestResult(ok=False, reason=check.reason)
    return await service.request_approval(
        ApprovalKind.CRON_APPLY_BUDGETED,
        ApprovalResource(ResourceType.CRON_PROPOSAL, proposal_id),
        CronApplyBudgetedPayload(
            proposal_id=proposal_id, allow_recreate=allow_recreate, metrics=metrics
        ),
        actor,
    )


async def request_ledger_patch_approval(
    service: GatingService,
    ledger: str,
    patch: LedgerPatch,
    actor: ApprovalActor,
) -> RequestResult:
    return await service.request_approval(
        ApprovalKind.LEDGER_PATCH,
        ApprovalResource(ResourceType.LEDGER, ledger),
        LedgerPatchPayload(ledger=ledger, patch=patch),
        actor,
    )


async def request_ledger_postings_approval(
    service: GatingService,
    payload: LedgerPostingsApplyPayload,
    actor: ApprovalActor,
) -> RequestResult:
    return await service.request_approval(
        ApprovalKind.LEDGER_POSTINGS_APPLY,
        ApprovalResource(ResourceType.LEDGER, payload.ledger),
        payload,
        actor,
    )


async def request_trade_execute_approval(
    service: GatingService,
    payload: TradeExecutePayload,
    actor: ApprovalActor,
) -> RequestResult:
    return await service.request_approval(
        ApprovalKind.TRADE_EXECUTE,
        ApprovalResource(ResourceType.EXCHANGE, payload.exchange),
        payload,
        actor,
    )


async def request_trade_ledger_postings(
    service: GatingService,
    execution_details: Dict[str, Any],
    actor: ApprovalActor,
    approval_id: Optional[str] = None,
) -> RequestResult:
    """Follow an executed trade with approval of its proposed journal postings."""
    ledger_request = dict(execution_details.get("ledger_request") or {})
    if approval_id:
        ledger_request["approval_id"] = approval_id
    return await service.request_approval(
        ApprovalKind.LEDGER_POSTINGS_APPLY,
        ApprovalResource(ResourceType.LEDGER, str(ledger_request.get("ledger") or "")),
        ledger_request,
        actor,
    )


async def request_budgeted_run_approval(
    service: GatingService,
    payload: BudgetedRunPayload,
    actor: ApprovalActor,
    usage_events: Optional[Iterable[CronUsageEvent]] = None,
) -> RequestResult:
    check = enforce_cron_budget(
        service.config.budgets,
        payload,
        usage_events if usage_events is not None else _usage_events(service),
        service.now(),
    )
    if not check.ok:
        return RequestResult(ok=False, reason=check.reason)
    return await service.request_approval(
        ApprovalKind.OPS_BUDGETED_RUN,
        ApprovalResource(ResourceType.OPS_JOB, payload.job),
        payload,
        actor,
    )
