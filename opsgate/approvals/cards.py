"""
Approval Cards.
Plain-text card plus inline button rows rendered for each approval request.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..cronops.proposals import CronOpsWorkspace, CronProposalSummary
from ..ledgers.snapshot import summarize_ledger_patch
from .callback_data import CallbackAction, encode_callback_data
from .models import (
    ApprovalKind,
    ApprovalRequest,
    ApprovalStatus,
    AuditEventType,
    BudgetedRunPayload,
    LedgerPatchPayload,
    LedgerPostingsApplyPayload,
    TradeExecutePayload,
)

MAX_CARD_LINES = 10

HEADERS = {
    ApprovalKind.CRON_APPLY: "Cron Apply",
    ApprovalKind.CRON_APPLY_RECREATE: "Cron Apply",
    ApprovalKind.CRON_APPLY_BUDGETED: "Cron Apply",
    ApprovalKind.LEDGER_PATCH: "Ledger Patch",
    ApprovalKind.LEDGER_POSTINGS_APPLY: "Ledger Postings",
    ApprovalKind.TRADE_EXECUTE: "Trade Execute",
    ApprovalKind.OPS_BUDGETED_RUN: "Budgeted Run",
}


@dataclass(frozen=True)
class CardButton:
    text: str
    callback_data: str

    def to_dict(self) -> Dict[str, str]:
        return {"text": self.text, "callback_data": self.callback_data}


ButtonRows = List[List[CardButton]]


@dataclass
class ApprovalCard:
    text: str
    buttons: ButtonRows = field(default_factory=list)


def _status_actor_label(request: ApprovalRequest) -> Optional[str]:
    event = request.last_event(AuditEventType.APPROVED, AuditEventType.DENIED)
    if event is None or event.actor is None:
        return None
    if event.actor.username:
        return f"@{event.actor.username}"
    if event.actor.user_id:
        return f"id:{event.actor.user_id}"
    return None


def format_status_line(request: ApprovalRequest) -> str:
    if request.status == ApprovalStatus.PENDING:
        return "pending"
    if request.status == ApprovalStatus.EXPIRED:
        return "expired"
    label = _status_actor_label(request)
    return f"{request.status.value} by {label}" if label else request.status.value


def format_cron_summary(summary: Optional[CronProposalSummary]) -> str:
    parts = []
    if summary is not None:
        if summary.logical_id:
            parts.append(summary.logical_id)
        if summary.schedule:
            parts.append(f"@ {summary.schedule}")
    return " ".join(parts) if parts else "pending cron proposal"


def _fmt_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _summary_line(request: ApprovalRequest, cronops: Optional[CronOpsWorkspace]) -> Optional[str]:
    payload = request.payload
    if request.kind.is_cron_apply:
        summary = cronops.load_summary(request.resource.id) if cronops else None
        return format_cron_summary(summary)
    if isinstance(payload, LedgerPatchPayload):
        return summarize_ledger_patch(payload.patch)
    if isinstance(payload, TradeExecutePayload):
        text = f"{payload.side} {_fmt_number(payload.quantity)} {payload.symbol} ({payload.order_type})"
        if payload.order_type == "limit" and payload.limit_price is not None:
            text = f"{text} @ {_fmt_number(payload.limit_price)}"
        notional = payload.resolve_notional_usd()
        if notional is not None:
            text = f"{text} ~${notional:,.2f}"
        return text
    if isinstance(payload, LedgerPostingsApplyPayload):
        return f"{len(payload.postings)} postings for run {payload.run_id}"
    if isinstance(payload, BudgetedRunPayload):
        parts = [payload.job]
        if payload.estimated_tokens is not None:
            parts.append(f"~{_fmt_number(payload.estimated_tokens)} tokens")
        if payload.estimated_cost_usd is not None:
            parts.append(f"~${payload.estimated_cost_usd:.2f}")
        return ", ".join(parts)
    return None


def _resource_line(request: ApprovalRequest) -> str:
    if request.kind.is_cron_apply:
        return f"Resource: proposal {request.resource.id}"
    if request.kind == ApprovalKind.LEDGER_PATCH:
        return f"Resource: ledger {request.resource.id}"
    return f"Resource: {request.resource.scope}"


def build_buttons(request: ApprovalRequest) -> ButtonRows:
    approval_id = request.approval_id
    rows = [
        [
            CardButton("✅ Approve", encode_callback_data(approval_id, CallbackAction.APPROVE)),
            CardButton("❌ Deny", encode_callback_data(approval_id, CallbackAction.DENY)),
        ]
    ]
    if request.kind.is_cron_apply:
        rows.append(
            [
                CardButton(
                    "⚠️ Approve (RECREATE)",
                    encode_callback_data(approval_id, CallbackAction.APPROVE_RECREATE),
                )
            ]
        )
    return rows


def build_approval_card(
    request: ApprovalRequest, cronops: Optional[CronOpsWorkspace] = None
) -> ApprovalCard:
    """Render the card; buttons are only attached while the request is pending."""
    summary = _summary_line(request, cronops)
    lines = [
        HEADERS.get(request.kind, "Approval"),
        _resource_line(request),
        f"Summary: {summary}" if summary else None,
        f"Status: {format_status_line(request)}",
        f"Approval: {request.approval_id}",
    ]
    text = "\n".join(line for line in lines if line)
    buttons = build_buttons(request) if request.is_pending() else []
    return ApprovalCard(text="\n".join(text.split("\n")[:MAX_CARD_LINES]), buttons=buttons)
