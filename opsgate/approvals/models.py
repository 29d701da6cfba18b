"""
Approval Models.
Data structures for the approval workflow: requests, actors, audit events and
the kind-tagged executor payloads.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..errors import InvalidState


class ApprovalKind(str, Enum):
    """Closed set of gated actions."""

    CRON_APPLY = "cron.apply"
    CRON_APPLY_RECREATE = "cron.apply_recreate"
    CRON_APPLY_BUDGETED = "cron.apply_budgeted"
    LEDGER_PATCH = "ledger.patch"
    LEDGER_POSTINGS_APPLY = "ledger.postings.apply"
    TRADE_EXECUTE = "trade.execute"
    OPS_BUDGETED_RUN = "ops.budgeted_run"

    @property
    def is_cron_apply(self) -> bool:
        return self.value.startswith("cron.apply")


class ApprovalStatus(str, Enum):
    """Status of an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class ResourceType(str, Enum):
    CRON_PROPOSAL = "cron_proposal"
    LEDGER = "ledger"
    EXCHANGE = "exchange"
    OPS_JOB = "ops_job"


class AuditEventType(str, Enum):
    POSTED = "posted"
    CLICKED = "clicked"
    APPROVED = "approved"
    DENIED = "denied"
    EXECUTED = "executed"
    FAILED = "failed"
    EXPIRED = "expired"


class PayloadError(ValueError):
    """Raised when a payload document cannot be mapped onto its kind's shape."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


def _compact(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Actors, resources, messages, audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalActor:
    """Who requested or clicked: a chat plus an optional user."""

    chat_id: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    channel: str = "telegram"

    @property
    def label(self) -> str:
        if self.username:
            return f"@{self.username}"
        if self.user_id:
            return f"id:{self.user_id}"
        return f"chat:{self.chat_id}"

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "channel": self.channel,
                "chat_id": self.chat_id,
                "user_id": self.user_id,
                "username": self.username,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApprovalActor":
        return cls(
            channel=data.get("channel", "telegram"),
            chat_id=str(data["chat_id"]),
            user_id=_opt_str(data.get("user_id")),
            username=data.get("username"),
        )


@dataclass(frozen=True)
class ApprovalResource:
    type: str
    id: str

    def __post_init__(self):
        object.__setattr__(self, "type", str(_value(self.type)))
        object.__setattr__(self, "id", str(self.id))

    @property
    def scope(self) -> str:
        return f"{self.type}:{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApprovalResource":
        return cls(type=data["type"], id=data["id"])


@dataclass(frozen=True)
class MessageRef:
    """Opaque pointer to a posted card, kept for later status sync."""

    chat_id: str
    message_id: str
    channel: str = "telegram"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "chat_id": self.chat_id,
            "message_id": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MessageRef":
        return cls(
            channel=data.get("channel", "telegram"),
            chat_id=str(data["chat_id"]),
            message_id=str(data["message_id"]),
        )


@dataclass(frozen=True)
class AuditEvent:
    type: AuditEventType
    at: str
    actor: Optional[ApprovalActor] = None
    note: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "type": self.type.value,
                "at": self.at,
                "actor": self.actor.to_dict() if self.actor else None,
                "note": self.note,
                "details": self.details,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditEvent":
        actor = data.get("actor")
        return cls(
            type=AuditEventType(data["type"]),
            at=data["at"],
            actor=ApprovalActor.from_dict(actor) if actor else None,
            note=data.get("note"),
            details=data.get("details"),
        )


def build_audit_event(
    event_type: AuditEventType,
    now: datetime,
    actor: Optional[ApprovalActor] = None,
    note: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditEvent:
    return AuditEvent(
        type=event_type,
        at=now.isoformat(),
        actor=actor,
        note=note,
        details=details,
    )


# ---------------------------------------------------------------------------
# Payload variants (one per kind)
# ---------------------------------------------------------------------------


@dataclass
class CronMetrics:
    estimated_tokens: Optional[float] = None
    estimated_cost_usd: Optional[float] = None
    expected_runtime_seconds: Optional[float] = None
    model_tier: Optional[str] = None
    expected_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self.__dict__.copy())

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["CronMetrics"]:
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise PayloadError("metrics must be an object")
        return cls(
            estimated_tokens=data.get("estimated_tokens"),
            estimated_cost_usd=data.get("estimated_cost_usd"),
            expected_runtime_seconds=data.get("expected_runtime_seconds"),
            model_tier=data.get("model_tier"),
            expected_value=data.get("expected_value"),
        )


@dataclass
class CronApplyPayload:
    proposal_id: str
    allow_recreate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"proposal_id": self.proposal_id}
        if self.allow_recreate:
            data["allow_recreate"] = True
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CronApplyPayload":
        return cls(
            proposal_id=data.get("proposal_id"),  # type: ignore[arg-type]
            allow_recreate=bool(data.get("allow_recreate", False)),
        )


@dataclass
class CronApplyBudgetedPayload(CronApplyPayload):
    metrics: Optional[CronMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.metrics is not None:
            data["metrics"] = self.metrics.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CronApplyBudgetedPayload":
        return cls(
            proposal_id=data.get("proposal_id"),  # type: ignore[arg-type]
            allow_recreate=bool(data.get("allow_recreate", False)),
            metrics=CronMetrics.from_dict(data.get("metrics")),
        )


LedgerValue = Union[str, int, float, bool]


@dataclass
class LedgerPatch:
    set: Dict[str, LedgerValue] = field(default_factory=dict)
    remove: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.set:
            data["set"] = dict(self.set)
        if self.remove:
            data["remove"] = list(self.remove)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "LedgerPatch":
        if not isinstance(data, Mapping):
            raise PayloadError("patch must be an object")
        # Shapes are checked by the ledger validator so it can name the problem.
        return cls(set=data.get("set") or {}, remove=data.get("remove") or [])


@dataclass
class LedgerPatchPayload:
    ledger: str
    patch: Optional[LedgerPatch]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ledger": self.ledger,
            "patch": self.patch.to_dict() if self.patch is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LedgerPatchPayload":
        patch = data.get("patch")
        return cls(
            ledger=data.get("ledger"),  # type: ignore[arg-type]
            patch=LedgerPatch.from_dict(patch) if isinstance(patch, Mapping) else None,
        )


@dataclass
class TradeExecutePayload:
    exchange: str
    side: str  # "buy" | "sell"
    symbol: str
    order_type: str  # "market" | "limit"
    quantity: float
    limit_price: Optional[float] = None
    notional_usd: Optional[float] = None
    metrics: Optional[Dict[str, Any]] = None

    def resolve_notional_usd(self) -> Optional[float]:
        if _finite(self.notional_usd):
            return float(self.notional_usd)  # type: ignore[arg-type]
        if _finite(self.limit_price) and _finite(self.quantity):
            return float(self.limit_price) * float(self.quantity)  # type: ignore[arg-type]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "exchange": self.exchange,
                "side": self.side,
                "symbol": self.symbol,
                "order_type": self.order_type,
                "quantity": self.quantity,
                "limit_price": self.limit_price,
                "notional_usd": self.notional_usd,
                "metrics": self.metrics,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TradeExecutePayload":
        return cls(
            exchange=data.get("exchange"),  # type: ignore[arg-type]
            side=data.get("side"),  # type: ignore[arg-type]
            symbol=data.get("symbol"),  # type: ignore[arg-type]
            order_type=data.get("order_type", "market"),
            quantity=data.get("quantity"),  # type: ignore[arg-type]
            limit_price=data.get("limit_price"),
            notional_usd=data.get("notional_usd"),
            metrics=data.get("metrics"),
        )


@dataclass
class LedgerPosting:
    account: str
    amount: float
    asset: str

    def to_dict(self) -> Dict[str, Any]:
        return {"account": self.account, "amount": self.amount, "asset": self.asset}

    @classmethod
    def from_dict(cls, data: Any) -> "LedgerPosting":
        if not isinstance(data, Mapping):
            raise PayloadError("posting must be an object")
        return cls(
            account=data.get("account"),  # type: ignore[arg-type]
            amount=data.get("amount"),  # type: ignore[arg-type]
            asset=data.get("asset"),  # type: ignore[arg-type]
        )


@dataclass
class LedgerProvenance:
    exchange: str
    order_id: Optional[str] = None
    dry_run: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {"exchange": self.exchange, "order_id": self.order_id, "dry_run": self.dry_run}
        )

    @classmethod
    def from_dict(cls, data: Any) -> Optional["LedgerProvenance"]:
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise PayloadError("provenance must be an object")
        return cls(
            exchange=data.get("exchange"),  # type: ignore[arg-type]
            order_id=data.get("order_id"),
            dry_run=bool(data.get("dry_run", True)),
        )


@dataclass
class LedgerPostingsApplyPayload:
    ledger: str
    run_id: str
    postings: List[LedgerPosting]
    provenance: Optional[LedgerProvenance]
    approval_id: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "ledger": self.ledger,
                "run_id": self.run_id,
                "postings": [p.to_dict() for p in self.postings],
                "provenance": self.provenance.to_dict() if self.provenance else None,
                "approval_id": self.approval_id,
                "notes": self.notes,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LedgerPostingsApplyPayload":
        postings = data.get("postings") or []
        if not isinstance(postings, list):
            raise PayloadError("postings must be a list")
        return cls(
            ledger=data.get("ledger"),  # type: ignore[arg-type]
            run_id=data.get("run_id"),  # type: ignore[arg-type]
            postings=[LedgerPosting.from_dict(p) for p in postings],
            provenance=LedgerProvenance.from_dict(data.get("provenance")),
            approval_id=data.get("approval_id"),
            notes=data.get("notes"),
        )


@dataclass
class BudgetedRunPayload:
    """A metered batch job (e.g. the sentiment labeler) waiting for a go-ahead."""

    run_id: str
    job: str
    estimated_tokens: Optional[float] = None
    estimated_cost_usd: Optional[float] = None
    pending_items: Optional[int] = None
    max_items: Optional[int] = None
    model_name: Optional[str] = None
    model_tier: Optional[str] = None
    expected_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self.__dict__.copy())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BudgetedRunPayload":
        return cls(
            run_id=data.get("run_id"),  # type: ignore[arg-type]
            job=data.get("job"),  # type: ignore[arg-type]
            estimated_tokens=data.get("estimated_tokens"),
            estimated_cost_usd=data.get("estimated_cost_usd"),
            pending_items=data.get("pending_items"),
            max_items=data.get("max_items"),
            model_name=data.get("model_name"),
            model_tier=data.get("model_tier"),
            expected_value=data.get("expected_value"),
        )


ApprovalPayload = Union[
    CronApplyPayload,
    CronApplyBudgetedPayload,
    LedgerPatchPayload,
    TradeExecutePayload,
    LedgerPostingsApplyPayload,
    BudgetedRunPayload,
]

PAYLOAD_TYPES = {
    ApprovalKind.CRON_APPLY: CronApplyPayload,
    ApprovalKind.CRON_APPLY_RECREATE: CronApplyPayload,
    ApprovalKind.CRON_APPLY_BUDGETED: CronApplyBudgetedPayload,
    ApprovalKind.LEDGER_PATCH: LedgerPatchPayload,
    ApprovalKind.LEDGER_POSTINGS_APPLY: LedgerPostingsApplyPayload,
    ApprovalKind.TRADE_EXECUTE: TradeExecutePayload,
    ApprovalKind.OPS_BUDGETED_RUN: BudgetedRunPayload,
}


def _finite(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def payload_from_dict(kind: ApprovalKind, data: Any) -> ApprovalPayload:
    """
    Map a payload document onto its kind's dataclass.

    Raises:
        PayloadError: the document is not an object or a nested part has the
            wrong container type. Field-level checks belong to the validators.
    """
    if not isinstance(data, Mapping):
        raise PayloadError("payload must be an object")
    return PAYLOAD_TYPES[ApprovalKind(kind)].from_dict(data)


def coerce_payload(kind: ApprovalKind, payload: Any) -> ApprovalPayload:
    """Accept either the kind's dataclass or its dict form."""
    expected = PAYLOAD_TYPES[ApprovalKind(kind)]
    if type(payload) is expected:
        return payload
    if isinstance(payload, Mapping):
        return payload_from_dict(kind, payload)
    raise PayloadError(
        f"payload for {ApprovalKind(kind).value} must be {expected.__name__} or a dict"
    )


# ---------------------------------------------------------------------------
# Approval request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalRequest:
    """
    A persisted approval decision for one side-effecting action.

    Attributes:
        approval_id: UUID of this request.
        kind: Action kind; selects the executor.
        resource: Resource the policy is resolved against.
        payload: Kind-tagged executor payload.
        created_by: Requesting actor.
        created_at: ISO timestamp of creation.
        status: pending until one approve/deny click resolves it.
        audit: Append-only, chronologically ordered events.
        posted_messages: Cards posted for this request.
    """

    approval_id: str
    kind: ApprovalKind
    resource: ApprovalResource
    payload: ApprovalPayload
    created_by: ApprovalActor
    created_at: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    audit: Tuple[AuditEvent, ...] = ()
    posted_messages: Tuple[MessageRef, ...] = ()

    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def last_event(self, *types: AuditEventType) -> Optional[AuditEvent]:
        for event in reversed(self.audit):
            if event.type in types:
                return event
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approval_id": self.approval_id,
            "kind": self.kind.value,
            "resource": self.resource.to_dict(),
            "payload": self.payload.to_dict(),
            "created_by": self.created_by.to_dict(),
            "created_at": self.created_at,
            "status": self.status.value,
            "audit": [e.to_dict() for e in self.audit],
            "posted_messages": [m.to_dict() for m in self.posted_messages],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApprovalRequest":
        kind = ApprovalKind(data["kind"])
        return cls(
            approval_id=data["approval_id"],
            kind=kind,
            resource=ApprovalResource.from_dict(data["resource"]),
            payload=payload_from_dict(kind, data.get("payload") or {}),
            created_by=ApprovalActor.from_dict(data["created_by"]),
            created_at=data["created_at"],
            status=ApprovalStatus(data.get("status", "pending")),
            audit=tuple(AuditEvent.from_dict(e) for e in data.get("audit") or []),
            posted_messages=tuple(
                MessageRef.from_dict(m) for m in data.get("posted_messages") or []
            ),
        )


# ---------------------------------------------------------------------------
# Pure transitions (copy-on-write)
# ---------------------------------------------------------------------------


def append_audit(request: ApprovalRequest, *events: AuditEvent) -> ApprovalRequest:
    return replace(request, audit=request.audit + tuple(events))


def with_posted_messages(
    request: ApprovalRequest, messages: List[MessageRef]
) -> ApprovalRequest:
    return replace(request, posted_messages=tuple(messages))


def resolve_request(
    request: ApprovalRequest,
    status: ApprovalStatus,
    actor: ApprovalActor,
    now: datetime,
) -> ApprovalRequest:
    """
    Move a pending request to approved/denied, recording the click and the
    resolution in one step.

    Raises:
        InvalidState: the request is not pending, or `status` is not a
            click resolution.
    """
    if status not in (ApprovalStatus.APPROVED, ApprovalStatus.DENIED):
        raise InvalidState(f"Cannot resolve to {status.value}", reason="invalid-action")
    if not request.is_pending():
        raise InvalidState(
            f"Cannot resolve request in status: {request.status.value}",
            reason="not-pending",
        )
    resolution = (
        AuditEventType.APPROVED
        if status == ApprovalStatus.APPROVED
        else AuditEventType.DENIED
    )
    return replace(
        request,
        status=status,
        audit=request.audit
        + (
            build_audit_event(AuditEventType.CLICKED, now, actor=actor),
            build_audit_event(resolution, now, actor=actor),
        ),
    )
