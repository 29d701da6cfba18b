"""
Gating Service.
Creates approval requests, posts their cards, and drives the
pending -> approved/denied state machine from button callbacks.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Union

from ..async_utils import run_io_in_thread
from ..config import OpsGateConfig
from ..cronops.proposals import CronOpsWorkspace
from ..errors import InvalidState, TransportFailed
from ..paths import GatingPaths
from ..structured_logging import emit_structured_log
from .callback_data import CallbackAction, decode_callback_data, generate_approval_id
from .cards import build_approval_card
from .executors import ApprovalExecutor, ExecutorResult, create_default_executors
from .messenger import ApprovalMessenger
from .models import (
    ApprovalActor,
    ApprovalKind,
    ApprovalRequest,
    ApprovalResource,
    ApprovalStatus,
    AuditEventType,
    PayloadError,
    append_audit,
    build_audit_event,
    coerce_payload,
    resolve_request,
    utc_now,
    with_posted_messages,
)
from .policy import PolicyAction, is_approval_action_allowed, resolve_card_targets
from .storage import ApprovalStore

logger = logging.getLogger("OpsGate.approvals.service")


@dataclass
class RequestResult:
    ok: bool
    request: Optional[ApprovalRequest] = None
    reason: Optional[str] = None


@dataclass
class CallbackResult:
    handled: bool
    reason: Optional[str] = None
    request: Optional[ApprovalRequest] = None


class GatingService:
    """
    Approval workflow over a shared store and a chat messenger.

    Authorization and validation failures come back as structured reasons;
    only lock exhaustion on the store propagates as an exception.
    """

    def __init__(
        self,
        config: OpsGateConfig,
        messenger: ApprovalMessenger,
        store: Optional[ApprovalStore] = None,
        executors: Optional[Dict[ApprovalKind, ApprovalExecutor]] = None,
        paths: Optional[GatingPaths] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.messenger = messenger
        self.paths = paths or GatingPaths.from_env()
        self.now = now or utc_now
        self.store = store or ApprovalStore(self.paths.approvals_path)
        self.executors = (
            executors
            if executors is not None
            else create_default_executors(config, self.paths, now=self.now)
        )
        self.cronops = CronOpsWorkspace(self.paths.cronops_root)

    @property
    def gating(self):
        return self.config.gating

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request_approval(
        self,
        kind: Union[ApprovalKind, str],
        resource: Union[ApprovalResource, Mapping[str, Any]],
        payload: Any,
        actor: ApprovalActor,
    ) -> RequestResult:
        if not isinstance(resource, ApprovalResource):
            resource = ApprovalResource.from_dict(resource)

        decision = is_approval_action_allowed(
            self.gating, PolicyAction.REQUEST, resource, actor
        )
        if not decision.allowed:
            logger.info(
                f"Approval request for {resource.scope} refused: {decision.reason}"
            )
            return RequestResult(ok=False, reason=decision.reason)

        try:
            kind = ApprovalKind(kind)
        except ValueError:
            return RequestResult(ok=False, reason="unsupported-kind")
        executor = self.executors.get(kind)
        if executor is None:
            return RequestResult(ok=False, reason="unsupported-kind")

        try:
            payload = coerce_payload(kind, payload)
        except PayloadError as e:
            logger.info(f"Rejected {kind.value} payload: {e}")
            return RequestResult(ok=False, reason="payload-invalid")

        validation = executor.validate(payload)
        if not validation.ok:
            logger.info(f"Rejected {kind.value} payload: {validation.reason}")
            return RequestResult(ok=False, reason=validation.reason)

        now = self.now()
        request = ApprovalRequest(
            approval_id=generate_approval_id(),
            kind=kind,
            resource=resource,
            payload=payload,
            created_by=actor,
            created_at=now.isoformat(),
            status=ApprovalStatus.PENDING,
            audit=(build_audit_event(AuditEventType.POSTED, now, actor=actor),),
        )
        await run_io_in_thread(self.store.append, request)
        logger.info(
            f"Approval {request.approval_id} created: {kind.value} on {resource.scope} "
            f"by {actor.label}"
        )
        emit_structured_log(
            logger,
            level=logging.INFO,
            event="approval.requested",
            fields={
                "approval_id": request.approval_id,
                "kind": kind.value,
                "resource": resource.scope,
            },
        )

        card = build_approval_card(request, self.cronops)
        targets = resolve_card_targets(self.gating, resource)
        try:
            posted = await self.messenger.post_card(
                request, card.text, card.buttons, targets
            )
        except TransportFailed as e:
            logger.warning(
                f"Approval {request.approval_id} persisted but card delivery failed: {e}"
            )
            return RequestResult(ok=True, request=request)

        updated = await run_io_in_thread(
            self.store.update,
            request.approval_id,
            lambda entry: with_posted_messages(entry, posted),
        )
        return RequestResult(ok=True, request=updated or request)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def handle_callback(self, data: Any, actor: ApprovalActor) -> CallbackResult:
        parsed = decode_callback_data(data)
        if parsed is None:
            return CallbackResult(handled=False)

        request = self.store.get(parsed.approval_id)
        if request is None:
            return CallbackResult(handled=True, reason="not-found")

        if parsed.action == CallbackAction.APPROVE_RECREATE and not request.kind.is_cron_apply:
            return CallbackResult(handled=True, reason="invalid-action", request=request)

        decision = is_approval_action_allowed(
            self.gating, PolicyAction.APPROVE, request.resource, actor
        )
        if not decision.allowed:
            clicked = build_audit_event(
                AuditEventType.CLICKED, self.now(), actor=actor, note=decision.reason
            )
            await run_io_in_thread(
                self.store.update,
                request.approval_id,
                lambda entry: append_audit(entry, clicked),
            )
            logger.info(
                f"Approval {request.approval_id}: click by {actor.label} refused "
                f"({decision.reason})"
            )
            return CallbackResult(handled=True, reason="not-authorized", request=request)

        if not request.is_pending():
            return CallbackResult(handled=True, reason="not-pending", request=request)

        status = (
            ApprovalStatus.DENIED
            if parsed.action == CallbackAction.DENY
            else ApprovalStatus.APPROVED
        )
        now = self.now()
        try:
            resolved = await run_io_in_thread(
                self.store.update,
                request.approval_id,
                lambda entry: resolve_request(entry, status, actor, now),
            )
        except InvalidState as e:
            # Another approver resolved it between our read and the lock.
            return CallbackResult(handled=True, reason=e.reason, request=request)
        if resolved is None:
            return CallbackResult(handled=True, reason="not-found")

        logger.info(f"Approval {resolved.approval_id} {status.value} by {actor.label}")
        emit_structured_log(
            logger,
            level=logging.INFO,
            event="approval.resolved",
            fields={
                "approval_id": resolved.approval_id,
                "kind": resolved.kind.value,
                "status": status.value,
                "actor": actor.label,
            },
        )
        await self._sync_cards(resolved)

        if status != ApprovalStatus.APPROVED:
            return CallbackResult(handled=True, request=resolved)

        executor_kind = (
            ApprovalKind.CRON_APPLY_RECREATE
            if parsed.action == CallbackAction.APPROVE_RECREATE
            else resolved.kind
        )
        executor = self.executors.get(executor_kind)
        if executor is None:
            logger.error(f"Approval {resolved.approval_id}: no executor for {executor_kind.value}")
            return CallbackResult(handled=True, reason="missing-executor", request=resolved)

        result = await self._execute(executor, resolved, actor)
        details = dict(result.details or {})
        if result.log_ref:
            details["log_ref"] = result.log_ref
        outcome = build_audit_event(
            AuditEventType.EXECUTED if result.ok else AuditEventType.FAILED,
            self.now(),
            actor=actor,
            note=result.message,
            details=details or None,
        )
        final = await run_io_in_thread(
            self.store.update,
            resolved.approval_id,
            lambda entry: append_audit(entry, outcome),
        )
        final = final or append_audit(resolved, outcome)

        emit_structured_log(
            logger,
            level=logging.INFO if result.ok else logging.ERROR,
            event="approval.executed",
            fields={
                "approval_id": final.approval_id,
                "kind": executor_kind.value,
                "ok": result.ok,
                "log_ref": result.log_ref,
            },
        )
        await self._sync_cards(final)
        if not result.ok:
            await self._notify_failure(final, result)
        return CallbackResult(handled=True, request=final)

    async def _execute(
        self, executor: ApprovalExecutor, request: ApprovalRequest, actor: ApprovalActor
    ) -> ExecutorResult:
        try:
            result = await executor.execute(request.payload, actor)
        except Exception as e:
            logger.exception(f"Approval {request.approval_id}: executor raised")
            return ExecutorResult(ok=False, message=f"{type(e).__name__}: {e}")
        if result.ok:
            logger.info(f"Approval {request.approval_id} executed ({executor.kind.value})")
        else:
            logger.error(
                f"Approval {request.approval_id} execution failed: {result.message}"
            )
        return result

    # ------------------------------------------------------------------
    # Card sync
    # ------------------------------------------------------------------

    async def _sync_cards(self, request: ApprovalRequest) -> None:
        if not request.posted_messages:
            return
        card = build_approval_card(request, self.cronops)

        async def sync_one(message):
            try:
                await self.messenger.edit_card(message, card.text, card.buttons)
            except TransportFailed as e:
                logger.warning(
                    f"Card edit failed for approval {request.approval_id} in chat "
                    f"{message.chat_id}: {e}"
                )
                await self._notify(
                    message.chat_id,
                    f"Approval {request.approval_id} {request.status.value} elsewhere.",
                )

        await asyncio.gather(*(sync_one(m) for m in request.posted_messages))

    async def _notify(self, chat_id: str, text: str) -> None:
        try:
            await self.messenger.notify(chat_id, text)
        except TransportFailed as e:
            logger.warning(f"Notify to chat {chat_id} failed: {e}")

    async def _notify_failure(self, request: ApprovalRequest, result: ExecutorResult) -> None:
        if self.gating is None or not self.gating.notify_execution_failures:
            return
        text = f"Approval {request.approval_id} ({request.kind.value}) failed: {result.message or 'unknown error'}"
        if result.log_ref:
            text = f"{text}\nLog: {result.log_ref}"
        for chat_id in self.gating.admin_chats:
            await self._notify(chat_id, text)
