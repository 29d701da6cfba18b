"""
Approval Gates Package.
Resource-scoped approval policy, the shared approval store and the
callback-driven approval state machine.
"""

from .callback_data import (
    CallbackAction,
    CallbackData,
    decode_callback_data,
    encode_callback_data,
    generate_approval_id,
)
from .models import (
    ApprovalActor,
    ApprovalKind,
    ApprovalRequest,
    ApprovalResource,
    ApprovalStatus,
    AuditEventType,
    MessageRef,
)
from .policy import (
    PolicyAction,
    PolicyDecision,
    is_approval_action_allowed,
    resolve_card_targets,
    resolve_chat_classes,
    resolve_policy_for_resource,
)
from .storage import ApprovalStore, StoreSnapshot

__all__ = [
    "ApprovalActor",
    "ApprovalKind",
    "ApprovalRequest",
    "ApprovalResource",
    "ApprovalStatus",
    "ApprovalStore",
    "AuditEventType",
    "CallbackAction",
    "CallbackData",
    "MessageRef",
    "PolicyAction",
    "PolicyDecision",
    "StoreSnapshot",
    "decode_callback_data",
    "encode_callback_data",
    "generate_approval_id",
    "is_approval_action_allowed",
    "resolve_card_targets",
    "resolve_chat_classes",
    "resolve_policy_for_resource",
]
