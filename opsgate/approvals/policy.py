"""
Approval Policy Resolution.
Maps a resource and an actor onto an allow/deny decision using the
resource-scoped policies from the gating config.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..config import ChatClass, GatingConfig, PolicyConfig, PolicyRole, normalize_chat_id
from .models import ApprovalActor, ApprovalResource, ResourceType


class PolicyAction(str, Enum):
    REQUEST = "request"
    APPROVE = "approve"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: str


def _pattern_specificity(pattern: str, resource: ApprovalResource) -> Optional[int]:
    """Number of literal segments when `pattern` matches, else None."""
    parts = pattern.split(":")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    type_part, id_part = parts
    if type_part != "*" and type_part != resource.type:
        return None
    if id_part != "*" and id_part != resource.id:
        return None
    return sum(1 for p in parts if p != "*")


def resolve_policy_for_resource(
    policies: List[PolicyConfig], resource: ApprovalResource
) -> Optional[PolicyConfig]:
    best: Optional[PolicyConfig] = None
    best_score = -1
    for policy in policies:
        score = _pattern_specificity(policy.resource, resource)
        # Strictly greater: the first of equally specific policies wins.
        if score is not None and score > best_score:
            best, best_score = policy, score
    return best


def resolve_chat_classes(gating: GatingConfig, chat_id) -> List[ChatClass]:
    chat = normalize_chat_id(chat_id)
    classes = []
    if chat in {normalize_chat_id(c) for c in gating.admin_chats}:
        classes.append(ChatClass.ADMIN)
    if chat in {normalize_chat_id(c) for c in gating.public_chats}:
        classes.append(ChatClass.PUBLIC)
    return classes


def _user_allowed(role: PolicyRole, actor: ApprovalActor) -> bool:
    allowlist = {u.strip().lower() for u in role.users if u and u.strip()}
    if not allowlist:
        return True
    candidates = set()
    if actor.user_id:
        user_id = str(actor.user_id).strip().lower()
        candidates.update({user_id, f"id:{user_id}"})
    if actor.username:
        candidates.add(f"@{actor.username.strip().lstrip('@').lower()}")
    return bool(candidates & allowlist)


def is_approval_action_allowed(
    gating: Optional[GatingConfig],
    action: PolicyAction,
    resource: ApprovalResource,
    actor: ApprovalActor,
) -> PolicyDecision:
    """
    Decide whether `actor` may perform `action` on `resource`.

    Checks run in a fixed order and the first failing one names the reason:
    gating-disabled, no-policy, no-role, chat-not-allowed, user-not-allowed.
    """
    if gating is None or not gating.enabled:
        return PolicyDecision(False, "gating-disabled")

    policy = resolve_policy_for_resource(gating.policies, resource)
    if policy is None:
        return PolicyDecision(False, "no-policy")

    role = policy.approve if PolicyAction(action) == PolicyAction.APPROVE else policy.request
    if role is None:
        return PolicyDecision(False, "no-role")

    chat_classes = resolve_chat_classes(gating, actor.chat_id)
    if not role.chat_classes or not any(c in role.chat_classes for c in chat_classes):
        return PolicyDecision(False, "chat-not-allowed")

    if not _user_allowed(role, actor):
        return PolicyDecision(False, "user-not-allowed")

    return PolicyDecision(True, "allowed")


def resolve_card_targets(
    gating: Optional[GatingConfig], resource: ApprovalResource
) -> List[str]:
    """Chats that receive the approval card for `resource`."""
    if gating is None:
        return []
    targets: List[str] = []

    def add(chat_id) -> None:
        normalized = normalize_chat_id(chat_id)
        if normalized and normalized not in targets:
            targets.append(normalized)

    for chat in gating.admin_chats:
        add(chat)

    policy = resolve_policy_for_resource(gating.policies, resource)
    public_roles = [
        role
        for role in ((policy.request, policy.approve) if policy else ())
        if role is not None and ChatClass.PUBLIC in role.chat_classes
    ]
    public_cron_view = (
        resource.type == ResourceType.CRON_PROPOSAL.value
        and gating.allow_public_view_for_cron_proposals
    )
    if public_roles or public_cron_view:
        for chat in gating.public_chats:
            add(chat)
    return targets
