"""
Unit tests for approval policy resolution.
"""

import unittest

from opsgate.approvals.models import ApprovalActor, ApprovalResource
from opsgate.approvals.policy import (
    PolicyAction,
    is_approval_action_allowed,
    resolve_card_targets,
    resolve_chat_classes,
    resolve_policy_for_resource,
)
from opsgate.config import ChatClass, GatingConfig, PolicyConfig, PolicyRole

ADMIN = ChatClass.ADMIN
PUBLIC = ChatClass.PUBLIC


def _role(*classes, users=None):
    return PolicyRole(chat_classes=list(classes), users=list(users or []))


def _gating(policies, **kwargs):
    kwargs.setdefault("admin_chats", ["100"])
    kwargs.setdefault("public_chats", ["200"])
    return GatingConfig(enabled=True, policies=policies, **kwargs)


FINANCE = ApprovalResource("ledger", "finance")
CORE = ApprovalResource("ledger", "core")


class TestPolicyMatching(unittest.TestCase):
    def setUp(self):
        self.policies = [
            PolicyConfig("ledger:*", _role(ADMIN), _role(ADMIN)),
            PolicyConfig("ledger:finance", _role(ADMIN, PUBLIC), _role(ADMIN, PUBLIC)),
            PolicyConfig("*:*", _role(ADMIN), None),
        ]

    def test_most_specific_policy_wins(self):
        policy = resolve_policy_for_resource(self.policies, FINANCE)
        self.assertEqual(policy.resource, "ledger:finance")

    def test_wildcard_id_matches_other_ids(self):
        policy = resolve_policy_for_resource(self.policies, CORE)
        self.assertEqual(policy.resource, "ledger:*")

    def test_full_wildcard_is_the_fallback(self):
        policy = resolve_policy_for_resource(
            self.policies, ApprovalResource("exchange", "kraken")
        )
        self.assertEqual(policy.resource, "*:*")

    def test_equal_specificity_keeps_first_in_order(self):
        policies = [
            PolicyConfig("*:finance", _role(ADMIN), None),
            PolicyConfig("ledger:*", _role(PUBLIC), None),
        ]
        policy = resolve_policy_for_resource(policies, FINANCE)
        self.assertEqual(policy.resource, "*:finance")

    def test_malformed_patterns_never_match(self):
        policies = [
            PolicyConfig("ledger", _role(ADMIN), None),
            PolicyConfig("ledger:finance:extra", _role(ADMIN), None),
        ]
        self.assertIsNone(resolve_policy_for_resource(policies, FINANCE))

    def test_no_policies(self):
        self.assertIsNone(resolve_policy_for_resource([], FINANCE))


class TestChatClasses(unittest.TestCase):
    def test_admin_ranked_before_public(self):
        gating = _gating([], admin_chats=["100"], public_chats=["100", "200"])
        self.assertEqual(resolve_chat_classes(gating, "100"), [ADMIN, PUBLIC])
        self.assertEqual(resolve_chat_classes(gating, 200), [PUBLIC])
        self.assertEqual(resolve_chat_classes(gating, " 300 "), [])


class TestApprovalActionAllowed(unittest.TestCase):
    def setUp(self):
        self.gating = _gating(
            [
                PolicyConfig("ledger:finance", _role(ADMIN, PUBLIC), _role(ADMIN, PUBLIC)),
                PolicyConfig("ledger:core", _role(ADMIN), _role(ADMIN)),
                PolicyConfig("cron_proposal:*", _role(ADMIN), _role(ADMIN)),
            ]
        )

    def _check(self, gating, resource, chat_id, action=PolicyAction.APPROVE, **actor):
        return is_approval_action_allowed(
            gating, action, resource, ApprovalActor(chat_id=chat_id, **actor)
        )

    def test_allows_finance_approvals_from_public_chats(self):
        decision = self._check(self.gating, FINANCE, "200", user_id="55")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, "allowed")

    def test_denies_core_ledger_approvals_from_public_chats(self):
        decision = self._check(self.gating, CORE, "200", user_id="55")
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, "chat-not-allowed")

    def test_denies_cron_approvals_from_public_chats(self):
        decision = self._check(
            self.gating, ApprovalResource("cron_proposal", "abc"), "200", user_id="55"
        )
        self.assertEqual(decision.reason, "chat-not-allowed")

    def test_unknown_chat_is_not_allowed(self):
        decision = self._check(self.gating, FINANCE, "999", user_id="55")
        self.assertEqual(decision.reason, "chat-not-allowed")

    def test_gating_disabled(self):
        self.assertEqual(
            self._check(None, FINANCE, "100").reason, "gating-disabled"
        )
        disabled = _gating(self.gating.policies)
        disabled.enabled = False
        self.assertEqual(self._check(disabled, FINANCE, "100").reason, "gating-disabled")

    def test_no_policy(self):
        decision = self._check(self.gating, ApprovalResource("exchange", "kraken"), "100")
        self.assertEqual(decision.reason, "no-policy")

    def test_no_role_for_action(self):
        gating = _gating([PolicyConfig("ledger:finance", _role(ADMIN), None)])
        self.assertEqual(self._check(gating, FINANCE, "100").reason, "no-role")
        self.assertTrue(
            self._check(gating, FINANCE, "100", action=PolicyAction.REQUEST).allowed
        )

    def test_empty_chat_classes_deny(self):
        gating = _gating([PolicyConfig("ledger:finance", _role(), _role())])
        self.assertEqual(self._check(gating, FINANCE, "100").reason, "chat-not-allowed")

    def test_respects_per_user_allowlists(self):
        gating = _gating(
            [
                PolicyConfig(
                    "ledger:finance",
                    _role(ADMIN, users=["42", "@Alice"]),
                    _role(ADMIN, users=["42", "@Alice", "id:77"]),
                )
            ]
        )
        denied = self._check(gating, FINANCE, "100", user_id="43")
        self.assertEqual(denied.reason, "user-not-allowed")
        self.assertTrue(self._check(gating, FINANCE, "100", username="alice").allowed)
        self.assertTrue(self._check(gating, FINANCE, "100", user_id="42").allowed)
        self.assertTrue(self._check(gating, FINANCE, "100", user_id="77").allowed)

    def test_allowlist_requires_some_identity(self):
        gating = _gating(
            [PolicyConfig("ledger:finance", None, _role(ADMIN, users=["42"]))]
        )
        self.assertEqual(self._check(gating, FINANCE, "100").reason, "user-not-allowed")


class TestCardTargets(unittest.TestCase):
    def test_admin_only_policy_targets_admin_chats(self):
        gating = _gating(
            [PolicyConfig("ledger:core", _role(ADMIN), _role(ADMIN))],
            admin_chats=["100", "101"],
        )
        self.assertEqual(resolve_card_targets(gating, CORE), ["100", "101"])

    def test_public_role_adds_public_chats(self):
        gating = _gating([PolicyConfig("ledger:finance", _role(ADMIN), _role(PUBLIC))])
        self.assertEqual(resolve_card_targets(gating, FINANCE), ["100", "200"])

    def test_public_cron_view_flag(self):
        cron = ApprovalResource("cron_proposal", "p1")
        gating = _gating([PolicyConfig("cron_proposal:*", _role(ADMIN), _role(ADMIN))])
        self.assertEqual(resolve_card_targets(gating, cron), ["100"])
        gating.allow_public_view_for_cron_proposals = True
        self.assertEqual(resolve_card_targets(gating, cron), ["100", "200"])

    def test_targets_are_deduplicated(self):
        gating = _gating(
            [PolicyConfig("ledger:finance", _role(PUBLIC), None)],
            admin_chats=["100"],
            public_chats=["100", "200"],
        )
        self.assertEqual(resolve_card_targets(gating, FINANCE), ["100", "200"])

    def test_no_gating_means_no_targets(self):
        self.assertEqual(resolve_card_targets(None, FINANCE), [])


if __name__ == "__main__":
    unittest.main()
