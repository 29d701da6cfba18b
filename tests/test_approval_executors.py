"""
Tests for the built-in approval executors against a temporary state dir.
"""

import json
import os
import shutil
import stat
import tempfile
import unittest
from datetime import datetime, timezone

from opsgate.approvals.executors import (
    create_default_executors,
    resolve_trade_postings,
    validate_budgeted_run_payload,
    validate_ledger_patch_payload,
    validate_postings_payload,
)
from opsgate.approvals.models import (
    ApprovalActor,
    ApprovalKind,
    BudgetedRunPayload,
    CronApplyBudgetedPayload,
    CronApplyPayload,
    CronMetrics,
    LedgerPatch,
    LedgerPatchPayload,
    LedgerPosting,
    LedgerPostingsApplyPayload,
    LedgerProvenance,
    TradeExecutePayload,
)
from opsgate.config import KrakenConfig, OpsGateConfig
from opsgate.cronops.metrics import CronUsageLog
from opsgate.ledgers.journal import LedgerJournal
from opsgate.ledgers.snapshot import LedgerSnapshotStore
from opsgate.paths import GatingPaths
from opsgate.trading.store import TradeExecutionLog

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
APPROVER = ApprovalActor(chat_id="100", user_id="99", username="ops")


def _write_wrapper(root, body):
    path = os.path.join(root, "bin", "cronops_exec_apply.sh")
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write("#!/bin/sh\n" + body + "\n")
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR)
    return path


class ExecutorTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="opsgate-exec-")
        self.paths = GatingPaths(self.tmp)
        self.config = OpsGateConfig()
        self.executors = create_default_executors(self.config, self.paths, now=lambda: NOW)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _make_proposal(self, proposal_id="p1"):
        os.makedirs(
            os.path.join(self.paths.cronops_root, "proposals", "pending", proposal_id)
        )


class TestExecutorRegistry(ExecutorTestCase):
    def test_every_kind_has_an_executor(self):
        self.assertEqual(set(self.executors), set(ApprovalKind))
        for kind, executor in self.executors.items():
            self.assertEqual(executor.kind, kind)


class TestCronExecutors(ExecutorTestCase):
    def test_validation(self):
        validate = self.executors[ApprovalKind.CRON_APPLY].validate
        self.assertEqual(validate(CronApplyPayload("")).reason, "proposal-id-missing")
        self.assertEqual(validate(CronApplyPayload("../x")).reason, "proposal-id-invalid")
        self.assertEqual(validate(CronApplyPayload("p1")).reason, "proposal-not-found")
        self._make_proposal()
        self.assertTrue(validate(CronApplyPayload("p1")).ok)

    async def test_missing_wrapper_fails(self):
        self._make_proposal()
        result = await self.executors[ApprovalKind.CRON_APPLY].execute(
            CronApplyPayload("p1"), APPROVER
        )
        self.assertFalse(result.ok)
        self.assertEqual(result.message, "cronops wrapper not found")

    async def test_runs_wrapper_from_cronops_root(self):
        self._make_proposal()
        root = self.paths.cronops_root
        _write_wrapper(root, 'echo "$@" > applied.txt')
        os.makedirs(os.path.join(root, "logs"))
        with open(os.path.join(root, "logs", "p1.log"), "w", encoding="utf-8") as f:
            f.write("ok\n")

        result = await self.executors[ApprovalKind.CRON_APPLY_RECREATE].execute(
            CronApplyPayload("p1"), APPROVER
        )
        self.assertTrue(result.ok)
        self.assertEqual(result.log_ref, os.path.join("cronops", "logs", "p1.log"))
        with open(os.path.join(root, "applied.txt"), "r", encoding="utf-8") as f:
            self.assertEqual(f.read().strip(), "p1 ALLOW_RECREATE")

    async def test_wrapper_failure_carries_stderr(self):
        self._make_proposal()
        _write_wrapper(self.paths.cronops_root, "echo boom >&2\nexit 3")
        result = await self.executors[ApprovalKind.CRON_APPLY].execute(
            CronApplyPayload("p1"), APPROVER
        )
        self.assertFalse(result.ok)
        self.assertEqual(result.message, "cronops wrapper failed: exit 3: boom")

    async def test_budgeted_apply_records_usage(self):
        self._make_proposal()
        _write_wrapper(self.paths.cronops_root, "exit 0")
        payload = CronApplyBudgetedPayload(
            "p1", metrics=CronMetrics(estimated_tokens=300, model_tier="small")
        )
        result = await self.executors[ApprovalKind.CRON_APPLY_BUDGETED].execute(
            payload, APPROVER
        )
        self.assertTrue(result.ok)
        usage = CronUsageLog(self.paths.cron_usage_path).read()
        self.assertEqual(len(usage), 1)
        self.assertEqual(usage[0].tokens_used, 300)
        self.assertEqual(usage[0].exit_status, "success")
        self.assertEqual(usage[0].end_time, NOW.isoformat())


class TestLedgerExecutors(ExecutorTestCase):
    def test_patch_validation(self):
        self.assertEqual(
            validate_ledger_patch_payload(LedgerPatchPayload("", LedgerPatch())).reason,
            "ledger-missing",
        )
        self.assertEqual(
            validate_ledger_patch_payload(LedgerPatchPayload("a b", LedgerPatch())).reason,
            "ledger-invalid",
        )
        self.assertEqual(
            validate_ledger_patch_payload(LedgerPatchPayload("finance", None)).reason,
            "ledger-patch-missing",
        )
        self.assertEqual(
            validate_ledger_patch_payload(
                LedgerPatchPayload("finance", LedgerPatch(set={"k": [1]}))
            ).reason,
            "patch-set-value-invalid",
        )

    async def test_patch_applies_to_snapshot(self):
        payload = LedgerPatchPayload("finance", LedgerPatch(set={"balance": 10}))
        result = await self.executors[ApprovalKind.LEDGER_PATCH].execute(payload, APPROVER)
        self.assertTrue(result.ok)
        self.assertEqual(result.details, {"ledger": "finance", "entries": 1})
        self.assertEqual(
            LedgerSnapshotStore(self.paths.ledger_snapshots_dir).read("finance")["entries"],
            {"balance": 10},
        )

    def _postings_payload(self, **overrides):
        fields = dict(
            ledger="finance",
            run_id="run-1",
            postings=[LedgerPosting("trading:position", 0.5, "BTC")],
            provenance=LedgerProvenance("kraken", order_id="OX1", dry_run=False),
        )
        fields.update(overrides)
        return LedgerPostingsApplyPayload(**fields)

    def test_postings_validation(self):
        self.assertTrue(validate_postings_payload(self._postings_payload()).ok)
        cases = [
            (dict(run_id=" "), "run-id-missing"),
            (dict(postings=[]), "postings-missing"),
            (dict(postings=[LedgerPosting("", 1, "BTC")]), "posting-invalid"),
            (dict(postings=[LedgerPosting("a", True, "BTC")]), "posting-amount-invalid"),
            (dict(postings=[LedgerPosting("a", float("nan"), "BTC")]), "posting-amount-invalid"),
            (dict(provenance=None), "provenance-missing"),
        ]
        for overrides, reason in cases:
            with self.subTest(reason=reason):
                self.assertEqual(
                    validate_postings_payload(self._postings_payload(**overrides)).reason,
                    reason,
                )

    async def test_postings_are_journaled(self):
        payload = self._postings_payload()
        result = await self.executors[ApprovalKind.LEDGER_POSTINGS_APPLY].execute(
            payload, APPROVER
        )
        self.assertTrue(result.ok)
        entries = LedgerJournal(self.paths.ledger_journals_dir).read("finance")
        self.assertEqual(len(entries), 1)
        entry = entries[0]
        self.assertEqual(entry["run_id"], "run-1")
        self.assertEqual(entry["approval_id"], "unknown")
        self.assertEqual(entry["timestamp"], NOW.isoformat())
        self.assertEqual(
            entry["provenance"], {"exchange": "kraken", "order_id": "OX1", "dry_run": False}
        )
        self.assertEqual(len(entry["payload_hash"]), 64)


class TestTradeExecutor(ExecutorTestCase):
    def test_postings_for_buy_with_notional(self):
        payload = TradeExecutePayload(
            "kraken", "buy", "BTC/USD", "limit", 0.5, limit_price=100.0
        )
        postings, notes = resolve_trade_postings(payload)
        self.assertIsNone(notes)
        self.assertEqual(
            postings,
            [
                {"account": "trading:position", "amount": 0.5, "asset": "BTC"},
                {"account": "trading:cash", "amount": -50.0, "asset": "USD"},
            ],
        )

    def test_sell_without_notional_omits_cash(self):
        payload = TradeExecutePayload("kraken", "sell", "ETH", "market", 2)
        postings, notes = resolve_trade_postings(payload)
        self.assertEqual(postings, [{"account": "trading:position", "amount": -2, "asset": "ETH"}])
        self.assertIn("cash posting omitted", notes)

    def test_validation_uses_kraken_limits(self):
        config = OpsGateConfig(kraken=KrakenConfig(allowed_symbols=["BTC/USD"]))
        executors = create_default_executors(config, self.paths)
        validate = executors[ApprovalKind.TRADE_EXECUTE].validate
        rejected = validate(TradeExecutePayload("kraken", "buy", "DOGE/USD", "market", 1))
        self.assertEqual(rejected.reason, "symbol-not-allowed")

    async def test_dry_run_records_execution_and_ledger_request(self):
        payload = TradeExecutePayload("kraken", "buy", "BTC/USD", "market", 0.25)
        result = await self.executors[ApprovalKind.TRADE_EXECUTE].execute(payload, APPROVER)

        self.assertTrue(result.ok)
        self.assertTrue(result.details["dry_run"])
        ledger_request = result.details["ledger_request"]
        self.assertEqual(ledger_request["ledger"], "finance")
        self.assertEqual(
            ledger_request["postings"],
            [{"account": "trading:position", "amount": 0.25, "asset": "BTC"}],
        )
        self.assertEqual(ledger_request["provenance"], {"exchange": "kraken", "dry_run": True})
        self.assertIn("notes", ledger_request)

        records = TradeExecutionLog(self.paths.trade_executions_path).read()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["mode"], "dry-run")
        self.assertIsNone(records[0]["approval_id"])


class TestBudgetedRunExecutor(ExecutorTestCase):
    def test_validation(self):
        cases = [
            (BudgetedRunPayload(run_id="", job="j"), "run-id-missing"),
            (BudgetedRunPayload(run_id="a/b", job="j"), "run-id-invalid"),
            (BudgetedRunPayload(run_id="r1", job=" "), "job-missing"),
            (BudgetedRunPayload(run_id="r1", job="j", estimated_tokens=-1), "estimate-invalid"),
            (BudgetedRunPayload(run_id="r1", job="j", estimated_cost_usd="1"), "estimate-invalid"),
        ]
        for payload, reason in cases:
            with self.subTest(reason=reason):
                self.assertEqual(validate_budgeted_run_payload(payload).reason, reason)
        self.assertTrue(
            validate_budgeted_run_payload(
                BudgetedRunPayload(run_id="r1", job="j", estimated_tokens=0)
            ).ok
        )

    async def test_writes_approved_marker(self):
        payload = BudgetedRunPayload(run_id="r1", job="sentiment_labeler", estimated_tokens=900)
        result = await self.executors[ApprovalKind.OPS_BUDGETED_RUN].execute(payload, APPROVER)
        self.assertTrue(result.ok)
        path = os.path.join(self.paths.budgeted_dir, "approved", "r1.json")
        self.assertEqual(result.details["path"], path)
        with open(path, "r", encoding="utf-8") as f:
            record = json.load(f)
        self.assertEqual(record["job"], "sentiment_labeler")
        self.assertEqual(record["approved_by"]["username"], "ops")
        self.assertEqual(record["approved_at"], NOW.isoformat())


if __name__ == "__main__":
    unittest.main()
