"""
OpsGate CLI.
Inspect the approval store and ledgers, and file approval requests from the
shell. Cards go to Telegram when OPSGATE_CONNECTOR_TELEGRAM_TOKEN is set and
are printed otherwise.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict, List, Optional

from .approvals.models import (
    ApprovalActor,
    ApprovalStatus,
    BudgetedRunPayload,
    CronMetrics,
    LedgerPatch,
    TradeExecutePayload,
)
from .approvals.requests import (
    request_budgeted_run_approval,
    request_cron_apply_approval,
    request_cron_apply_budgeted_approval,
    request_ledger_patch_approval,
    request_trade_execute_approval,
)
from .approvals.service import GatingService, RequestResult
from .approvals.storage import ApprovalStore
from .config import load_config
from .errors import ConfigError, GatingError, ValidationFailed, error_for_reason
from .ledgers.journal import LedgerJournal
from .ledgers.snapshot import LedgerSnapshotStore
from .ops.budgeted import BudgetedApprovals
from .paths import GatingPaths
from .structured_logging import setup_logging


class PreviewMessenger:
    """Prints cards instead of delivering them; nothing is posted."""

    def __init__(self, out=None):
        self.out = out or sys.stderr

    async def post_card(self, request, text, buttons, targets):
        print(f"--- card for {', '.join(targets) or '(no targets)'} ---", file=self.out)
        print(text, file=self.out)
        for row in buttons:
            print("  " + "  ".join(f"[{b.text}]" for b in row), file=self.out)
        return []

    async def edit_card(self, message, text, buttons=None):
        print(f"--- edit {message.chat_id}/{message.message_id} ---\n{text}", file=self.out)

    async def notify(self, chat_id, text):
        print(f"--- notify {chat_id} ---\n{text}", file=self.out)


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _parse_value(raw: str) -> Any:
    """'3' -> 3, 'true' -> True, anything else stays a string."""
    try:
        value = json.loads(raw)
    except ValueError:
        return raw
    return value if isinstance(value, (str, int, float, bool)) else raw


def _parse_set_args(items: List[str]) -> Dict[str, Any]:
    parsed: Dict[str, Any] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"--set expects key=value (got {item!r})")
        parsed[key.strip()] = _parse_value(value)
    return parsed


def _actor_from_args(args) -> ApprovalActor:
    return ApprovalActor(
        chat_id=str(args.chat_id), user_id=args.user_id, username=args.username
    )


# ---------------------------------------------------------------------------
# Read-only commands
# ---------------------------------------------------------------------------


def cmd_list(args, paths: GatingPaths) -> int:
    status = ApprovalStatus(args.status) if args.status else None
    approvals = ApprovalStore(paths.approvals_path).list_by_status(status)
    if args.json:
        _print_json([a.to_dict() for a in approvals])
        return 0
    for a in approvals:
        last = a.audit[-1].type.value if a.audit else "-"
        print(
            f"{a.approval_id}  {a.status.value:<8}  {a.kind.value:<22}  "
            f"{a.resource.scope}  last={last}"
        )
    if not approvals:
        print("No approvals.")
    return 0


def cmd_show(args, paths: GatingPaths) -> int:
    request = ApprovalStore(paths.approvals_path).get(args.approval_id)
    if request is None:
        _print_json(error_for_reason("not-found", f"No approval {args.approval_id}").to_dict())
        return 1
    _print_json(request.to_dict())
    return 0


def cmd_ledger(args, paths: GatingPaths) -> int:
    _print_json(LedgerSnapshotStore(paths.ledger_snapshots_dir).read(args.ledger))
    return 0


def cmd_journal(args, paths: GatingPaths) -> int:
    _print_json(LedgerJournal(paths.ledger_journals_dir).read(args.ledger, limit=args.limit))
    return 0


def cmd_budgeted(args, paths: GatingPaths) -> int:
    approvals = BudgetedApprovals(paths.budgeted_dir)
    if args.consume:
        target = approvals.consume(args.consume)
        if target is None:
            _print_json(error_for_reason("not-found", f"No approved run {args.consume}").to_dict())
            return 1
        _print_json({"ok": True, "consumed": args.consume, "path": target})
        return 0
    _print_json([r.to_dict() for r in approvals.list_approved()])
    return 0


# ---------------------------------------------------------------------------
# Request commands
# ---------------------------------------------------------------------------


async def _submit(args, paths: GatingPaths) -> RequestResult:
    config = load_config(env=os.environ)
    actor = _actor_from_args(args)
    token = os.environ.get("OPSGATE_CONNECTOR_TELEGRAM_TOKEN")

    if token:
        from connector.platforms.telegram_messenger import TelegramApprovalMessenger

        async with TelegramApprovalMessenger(token) as messenger:
            service = GatingService(config, messenger, paths=paths)
            return await _dispatch(args, service, actor)
    service = GatingService(config, PreviewMessenger(), paths=paths)
    return await _dispatch(args, service, actor)


async def _dispatch(args, service: GatingService, actor: ApprovalActor) -> RequestResult:
    if args.request_kind == "ledger-patch":
        patch = LedgerPatch(set=_parse_set_args(args.set), remove=list(args.remove or []))
        return await request_ledger_patch_approval(service, args.ledger, patch, actor)

    if args.request_kind == "cron-apply":
        if args.budgeted:
            metrics = CronMetrics(
                estimated_tokens=args.tokens,
                estimated_cost_usd=args.cost,
                model_tier=args.model_tier,
            )
            return await request_cron_apply_budgeted_approval(
                service, args.proposal, actor, metrics=metrics, allow_recreate=args.recreate
            )
        return await request_cron_apply_approval(
            service, args.proposal, actor, allow_recreate=args.recreate
        )

    if args.request_kind == "trade":
        payload = TradeExecutePayload(
            exchange=args.exchange,
            side=args.side,
            symbol=args.symbol,
            order_type=args.order_type,
            quantity=args.quantity,
            limit_price=args.limit_price,
            notional_usd=args.notional_usd,
        )
        return await request_trade_execute_approval(service, payload, actor)

    payload = BudgetedRunPayload(
        run_id=args.run_id,
        job=args.job,
        estimated_tokens=args.tokens,
        estimated_cost_usd=args.cost,
        model_name=args.model,
    )
    return await request_budgeted_run_approval(service, payload, actor)


def cmd_request(args, paths: GatingPaths) -> int:
    try:
        result = asyncio.run(_submit(args, paths))
    except ValueError as e:
        _print_json(error_for_reason("payload-invalid", str(e)).to_dict())
        return 2
    if not result.ok:
        _print_json(error_for_reason(result.reason).to_dict())
        return 1
    _print_json({"ok": True, "approval": result.request.to_dict()})
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_actor_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--chat-id", required=True, help="Requesting chat id")
    parser.add_argument("--user-id", default=None)
    parser.add_argument("--username", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="opsgate", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--state-dir", default=None, help="Override OPSGATE_STATE_DIR")
    parser.add_argument("--debug", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List approval requests")
    p_list.add_argument("--status", choices=[s.value for s in ApprovalStatus])
    p_list.add_argument("--json", action="store_true")
    p_list.set_defaults(func=cmd_list)

    p_show = sub.add_parser("show", help="Show one approval request")
    p_show.add_argument("approval_id")
    p_show.set_defaults(func=cmd_show)

    p_ledger = sub.add_parser("ledger", help="Print a ledger snapshot")
    p_ledger.add_argument("ledger")
    p_ledger.set_defaults(func=cmd_ledger)

    p_journal = sub.add_parser("journal", help="Print ledger journal entries")
    p_journal.add_argument("ledger")
    p_journal.add_argument("--limit", type=int, default=None)
    p_journal.set_defaults(func=cmd_journal)

    p_budgeted = sub.add_parser("budgeted", help="List or consume approved budgeted runs")
    p_budgeted.add_argument("--consume", metavar="RUN_ID", default=None)
    p_budgeted.set_defaults(func=cmd_budgeted)

    p_request = sub.add_parser("request", help="File an approval request")
    req = p_request.add_subparsers(dest="request_kind", required=True)

    r_ledger = req.add_parser("ledger-patch")
    r_ledger.add_argument("--ledger", required=True)
    r_ledger.add_argument("--set", action="append", metavar="KEY=VALUE")
    r_ledger.add_argument("--remove", action="append", metavar="KEY")
    _add_actor_args(r_ledger)

    r_cron = req.add_parser("cron-apply")
    r_cron.add_argument("--proposal", required=True)
    r_cron.add_argument("--recreate", action="store_true")
    r_cron.add_argument("--budgeted", action="store_true")
    r_cron.add_argument("--tokens", type=float, default=None)
    r_cron.add_argument("--cost", type=float, default=None)
    r_cron.add_argument("--model-tier", default=None)
    _add_actor_args(r_cron)

    r_trade = req.add_parser("trade")
    r_trade.add_argument("--exchange", default="kraken")
    r_trade.add_argument("--side", choices=["buy", "sell"], required=True)
    r_trade.add_argument("--symbol", required=True)
    r_trade.add_argument("--quantity", type=float, required=True)
    r_trade.add_argument("--order-type", choices=["market", "limit"], default="market")
    r_trade.add_argument("--limit-price", type=float, default=None)
    r_trade.add_argument("--notional-usd", type=float, default=None)
    _add_actor_args(r_trade)

    r_budget = req.add_parser("budgeted-run")
    r_budget.add_argument("--run-id", required=True)
    r_budget.add_argument("--job", required=True)
    r_budget.add_argument("--tokens", type=float, default=None)
    r_budget.add_argument("--cost", type=float, default=None)
    r_budget.add_argument("--model", default=None)
    _add_actor_args(r_budget)

    p_request.set_defaults(func=cmd_request)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # stdout carries JSON results
    setup_logging(debug=args.debug, stream=sys.stderr)
    if args.state_dir:
        os.environ["OPSGATE_STATE_DIR"] = args.state_dir
    try:
        return args.func(args, GatingPaths.from_env())
    except ConfigError as e:
        _print_json(e.to_dict())
        return 2
    except GatingError as e:
        _print_json(e.to_dict())
        return 1
    except ValueError as e:
        _print_json(ValidationFailed(str(e)).to_dict())
        return 2
