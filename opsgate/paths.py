"""
Gating Paths.
Every file location derived from the state directory, passed explicitly into
stores and executors.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .state_dir import get_state_dir


@dataclass(frozen=True)
class GatingPaths:
    state_dir: str

    @property
    def approvals_path(self) -> str:
        return os.path.join(self.state_dir, "gating", "approvals.json")

    @property
    def ledger_snapshots_dir(self) -> str:
        return os.path.join(self.state_dir, "workspace", "ledgers")

    @property
    def ledger_journals_dir(self) -> str:
        return os.path.join(self.state_dir, "ledgers")

    @property
    def cronops_root(self) -> str:
        return os.path.join(self.state_dir, "workspace", "cronops")

    @property
    def cron_usage_path(self) -> str:
        return os.path.join(self.state_dir, "cronops", "metrics", "usage.ndjson")

    @property
    def trade_executions_path(self) -> str:
        return os.path.join(self.state_dir, "trades", "executions.ndjson")

    @property
    def budgeted_dir(self) -> str:
        return os.path.join(self.state_dir, "ops", "budgeted")

    @property
    def config_path(self) -> str:
        return os.path.join(self.state_dir, "config.json")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "GatingPaths":
        return cls(state_dir=get_state_dir(env))
