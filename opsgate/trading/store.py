"""
Trade Execution Log.
NDJSON record of every executed (or dry-run) trade at
`<state>/trades/executions.ndjson`.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from ..safe_json import append_ndjson, read_ndjson


@dataclass
class TradeExecutionRecord:
    executed_at: str
    approval_id: Optional[str]
    exchange: str
    symbol: str
    side: str
    quantity: float
    order_type: str
    mode: str  # "dry-run" | "live"
    ok: bool
    notional_usd: Optional[float] = None
    order_id: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TradeExecutionLog:
    def __init__(self, path: str):
        self.path = path

    def append(self, record: TradeExecutionRecord) -> None:
        append_ndjson(self.path, record.to_dict())

    def read(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return read_ndjson(self.path, limit=limit)
