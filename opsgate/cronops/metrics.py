"""
Cron Usage Metrics.
NDJSON log of metered cron runs, read back by the daily token budget.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..safe_json import append_ndjson, read_ndjson


@dataclass
class CronUsageEvent:
    start_time: str
    end_time: str
    proposal_id: Optional[str] = None
    job_id: Optional[str] = None
    tokens_used: Optional[float] = None
    model: Optional[str] = None
    estimated_cost_usd: Optional[float] = None
    exit_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CronUsageEvent":
        return cls(
            start_time=str(data.get("start_time", "")),
            end_time=str(data.get("end_time", "")),
            proposal_id=data.get("proposal_id"),
            job_id=data.get("job_id"),
            tokens_used=data.get("tokens_used"),
            model=data.get("model"),
            estimated_cost_usd=data.get("estimated_cost_usd"),
            exit_status=data.get("exit_status"),
        )


class CronUsageLog:
    def __init__(self, path: str):
        self.path = path

    def append(self, event: CronUsageEvent) -> None:
        append_ndjson(self.path, event.to_dict())

    def read(self) -> List[CronUsageEvent]:
        return [CronUsageEvent.from_dict(r) for r in read_ndjson(self.path)]
