"""
CronOps Package.
Pending cron proposals, the apply wrapper and usage metrics.
"""

from .metrics import CronUsageEvent, CronUsageLog
from .proposals import CronOpsWorkspace, CronProposalSummary, is_valid_proposal_id

__all__ = [
    "CronOpsWorkspace",
    "CronProposalSummary",
    "CronUsageEvent",
    "CronUsageLog",
    "is_valid_proposal_id",
]
