"""
Ops Package.
Hand-off of approved budgeted runs to the job runner.
"""

from .budgeted import BudgetedApprovalRecord, BudgetedApprovals

__all__ = ["BudgetedApprovalRecord", "BudgetedApprovals"]
