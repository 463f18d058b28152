"""Payout reconciliation and stale pending donation cleanup."""

from .models import (
    PayoutTotals,
    PayoutReconciliationResult,
    ChurchReconciliationResult,
    BatchReconciliationResult,
    SweepAction,
    SweepRecord,
    SweepResult,
)
from .reconciler import PayoutReconciler
from .service import ReconciliationService

__all__ = [
    "PayoutTotals",
    "PayoutReconciliationResult",
    "ChurchReconciliationResult",
    "BatchReconciliationResult",
    "SweepAction",
    "SweepRecord",
    "SweepResult",
    "PayoutReconciler",
    "ReconciliationService",
]
