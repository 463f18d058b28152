"""Models for payout reconciliation and the stale pending sweep."""

import enum
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class SweepAction(str, enum.Enum):
    """What the sweep did with one pending transaction."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STILL_PENDING = "still_pending"
    SKIPPED = "skipped"
    ERROR = "error"


class PayoutTotals(BaseModel):
    """Totals derived from the balance transactions settled by one payout."""
    transaction_count: int = Field(default=0, description="Number of balance transactions")
    gross_volume: int = Field(default=0, description="Charges and payments in minor units")
    total_fees: int = Field(default=0, description="Provider fees net of refunded fees")
    total_refunds: int = Field(default=0, description="Refunded amount, positive")
    total_disputes: int = Field(default=0, description="Disputed amount, positive")
    net_amount: int = Field(default=0, description="Gross minus fees, refunds and disputes")
    unexpected_types: List[str] = Field(default_factory=list)


class PayoutReconciliationResult(BaseModel):
    payout_id: str
    success: bool
    error: Optional[str] = None
    summary: Optional[PayoutTotals] = None


class ChurchReconciliationResult(BaseModel):
    church_id: str
    reconciled: int = 0
    failed: int = 0
    results: List[PayoutReconciliationResult] = Field(default_factory=list)


class BatchReconciliationResult(BaseModel):
    started_at: datetime
    completed_at: Optional[datetime] = None
    churches: List[ChurchReconciliationResult] = Field(default_factory=list)

    @property
    def total_failed(self) -> int:
        return sum(church.failed for church in self.churches)


class SweepRecord(BaseModel):
    transaction_id: str
    payment_intent_id: Optional[str] = None
    provider_status: Optional[str] = None
    action: SweepAction
    reason: Optional[str] = None


class SweepResult(BaseModel):
    """Outcome of one stale pending sweep."""
    cutoff: datetime
    checked: int = 0
    succeeded: int = 0
    failed: int = 0
    still_pending: int = 0
    skipped: int = 0
    errors: int = 0
    records: List[SweepRecord] = Field(default_factory=list)

    def add(self, record: SweepRecord) -> None:
        self.records.append(record)
        self.checked += 1
        counter = {
            SweepAction.SUCCEEDED: "succeeded",
            SweepAction.FAILED: "failed",
            SweepAction.STILL_PENDING: "still_pending",
            SweepAction.SKIPPED: "skipped",
            SweepAction.ERROR: "errors",
        }[record.action]
        setattr(self, counter, getattr(self, counter) + 1)
