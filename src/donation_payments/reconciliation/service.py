"""Service layer for payout reconciliation and pending transaction cleanup."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..connectors.base import ConnectorBase
from ..database import (
    ChurchRepository,
    DonationTransactionRepository,
    TransactionHistoryRepository,
    PayoutSummaryRepository,
    WebhookEventRepository,
    DonationStatus,
    TransactionAction,
    utcnow,
)
from ..exceptions import PaymentProviderError, ProviderResourceMissing
from .models import (
    PayoutReconciliationResult,
    ChurchReconciliationResult,
    BatchReconciliationResult,
    SweepAction,
    SweepRecord,
    SweepResult,
)
from .reconciler import PayoutReconciler

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_AGE_DAYS = 7

# Provider intent statuses meaning the donor abandoned or cannot complete payment
ABANDONED_INTENT_STATUSES = frozenset({
    "canceled",
    "incomplete",
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "requires_source_action",
    "requires_source",
})

# Provider intent statuses that may still settle
IN_FLIGHT_INTENT_STATUSES = frozenset({"processing", "requires_capture"})


class ReconciliationService:
    """Service for reconciling payouts and sweeping stale pending donations."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: ConnectorBase,
        reconciler: Optional[PayoutReconciler] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the reconciliation service.

        Args:
            session: Async database session.
            gateway: Payment provider connector.
            reconciler: Optional summariser. A default one is created if not provided.
            clock: Source of the current naive UTC time.
        """
        self.session = session
        self.gateway = gateway
        self.reconciler = reconciler or PayoutReconciler()
        self.clock = clock
        self.church_repo = ChurchRepository(session)
        self.payout_repo = PayoutSummaryRepository(session)
        self.transaction_repo = DonationTransactionRepository(session)
        self.history_repo = TransactionHistoryRepository(session)

    async def reconcile_payout(self, payout_id: str) -> PayoutReconciliationResult:
        """Fetch a payout's balance transactions and store their totals.

        Args:
            payout_id: Provider payout ID, already recorded locally.

        Returns:
            PayoutReconciliationResult; failures are reported, not raised.
        """
        logger.info(f"Starting reconciliation for payout {payout_id}")

        payout = await self.payout_repo.get_by_payout_id(payout_id)
        if payout is None:
            return PayoutReconciliationResult(payout_id=payout_id, success=False, error="Payout not found")

        account = await self.church_repo.get_connect_account(payout.church_id)
        if account is None:
            return PayoutReconciliationResult(
                payout_id=payout_id, success=False, error="Connected account not found for church"
            )

        try:
            transactions = await self.gateway.list_payout_balance_transactions(payout_id, account.stripe_account_id)
        except PaymentProviderError as e:
            return PayoutReconciliationResult(payout_id=payout_id, success=False, error=e.message)

        if not transactions:
            logger.warning(f"No balance transactions found for payout {payout_id}")
            return PayoutReconciliationResult(
                payout_id=payout_id, success=False, error="No balance transactions found for this payout"
            )

        totals = self.reconciler.summarize(transactions)
        try:
            await self.payout_repo.store_totals(
                payout,
                totals.model_dump(exclude={"unexpected_types"}),
                reconciled_at=self.clock(),
                details={"balance_transaction_ids": [bt.id for bt in transactions]},
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to store totals for payout {payout_id}: {e}")
            return PayoutReconciliationResult(payout_id=payout_id, success=False, error="Failed to store payout totals")

        logger.info(
            f"Reconciled payout {payout_id}: {totals.transaction_count} transactions, "
            f"gross {totals.gross_volume}, fees {totals.total_fees}, net {totals.net_amount}"
        )
        return PayoutReconciliationResult(payout_id=payout_id, success=True, summary=totals)

    async def reconcile_church(self, church_id: str) -> ChurchReconciliationResult:
        """Reconcile every paid payout of a church that is not yet reconciled."""
        payout_ids = [p.stripe_payout_id for p in await self.payout_repo.list_unreconciled(church_id)]
        result = ChurchReconciliationResult(church_id=church_id)

        for payout_id in payout_ids:
            payout_result = await self.reconcile_payout(payout_id)
            result.results.append(payout_result)
            if payout_result.success:
                result.reconciled += 1
            else:
                result.failed += 1

        logger.info(f"Church {church_id}: reconciled {result.reconciled}, failed {result.failed}")
        return result

    async def reconcile_all(self) -> BatchReconciliationResult:
        batch = BatchReconciliationResult(started_at=self.clock())
        for church_id in await self.payout_repo.list_church_ids_with_unreconciled():
            batch.churches.append(await self.reconcile_church(church_id))
        batch.completed_at = self.clock()
        return batch

    async def sweep_stale_pending(self, max_age_days: int = DEFAULT_SWEEP_AGE_DAYS) -> SweepResult:
        """Settle or fail pending donations older than the cutoff.

        Each transaction is checked against the provider and committed on
        its own, so one bad row never blocks the rest.

        Args:
            max_age_days: Age in days after which a pending donation is stale.

        Returns:
            SweepResult with per transaction records.
        """
        cutoff = self.clock() - timedelta(days=max_age_days)
        result = SweepResult(cutoff=cutoff)

        stale = [
            (t.id, t.church_id, t.stripe_payment_intent_id)
            for t in await self.transaction_repo.list_stale_pending(cutoff)
        ]
        logger.info(f"Sweeping {len(stale)} pending donations older than {cutoff.isoformat()}")

        accounts: Dict[str, Optional[str]] = {}
        for transaction_id, church_id, intent_id in stale:
            result.add(await self._sweep_one(transaction_id, church_id, intent_id, accounts))

        logger.info(
            f"Sweep finished: {result.succeeded} succeeded, {result.failed} failed, "
            f"{result.still_pending} still pending, {result.errors} errors"
        )
        return result

    async def purge_webhook_markers(self) -> int:
        deleted = await WebhookEventRepository(self.session, clock=self.clock).delete_expired()
        await self.session.commit()
        logger.info(f"Purged {deleted} expired webhook markers")
        return deleted

    async def _sweep_one(
        self,
        transaction_id: str,
        church_id: str,
        intent_id: Optional[str],
        accounts: Dict[str, Optional[str]],
    ) -> SweepRecord:
        if not intent_id:
            return SweepRecord(transaction_id=transaction_id, action=SweepAction.SKIPPED, reason="No payment intent")

        if church_id not in accounts:
            account = await self.church_repo.get_connect_account(church_id)
            accounts[church_id] = account.stripe_account_id if account else None
        stripe_account = accounts[church_id]
        if stripe_account is None:
            return SweepRecord(
                transaction_id=transaction_id,
                payment_intent_id=intent_id,
                action=SweepAction.SKIPPED,
                reason="Connected account not found",
            )

        provider_status = None
        try:
            intent = await self.gateway.retrieve_payment_intent(intent_id, stripe_account)
            provider_status = intent.status
        except ProviderResourceMissing:
            target, reason = DonationStatus.FAILED, "Payment intent not found at provider"
        except PaymentProviderError as e:
            return SweepRecord(
                transaction_id=transaction_id,
                payment_intent_id=intent_id,
                action=SweepAction.ERROR,
                reason=e.message,
            )
        else:
            if provider_status == "succeeded":
                target, reason = DonationStatus.SUCCEEDED, None
            elif provider_status in ABANDONED_INTENT_STATUSES:
                target, reason = DonationStatus.FAILED, f"Abandoned payment ({provider_status})"
            else:
                action = SweepAction.STILL_PENDING if provider_status in IN_FLIGHT_INTENT_STATUSES else SweepAction.SKIPPED
                return SweepRecord(
                    transaction_id=transaction_id,
                    payment_intent_id=intent_id,
                    provider_status=provider_status,
                    action=action,
                )

        try:
            transaction = await self.transaction_repo.get_by_id(transaction_id)
            if transaction is None or not transaction.donation_status.can_transition_to(target):
                return SweepRecord(
                    transaction_id=transaction_id,
                    payment_intent_id=intent_id,
                    provider_status=provider_status,
                    action=SweepAction.SKIPPED,
                    reason="Status changed during sweep",
                )
            previous = transaction.status
            transaction.status = target.value
            transaction.processed_at = self.clock()
            if reason:
                transaction.failure_reason = reason
            await self.history_repo.create(
                transaction_id=transaction_id,
                action=TransactionAction.SWEEP.value,
                previous_status=previous,
                new_status=target.value,
                note=reason,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to update swept transaction {transaction_id}: {e}")
            return SweepRecord(
                transaction_id=transaction_id,
                payment_intent_id=intent_id,
                provider_status=provider_status,
                action=SweepAction.ERROR,
                reason="Database update failed",
            )

        logger.info(f"Swept transaction {transaction_id}: {previous} -> {target.value}")
        return SweepRecord(
            transaction_id=transaction_id,
            payment_intent_id=intent_id,
            provider_status=provider_status,
            action=SweepAction.SUCCEEDED if target == DonationStatus.SUCCEEDED else SweepAction.FAILED,
            reason=reason,
        )
