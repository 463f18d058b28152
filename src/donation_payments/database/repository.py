"""Repository layer for donation persistence operations."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Callable

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Church,
    StripeConnectAccount,
    DonationType,
    Donor,
    DonationTransaction,
    DonationStatus,
    ProcessedWebhookEvent,
    PayoutSummary,
    TransactionHistory,
    utcnow,
)

logger = logging.getLogger(__name__)

# Default retention of processed webhook markers in hours
DEFAULT_WEBHOOK_MARKER_TTL_HOURS = 72


class ChurchRepository:
    """Read access to tenants and their connected accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, church_id: str) -> Optional[Church]:
        result = await self.session.execute(
            select(Church).where(Church.id == church_id)
        )
        return result.scalar_one_or_none()

    async def get_connect_account(self, church_id: str) -> Optional[StripeConnectAccount]:
        """Get the connected account of a church.

        Args:
            church_id: Church ID.

        Returns:
            StripeConnectAccount instance if onboarded, None otherwise.
        """
        result = await self.session.execute(
            select(StripeConnectAccount).where(StripeConnectAccount.church_id == church_id)
        )
        return result.scalar_one_or_none()

    async def get_connect_account_by_stripe_id(
        self,
        stripe_account_id: str,
    ) -> Optional[StripeConnectAccount]:
        result = await self.session.execute(
            select(StripeConnectAccount).where(
                StripeConnectAccount.stripe_account_id == stripe_account_id
            )
        )
        return result.scalar_one_or_none()

    async def update_charges_enabled(
        self,
        account: StripeConnectAccount,
        charges_enabled: bool,
        payouts_enabled: Optional[bool] = None,
    ) -> StripeConnectAccount:
        """Cache the provider's capability flags on the local account row."""
        account.charges_enabled = charges_enabled
        if payouts_enabled is not None:
            account.payouts_enabled = payouts_enabled
        await self.session.flush()
        return account


class DonationTypeRepository:
    """Repository for DonationType lookups."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_church(
        self,
        donation_type_id: str,
        church_id: str,
    ) -> Optional[DonationType]:
        """Get a donation type only if it belongs to the given church.

        Args:
            donation_type_id: Donation type ID.
            church_id: Owning church ID.

        Returns:
            DonationType instance if found under that church, None otherwise.
        """
        result = await self.session.execute(
            select(DonationType).where(
                and_(
                    DonationType.id == donation_type_id,
                    DonationType.church_id == church_id,
                )
            )
        )
        return result.scalar_one_or_none()


class DonorRepository:
    """Repository for Donor profile updates."""

    # Contact and address fields copied from a request onto the donor row
    CONTACT_FIELDS = (
        "first_name",
        "last_name",
        "email",
        "phone",
        "address_line1",
        "address_line2",
        "city",
        "state",
        "postal_code",
        "country",
    )

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, donor_id: str) -> Optional[Donor]:
        result = await self.session.execute(
            select(Donor).where(Donor.id == donor_id)
        )
        return result.scalar_one_or_none()

    async def refresh_contact(
        self,
        donor: Donor,
        fields: Dict[str, Optional[str]],
        phone_verified: bool = False,
    ) -> Donor:
        """Overwrite contact fields with every non-empty value supplied.

        Args:
            donor: Donor instance to update.
            fields: Mapping of column name to new value.
            phone_verified: Mark the phone as verified.

        Returns:
            Updated Donor instance.
        """
        for name in self.CONTACT_FIELDS:
            value = fields.get(name)
            if value:
                setattr(donor, name, value)
        if phone_verified:
            donor.is_phone_verified = True
        await self.session.flush()
        return donor

    async def backfill_contact(self, donor: Donor, fields: Dict[str, Optional[str]]) -> List[str]:
        """Fill only the contact fields that are still empty.

        Returns:
            Names of the columns that were filled.
        """
        filled = []
        for name in self.CONTACT_FIELDS:
            value = fields.get(name)
            if value and not getattr(donor, name):
                setattr(donor, name, value)
                filled.append(name)
        if filled:
            await self.session.flush()
        return filled

    async def link_customer(self, donor: Donor, stripe_customer_id: str) -> Donor:
        donor.stripe_customer_id = stripe_customer_id
        await self.session.flush()
        return donor


class DonationTransactionRepository:
    """Repository for DonationTransaction CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(self, **fields: Any) -> DonationTransaction:
        """Add a new pending transaction and flush it.

        Args:
            **fields: Column values; ``status`` defaults to pending.

        Returns:
            Created DonationTransaction instance.

        Raises:
            sqlalchemy.exc.IntegrityError: The idempotency key or payment
                intent ID is already recorded.
        """
        fields.setdefault("status", DonationStatus.PENDING.value)
        transaction = DonationTransaction(**fields)
        self.session.add(transaction)
        await self.session.flush()

        logger.info(f"Created donation transaction {transaction.id} with status {transaction.status}")
        return transaction

    async def get_by_id(self, transaction_id: str) -> Optional[DonationTransaction]:
        result = await self.session.execute(
            select(DonationTransaction).where(DonationTransaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[DonationTransaction]:
        """Get a transaction by the client supplied idempotency key.

        Args:
            key: The idempotency key string.

        Returns:
            DonationTransaction instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(DonationTransaction).where(DonationTransaction.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[DonationTransaction]:
        """Get a transaction by its payment intent ID.

        Args:
            payment_intent_id: Provider payment intent identifier.

        Returns:
            DonationTransaction instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(DonationTransaction).where(
                DonationTransaction.stripe_payment_intent_id == payment_intent_id
            )
        )
        return result.scalar_one_or_none()

    async def list_stale_pending(
        self,
        older_than: datetime,
        limit: int = 500,
    ) -> List[DonationTransaction]:
        """List pending transactions created before a cutoff.

        Args:
            older_than: Transactions dated before this are returned.
            limit: Maximum number of results.

        Returns:
            List of DonationTransaction instances, oldest first.
        """
        result = await self.session.execute(
            select(DonationTransaction)
            .where(
                and_(
                    DonationTransaction.status == DonationStatus.PENDING.value,
                    DonationTransaction.transaction_date < older_than,
                )
            )
            .order_by(DonationTransaction.transaction_date.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class WebhookEventRepository:
    """Repository for processed webhook markers."""

    def __init__(
        self,
        session: AsyncSession,
        ttl_hours: int = DEFAULT_WEBHOOK_MARKER_TTL_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.ttl_hours = ttl_hours
        self.clock = clock

    async def get_by_event_id(self, event_id: str) -> Optional[ProcessedWebhookEvent]:
        result = await self.session.execute(
            select(ProcessedWebhookEvent).where(ProcessedWebhookEvent.stripe_event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def is_processed(self, event_id: str) -> bool:
        """Check whether an event has already been applied.

        An expired marker is deleted and the event is treated as new.

        Args:
            event_id: Provider event identifier.

        Returns:
            True if a live marker exists.
        """
        existing = await self.get_by_event_id(event_id)

        if existing is None:
            return False

        if existing.is_expired(self.clock()):
            await self.session.delete(existing)
            await self.session.flush()
            logger.debug(f"Discarded expired webhook marker for {event_id}")
            return False

        return True

    async def mark_processed(self, event_id: str, event_type: str) -> ProcessedWebhookEvent:
        """Stage a marker in the current transaction.

        The marker is not flushed here; a unique violation surfaces at
        commit time together with the state change it guards.
        """
        now = self.clock()
        marker = ProcessedWebhookEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            processed_at=now,
            expires_at=now + timedelta(hours=self.ttl_hours),
        )
        self.session.add(marker)
        return marker

    async def delete_expired(self) -> int:
        """Delete expired webhook markers.

        Returns:
            Number of deleted records.
        """
        result = await self.session.execute(
            delete(ProcessedWebhookEvent).where(
                ProcessedWebhookEvent.expires_at < self.clock()
            )
        )
        await self.session.flush()
        return result.rowcount


class TransactionHistoryRepository:
    """Repository for TransactionHistory CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        transaction_id: str,
        action: str,
        new_status: str,
        previous_status: Optional[str] = None,
        amount: Optional[int] = None,
        stripe_event_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TransactionHistory:
        """Create a new transaction history record.

        Args:
            transaction_id: Associated donation transaction ID.
            action: Action performed (initiate, settle, fail, refund, dispute, sweep).
            new_status: Status after the action.
            previous_status: Status before the action.
            amount: Amount involved in this action.
            stripe_event_id: Webhook event that caused the action.
            note: Free text detail such as a failure reason.

        Returns:
            Created TransactionHistory instance.
        """
        history = TransactionHistory(
            transaction_id=transaction_id,
            action=action,
            new_status=new_status,
            previous_status=previous_status,
            amount=amount,
            stripe_event_id=stripe_event_id,
            note=note,
        )
        self.session.add(history)
        await self.session.flush()

        logger.debug(
            f"Created transaction history for donation {transaction_id}: "
            f"{action} -> {new_status}"
        )
        return history


class PayoutSummaryRepository:
    """Repository for PayoutSummary records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_payout_id(self, stripe_payout_id: str) -> Optional[PayoutSummary]:
        result = await self.session.execute(
            select(PayoutSummary).where(PayoutSummary.stripe_payout_id == stripe_payout_id)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        stripe_payout_id: str,
        church_id: str,
        amount: int,
        currency: str,
        status: str,
        payout_date: datetime,
        arrival_date: datetime,
        failure_reason: Optional[str] = None,
    ) -> PayoutSummary:
        """Insert a payout or refresh the provider-owned columns of an existing one.

        Reconciliation totals are left untouched on update.

        Returns:
            The stored PayoutSummary instance.
        """
        payout = await self.get_by_payout_id(stripe_payout_id)
        if payout is None:
            payout = PayoutSummary(
                stripe_payout_id=stripe_payout_id,
                church_id=church_id,
                net_amount=amount,
            )
            self.session.add(payout)
            logger.info(f"Recording payout {stripe_payout_id} for church {church_id}")

        payout.amount = amount
        payout.currency = currency.lower()
        payout.status = status
        payout.payout_date = payout_date
        payout.arrival_date = arrival_date
        payout.failure_reason = failure_reason
        await self.session.flush()
        return payout

    async def list_unreconciled(
        self,
        church_id: Optional[str] = None,
        status: str = "paid",
    ) -> List[PayoutSummary]:
        """List payouts in a status that have not been reconciled yet.

        Args:
            church_id: Restrict to one church.
            status: Payout status to select.

        Returns:
            List of PayoutSummary instances, oldest first.
        """
        query = select(PayoutSummary).where(
            and_(
                PayoutSummary.status == status,
                PayoutSummary.reconciled_at.is_(None),
            )
        )
        if church_id:
            query = query.where(PayoutSummary.church_id == church_id)
        result = await self.session.execute(query.order_by(PayoutSummary.payout_date.asc()))
        return list(result.scalars().all())

    async def list_church_ids_with_unreconciled(self) -> List[str]:
        result = await self.session.execute(
            select(PayoutSummary.church_id)
            .where(
                and_(
                    PayoutSummary.status == "paid",
                    PayoutSummary.reconciled_at.is_(None),
                )
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def store_totals(
        self,
        payout: PayoutSummary,
        totals: Dict[str, int],
        reconciled_at: datetime,
        details: Optional[Dict[str, Any]] = None,
    ) -> PayoutSummary:
        """Write reconciliation totals onto a payout.

        Args:
            payout: PayoutSummary instance to update.
            totals: Values for the total columns keyed by column name.
            reconciled_at: Time of reconciliation.
            details: Optional breakdown kept as JSON.

        Returns:
            Updated PayoutSummary instance.
        """
        for name in (
            "transaction_count",
            "gross_volume",
            "total_fees",
            "total_refunds",
            "total_disputes",
            "net_amount",
        ):
            if name in totals:
                setattr(payout, name, totals[name])
        payout.reconciled_at = reconciled_at
        if details is not None:
            payout.details = details
        await self.session.flush()
        return payout
