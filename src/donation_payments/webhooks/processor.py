"""Application of verified webhook events to donation state."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable, Awaitable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..connectors.base import ConnectorBase, WebhookEvent, LookupResult
from ..database import (
    ChurchRepository,
    DonorRepository,
    DonationTransactionRepository,
    TransactionHistoryRepository,
    WebhookEventRepository,
    PayoutSummaryRepository,
    DonationTransaction,
    DonationStatus,
    TransactionAction,
    utcnow,
)
from ..exceptions import WebhookProcessingError

logger = logging.getLogger(__name__)

TRANSACTION_NOT_FOUND = "Transaction not found"
ACCOUNT_NOT_FOUND = "Connected account not found"
DEFAULT_PAYMENT_METHOD_TYPE = "card"


@dataclass
class WebhookOutcome:
    """Result of processing one delivery, rendered as the 200 response body."""
    duplicate: bool = False
    warning: Optional[str] = None
    transaction_id: Optional[str] = None
    applied: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": True}
        if self.duplicate:
            body["duplicate"] = True
        if self.warning:
            body["warning"] = self.warning
        return body


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _object_id(value: Any) -> Optional[str]:
    """Accept either an expanded object or a bare id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class WebhookProcessor:
    """Drive the transaction state machine from provider events.

    Each event is applied inside one database transaction together with its
    processed marker, so a delivery is either fully applied and marked or
    not applied at all. A failure surfaces as WebhookProcessingError and the
    provider's redelivery is the retry.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: ConnectorBase,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.clock = clock
        self.church_repo = ChurchRepository(session)
        self.donor_repo = DonorRepository(session)
        self.transaction_repo = DonationTransactionRepository(session)
        self.history_repo = TransactionHistoryRepository(session)
        self.payout_repo = PayoutSummaryRepository(session)
        self.marker_repo = WebhookEventRepository(
            session,
            ttl_hours=self.settings.webhook_marker_ttl_hours,
            clock=clock,
        )
        self._handlers: Dict[str, Callable[[WebhookEvent], Awaitable[WebhookOutcome]]] = {
            "payment_intent.succeeded": self._handle_payment_succeeded,
            "payment_intent.payment_failed": self._handle_payment_failed,
            "charge.refunded": self._handle_charge_refunded,
            "charge.dispute.created": self._handle_dispute_created,
            "payout.created": self._handle_payout,
            "payout.updated": self._handle_payout,
            "payout.paid": self._handle_payout,
            "payout.failed": self._handle_payout,
        }

    async def process(self, event: WebhookEvent) -> WebhookOutcome:
        """Apply an event exactly once.

        Args:
            event: Verified provider event.

        Returns:
            WebhookOutcome describing what happened.

        Raises:
            WebhookProcessingError: The database rejected the update.
        """
        try:
            if await self.marker_repo.is_processed(event.id):
                logger.info(f"Duplicate webhook {event.id} ({event.type}) ignored")
                await self.session.commit()
                return WebhookOutcome(duplicate=True)

            handler = self._handlers.get(event.type)
            if handler is None:
                logger.info(f"Unhandled webhook event type {event.type}")
                await self.session.commit()
                return WebhookOutcome()

            outcome = await handler(event)
            if outcome.warning:
                # Nothing was written; a later redelivery may still apply
                await self.session.commit()
                return outcome

            await self.marker_repo.mark_processed(event.id, event.type)
            await self.session.commit()
            return outcome

        except IntegrityError as e:
            await self.session.rollback()
            if await self.marker_repo.get_by_event_id(event.id) is not None:
                logger.info(f"Webhook {event.id} was applied by a concurrent delivery")
                return WebhookOutcome(duplicate=True)
            logger.error(f"Integrity error applying webhook {event.id}: {e}")
            raise WebhookProcessingError() from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error applying webhook {event.id} ({event.type}): {e}")
            raise WebhookProcessingError() from e

    async def _transition(
        self,
        transaction: DonationTransaction,
        target: DonationStatus,
        action: TransactionAction,
        event: WebhookEvent,
        amount: Optional[int] = None,
        note: Optional[str] = None,
    ) -> bool:
        current = transaction.donation_status
        if not current.can_transition_to(target):
            logger.warning(
                f"Ignoring {event.type} for transaction {transaction.id}: "
                f"{current.value} -> {target.value} is not allowed"
            )
            return False

        transaction.status = target.value
        transaction.updated_at = self.clock()
        await self.history_repo.create(
            transaction_id=transaction.id,
            action=action.value,
            previous_status=current.value,
            new_status=target.value,
            amount=amount,
            stripe_event_id=event.id,
            note=note,
        )
        logger.info(f"Transaction {transaction.id} moved {current.value} -> {target.value} by {event.id}")
        return True

    async def _find_transaction(self, payment_intent_id: Optional[str], event: WebhookEvent) -> Optional[DonationTransaction]:
        transaction = None
        if payment_intent_id:
            transaction = await self.transaction_repo.get_by_payment_intent_id(payment_intent_id)
        if transaction is None:
            logger.warning(f"{TRANSACTION_NOT_FOUND} for payment intent {payment_intent_id} ({event.type} {event.id})")
        return transaction

    async def _resolve_account(self, event: WebhookEvent, church_id: str) -> Optional[str]:
        if event.account:
            return event.account
        account = await self.church_repo.get_connect_account(church_id)
        return account.stripe_account_id if account else None

    async def _payment_method_type(self, intent: Dict[str, Any], stripe_account: Optional[str]) -> LookupResult[str]:
        payment_method = intent.get("payment_method")
        if isinstance(payment_method, dict) and payment_method.get("type"):
            return LookupResult(value=payment_method["type"])
        return await self.gateway.lookup_payment_method_type(_object_id(payment_method), stripe_account)

    async def _handle_payment_succeeded(self, event: WebhookEvent) -> WebhookOutcome:
        intent = event.object
        transaction = await self._find_transaction(intent.get("id"), event)
        if transaction is None:
            return WebhookOutcome(warning=TRANSACTION_NOT_FOUND)

        if not await self._transition(
            transaction, DonationStatus.SUCCEEDED, TransactionAction.SETTLE, event,
            amount=intent.get("amount_received") or intent.get("amount"),
        ):
            return WebhookOutcome(transaction_id=transaction.id)

        stripe_account = await self._resolve_account(event, transaction.church_id)
        fallback = (intent.get("payment_method_types") or [DEFAULT_PAYMENT_METHOD_TYPE])[0]
        transaction.payment_method_type = (await self._payment_method_type(intent, stripe_account)).unwrap_or(fallback)
        transaction.processed_at = self.clock()
        if intent.get("application_fee_amount") is not None:
            transaction.platform_fee = intent["application_fee_amount"]
        if intent.get("amount_received"):
            transaction.charged_amount = intent["amount_received"]

        if transaction.donor_id:
            await self._backfill_donor(transaction.donor_id, intent)

        return WebhookOutcome(transaction_id=transaction.id, applied=True)

    async def _handle_payment_failed(self, event: WebhookEvent) -> WebhookOutcome:
        intent = event.object
        transaction = await self._find_transaction(intent.get("id"), event)
        if transaction is None:
            return WebhookOutcome(warning=TRANSACTION_NOT_FOUND)

        reason = (intent.get("last_payment_error") or {}).get("message")
        applied = await self._transition(
            transaction, DonationStatus.FAILED, TransactionAction.FAIL, event, note=reason,
        )
        if applied:
            transaction.failure_reason = reason
            transaction.processed_at = self.clock()
        return WebhookOutcome(transaction_id=transaction.id, applied=applied)

    async def _handle_charge_refunded(self, event: WebhookEvent) -> WebhookOutcome:
        charge = event.object
        transaction = await self._find_transaction(_object_id(charge.get("payment_intent")), event)
        if transaction is None:
            return WebhookOutcome(warning=TRANSACTION_NOT_FOUND)

        if transaction.donation_status != DonationStatus.SUCCEEDED:
            logger.warning(
                f"Ignoring refund {event.id} for transaction {transaction.id} in status {transaction.status}"
            )
            return WebhookOutcome(transaction_id=transaction.id)

        refunded = charge.get("amount_refunded") or 0
        fully_refunded = bool(charge.get("refunded")) or refunded >= (charge.get("amount") or transaction.charged_amount)
        transaction.refunded_amount = refunded
        transaction.refunded_at = self.clock()

        if fully_refunded:
            await self._transition(
                transaction, DonationStatus.REFUNDED, TransactionAction.REFUND, event, amount=refunded,
            )
        else:
            await self.history_repo.create(
                transaction_id=transaction.id,
                action=TransactionAction.PARTIAL_REFUND.value,
                previous_status=transaction.status,
                new_status=transaction.status,
                amount=refunded,
                stripe_event_id=event.id,
            )
            logger.info(f"Partial refund of {refunded} recorded on transaction {transaction.id}")
        return WebhookOutcome(transaction_id=transaction.id, applied=True)

    async def _handle_dispute_created(self, event: WebhookEvent) -> WebhookOutcome:
        dispute = event.object
        transaction = await self._find_transaction(_object_id(dispute.get("payment_intent")), event)
        if transaction is None:
            return WebhookOutcome(warning=TRANSACTION_NOT_FOUND)

        applied = await self._transition(
            transaction, DonationStatus.DISPUTED, TransactionAction.DISPUTE, event,
            amount=dispute.get("amount"), note=dispute.get("reason"),
        )
        if applied:
            transaction.dispute_status = dispute.get("status")
            transaction.dispute_reason = dispute.get("reason")
            transaction.disputed_at = _from_timestamp(dispute.get("created")) or self.clock()
        return WebhookOutcome(transaction_id=transaction.id, applied=applied)

    async def _handle_payout(self, event: WebhookEvent) -> WebhookOutcome:
        payout = event.object
        account = None
        if event.account:
            account = await self.church_repo.get_connect_account_by_stripe_id(event.account)
        if account is None:
            logger.warning(f"{ACCOUNT_NOT_FOUND} for payout {payout.get('id')} ({event.account})")
            return WebhookOutcome(warning=ACCOUNT_NOT_FOUND)

        payout_date = _from_timestamp(payout.get("created")) or self.clock()
        await self.payout_repo.upsert(
            stripe_payout_id=payout["id"],
            church_id=account.church_id,
            amount=payout.get("amount") or 0,
            currency=payout.get("currency") or "usd",
            status=payout.get("status") or event.type.split(".", 1)[1],
            payout_date=payout_date,
            arrival_date=_from_timestamp(payout.get("arrival_date")) or payout_date,
            failure_reason=payout.get("failure_message"),
        )
        return WebhookOutcome(applied=True)

    async def _backfill_donor(self, donor_id: str, intent: Dict[str, Any]) -> None:
        donor = await self.donor_repo.get_by_id(donor_id)
        if donor is None:
            logger.info(f"Donor {donor_id} not found; skipping backfill")
            return

        name, email, address = self._billing_details(intent)
        fields: Dict[str, Optional[str]] = {"email": email}
        if name:
            first, _, last = name.strip().partition(" ")
            fields["first_name"] = first or None
            fields["last_name"] = last.strip() or None
        if address:
            fields.update({
                "address_line1": address.get("line1"),
                "city": address.get("city"),
                "state": address.get("state"),
                "postal_code": address.get("postal_code"),
                "country": address.get("country"),
            })

        filled = await self.donor_repo.backfill_contact(donor, fields)
        if filled:
            logger.info(f"Backfilled donor {donor.id} fields: {', '.join(filled)}")

    @staticmethod
    def _billing_details(intent: Dict[str, Any]):
        """Collect name, email and address from the intent.

        Sources in order of preference: shipping, the latest charge's billing
        details, the payment method's billing details, then receipt_email.
        """
        name = email = address = None

        shipping = intent.get("shipping") or {}
        name = shipping.get("name")
        address = shipping.get("address")

        for source in (intent.get("latest_charge"), intent.get("payment_method")):
            if not isinstance(source, dict):
                continue
            billing = source.get("billing_details") or {}
            name = name or billing.get("name")
            email = email or billing.get("email")
            address = address or billing.get("address")

        email = email or intent.get("receipt_email")
        return name, email, address
