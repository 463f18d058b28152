"""Donation service layer: orchestrates fee math, the payment provider and persistence."""

import logging
from datetime import datetime
from typing import Optional, Dict, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .connectors.base import (
    ConnectorBase,
    Address,
    CustomerDetails,
    PaymentIntentParams,
)
from .database import (
    ChurchRepository,
    DonationTypeRepository,
    DonorRepository,
    DonationTransactionRepository,
    TransactionHistoryRepository,
    DonationTransaction,
    DonationStatus,
    TransactionAction,
    utcnow,
)
from .exceptions import (
    DonationAlreadyProcessed,
    IdempotencyConflict,
    PaymentProviderError,
    ResourceNotFound,
    TenantInactive,
    TenantSuspended,
    InvalidDonationRequest,
)
from .fees import FeeSchedule, FeeBreakdown, calculate_fees
from .schemas import InitiateDonationRequest, InitiationResult

logger = logging.getLogger(__name__)

ANONYMOUS_DONOR_NAME = "Anonymous Donor"

# Clerk id sent by the donation form for signed-out donors
GUEST_CLERK_ID = "guest"

# Never offered to donors even if configured
EXCLUDED_PAYMENT_METHOD_TYPES = frozenset({"customer_balance"})


class DonationService:
    """Service class for donation initiation with persistence."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: ConnectorBase,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the service.

        Args:
            session: AsyncSession instance for database operations.
            gateway: Payment provider connector.
            settings: Configuration. Defaults to the environment.
            clock: Source of the current naive UTC time.
        """
        self.session = session
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.clock = clock
        self.fee_schedule = FeeSchedule.from_settings(self.settings)
        self.church_repo = ChurchRepository(session)
        self.donation_type_repo = DonationTypeRepository(session)
        self.donor_repo = DonorRepository(session)
        self.transaction_repo = DonationTransactionRepository(session)
        self.history_repo = TransactionHistoryRepository(session)

    @property
    def payment_method_types(self):
        return [
            t for t in self.settings.donation_payment_method_types
            if t not in EXCLUDED_PAYMENT_METHOD_TYPES
        ]

    async def initiate_donation(self, request: InitiateDonationRequest) -> InitiationResult:
        """Create, or replay, the payment intent for a donation.

        Args:
            request: Validated initiation request.

        Returns:
            InitiationResult carrying the HTTP status (201 new, 200 replay).

        Raises:
            DonationError: Any refusal, with the status the API answers with.
        """
        church_id = str(request.church_id)
        idempotency_key = str(request.idempotency_key)
        donor_id = str(request.donor_id) if request.donor_id else None

        if donor_id and not request.is_anonymous:
            await self._refresh_donor(donor_id, church_id, request)

        existing = await self.transaction_repo.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            replay = await self._replay(existing, church_id)
            if replay is not None:
                return replay

        church = await self.church_repo.get_by_id(church_id)
        if church is None:
            raise ResourceNotFound("Church not found for the provided churchId.")
        if church.subscription_blocked:
            raise TenantSuspended("This church's subscription is not active. Donations are currently disabled.")
        if not church.onboarding_completed:
            raise TenantInactive("This church has not completed onboarding and cannot accept donations yet.")

        donation_type = await self.donation_type_repo.get_for_church(request.donation_type_id, church_id)
        if donation_type is None:
            raise ResourceNotFound(
                f"Donation type ID '{request.donation_type_id}' not found or does not belong to the specified church."
            )
        if not donation_type.is_active:
            raise InvalidDonationRequest("This donation type is not currently accepting donations.")

        stripe_account_id = await self._verify_connect_account(church_id)

        fees = calculate_fees(request.base_amount, request.cover_fees, self.fee_schedule)

        customer_id = None
        if not request.is_anonymous and request.normalized_email:
            customer_id = await self._resolve_customer(request, stripe_account_id)
            if donor_id:
                await self._link_customer(donor_id, church_id, customer_id)

        intent = await self.gateway.create_payment_intent(
            self._intent_params(request, church_id, fees, customer_id),
            stripe_account=stripe_account_id,
            idempotency_key=idempotency_key,
        )

        try:
            transaction = await self.transaction_repo.create(
                church_id=church_id,
                donor_id=donor_id,
                donation_type_id=request.donation_type_id,
                donor_clerk_id=request.donor_clerk_id,
                donor_name=ANONYMOUS_DONOR_NAME if request.is_anonymous else request.display_name,
                donor_email=None if request.is_anonymous else request.donor_email,
                amount=request.base_amount,
                charged_amount=fees.charge_amount,
                currency=request.currency,
                stripe_payment_intent_id=intent.id,
                stripe_customer_id=customer_id,
                idempotency_key=idempotency_key,
                processing_fee_covered_by_donor=fees.processing_fee,
                platform_fee=fees.platform_fee,
                is_anonymous=request.is_anonymous,
                is_international=self._is_international(request.country),
                donor_country=request.country,
                donor_language=request.donor_language,
                transaction_date=self.clock(),
            )
            await self.history_repo.create(
                transaction_id=transaction.id,
                action=TransactionAction.INITIATE.value,
                new_status=DonationStatus.PENDING.value,
                amount=fees.charge_amount,
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            winner = await self._find_concurrent_winner(idempotency_key, intent.id)
            if winner is None:
                logger.error(f"Unique violation for intent {intent.id} but no existing transaction found")
                raise
            logger.info(f"Concurrent initiation for key {idempotency_key} resolved to transaction {winner.id}")
            if winner.stripe_payment_intent_id != intent.id:
                # The winning row points at another intent; never hand out ours
                logger.warning(f"Intent {intent.id} left unused; transaction {winner.id} owns {winner.stripe_payment_intent_id}")
                replay = await self._replay(winner, church_id)
                if replay is None:
                    raise PaymentProviderError("Unable to retrieve the existing payment. Please try again later.")
                return replay
            return InitiationResult(
                status_code=200,
                transaction_id=winner.id,
                client_secret=intent.client_secret,
                stripe_account=stripe_account_id,
                message="Transaction already recorded due to concurrent request.",
            )

        logger.info(
            f"Initiated donation {transaction.id} for church {church_id}: "
            f"charge {fees.charge_amount} {request.currency}, platform fee {fees.platform_fee}"
        )
        return InitiationResult(
            status_code=201,
            transaction_id=transaction.id,
            client_secret=intent.client_secret,
            stripe_account=stripe_account_id,
        )

    async def _refresh_donor(self, donor_id: str, church_id: str, request: InitiateDonationRequest) -> None:
        try:
            donor = await self.donor_repo.get_by_id(donor_id)
            if donor is None or donor.church_id != church_id:
                logger.warning(f"Donor {donor_id} not found for church {church_id}; skipping profile refresh")
                return
            await self.donor_repo.refresh_contact(
                donor,
                request.contact_fields(),
                phone_verified=bool(request.phone),
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to refresh donor {donor_id}: {e}")

    async def _replay(self, existing: DonationTransaction, church_id: str) -> Optional[InitiationResult]:
        """Answer a repeated idempotency key.

        Returns:
            InitiationResult for a replayable pending row, or None to carry
            on with a fresh initiation.
        """
        if existing.church_id != church_id:
            logger.warning(f"Idempotency key reused across churches for transaction {existing.id}")
            raise IdempotencyConflict("This idempotency key has already been used for a different donation.")

        status = existing.donation_status
        if status == DonationStatus.SUCCEEDED:
            raise DonationAlreadyProcessed(existing.id)
        if status != DonationStatus.PENDING:
            raise IdempotencyConflict(
                f"A donation with this idempotency key has already {status.value}. Please start a new donation.",
                extra={"transactionId": existing.id},
            )
        if not existing.stripe_payment_intent_id:
            return None

        account = await self.church_repo.get_connect_account(church_id)
        if account is None:
            return None
        try:
            intent = await self.gateway.retrieve_payment_intent(
                existing.stripe_payment_intent_id,
                stripe_account=account.stripe_account_id,
            )
        except PaymentProviderError:
            logger.error(f"Could not retrieve existing intent for transaction {existing.id}")
            return None

        logger.info(f"Replaying pending transaction {existing.id}")
        return InitiationResult(
            status_code=200,
            transaction_id=existing.id,
            client_secret=intent.client_secret,
            stripe_account=account.stripe_account_id,
            message="Existing pending transaction found. Use this clientSecret to complete payment.",
        )

    async def _verify_connect_account(self, church_id: str) -> str:
        account = await self.church_repo.get_connect_account(church_id)
        if account is None:
            raise ResourceNotFound("Stripe Connect account not found for this church or not fully set up.")
        stripe_account_id = account.stripe_account_id

        try:
            remote = await self.gateway.retrieve_account(stripe_account_id)
        except PaymentProviderError as e:
            raise PaymentProviderError("Unable to verify church payment account. Please try again later.") from e

        await self.church_repo.update_charges_enabled(account, remote.charges_enabled, remote.payouts_enabled)
        await self.session.commit()

        if not remote.charges_enabled:
            logger.warning(f"Charges not enabled on {stripe_account_id} for church {church_id}")
            raise TenantInactive(
                "This church is not yet set up to accept donations. Please contact the church administrator."
            )
        return stripe_account_id

    async def _resolve_customer(self, request: InitiateDonationRequest, stripe_account_id: str) -> str:
        details = self._customer_details(request)
        customer_id = await self.gateway.find_customer_by_email(request.normalized_email, stripe_account_id)
        if customer_id:
            try:
                await self.gateway.update_customer(customer_id, details, stripe_account_id)
            except PaymentProviderError:
                logger.warning(f"Could not update customer {customer_id}; continuing with stale details")
            return customer_id
        return await self.gateway.create_customer(details, stripe_account_id)

    async def _link_customer(self, donor_id: str, church_id: str, customer_id: str) -> None:
        try:
            donor = await self.donor_repo.get_by_id(donor_id)
            if donor is None or donor.church_id != church_id or donor.stripe_customer_id == customer_id:
                return
            await self.donor_repo.link_customer(donor, customer_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to link customer to donor {donor_id}: {e}")

    async def _find_concurrent_winner(self, idempotency_key: str, payment_intent_id: str) -> Optional[DonationTransaction]:
        winner = await self.transaction_repo.get_by_idempotency_key(idempotency_key)
        if winner is None:
            winner = await self.transaction_repo.get_by_payment_intent_id(payment_intent_id)
        return winner

    def _is_international(self, country: Optional[str]) -> bool:
        return bool(country) and country.upper() != self.settings.platform_country.upper()

    @staticmethod
    def _customer_details(request: InitiateDonationRequest) -> CustomerDetails:
        metadata: Dict[str, str] = {}
        if request.donor_clerk_id and request.donor_clerk_id != GUEST_CLERK_ID:
            metadata["dbDonorClerkId"] = request.donor_clerk_id
        return CustomerDetails(
            email=request.normalized_email,
            name=request.display_name,
            phone=request.phone,
            address=Address(
                line1=request.street,
                line2=request.address_line2,
                city=request.city,
                state=request.state,
                postal_code=request.zip_code,
                country=request.country,
            ),
            metadata=metadata,
        )

    def _intent_params(
        self,
        request: InitiateDonationRequest,
        church_id: str,
        fees: FeeBreakdown,
        customer_id: Optional[str],
    ) -> PaymentIntentParams:
        metadata = {
            "dbChurchId": church_id,
            "dbDonationTypeId": request.donation_type_id,
            "dbDonorClerkId": request.donor_clerk_id or GUEST_CLERK_ID,
            "transactionType": "one-time",
            "baseAmount": str(fees.base_amount),
            "processingFee": str(fees.processing_fee),
            "platformFee": str(fees.platform_fee),
            "coverFees": str(fees.covered_by_donor).lower(),
        }
        if request.donor_language:
            metadata["donorLanguage"] = request.donor_language

        return PaymentIntentParams(
            amount=fees.charge_amount,
            currency=request.currency,
            payment_method_types=self.payment_method_types,
            application_fee_amount=fees.platform_fee,
            customer=customer_id,
            receipt_email=None if request.is_anonymous else request.donor_email,
            metadata=metadata,
        )
