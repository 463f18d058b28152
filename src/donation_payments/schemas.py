"""Request and response models for the donation API."""

from typing import Optional, Dict, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# $999,999.99 in cents
MAX_DONATION_AMOUNT = 99_999_999

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class InitiateDonationRequest(BaseModel):
    """Body of POST /donations/initiate. Field names are camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    idempotency_key: UUID = Field(alias="idempotencyKey")
    church_id: UUID = Field(alias="churchId")
    donation_type_id: str = Field(alias="donationTypeId", min_length=1)
    base_amount: int = Field(alias="baseAmount", gt=0, le=MAX_DONATION_AMOUNT, strict=True)
    currency: str = Field(default="usd", min_length=3, max_length=3)

    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=100)
    donor_email: Optional[str] = Field(default=None, alias="donorEmail", pattern=EMAIL_PATTERN, max_length=255)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    street: Optional[str] = Field(default=None, max_length=200)
    address_line2: Optional[str] = Field(default=None, alias="addressLine2", max_length=200)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=50)
    zip_code: Optional[str] = Field(default=None, alias="zipCode", max_length=20)
    country: Optional[str] = Field(default=None, max_length=2)

    is_anonymous: bool = Field(default=False, alias="isAnonymous")
    cover_fees: bool = Field(default=False, alias="coverFees")
    donor_language: Optional[str] = Field(default=None, alias="donorLanguage", max_length=10)
    donor_id: Optional[UUID] = Field(default=None, alias="donorId")
    donor_clerk_id: Optional[str] = Field(default=None, alias="donorClerkId", max_length=255)

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        return v.lower()

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @property
    def normalized_email(self) -> Optional[str]:
        if not self.donor_email:
            return None
        return self.donor_email.strip().lower()

    @property
    def display_name(self) -> Optional[str]:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or None

    def contact_fields(self) -> Dict[str, Optional[str]]:
        """Request values keyed by Donor column name."""
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.donor_email,
            "phone": self.phone,
            "address_line1": self.street,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.zip_code,
            "country": self.country,
        }


class InitiationResult(BaseModel):
    status_code: int
    transaction_id: str
    client_secret: Optional[str] = None
    stripe_account: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "clientSecret": self.client_secret,
            "transactionId": self.transaction_id,
            "stripeAccount": self.stripe_account,
        }
        if self.message:
            body["message"] = self.message
        return body
