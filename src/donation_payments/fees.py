"""Fee gross-up math for donations.

All amounts are integers in minor units. Fractions are always rounded up so
the church never nets less than the donor intended.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Union

from .config import Settings

Rate = Union[Decimal, str, float]


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class FeeSchedule:
    """Provider and platform fee parameters.

    The processing rate is the card rate. The payment method is not known
    when the intent is created, so the same schedule is used for every
    method at initiation time.
    """

    processing_rate: Decimal = Decimal("0.029")
    processing_fixed_fee: int = 30
    platform_rate: Decimal = Decimal("0.01")

    def __post_init__(self):
        object.__setattr__(self, "processing_rate", Decimal(str(self.processing_rate)))
        object.__setattr__(self, "platform_rate", Decimal(str(self.platform_rate)))
        if self.processing_rate + self.platform_rate >= 1:
            raise ValueError("Combined fee rates must be below 100%")

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeeSchedule":
        return cls(
            processing_rate=settings.stripe_processing_fee_rate,
            processing_fixed_fee=settings.stripe_processing_fixed_fee,
            platform_rate=settings.platform_fee_rate,
        )


@dataclass(frozen=True)
class FeeBreakdown:
    base_amount: int
    charge_amount: int
    processing_fee: int
    platform_fee: int
    covered_by_donor: bool

    @property
    def net_amount(self) -> int:
        """What the church keeps once both fees are deducted."""
        return self.charge_amount - self.processing_fee - self.platform_fee


def calculate_fees(
    base_amount: int,
    cover_fees: bool,
    schedule: FeeSchedule = FeeSchedule(),
) -> FeeBreakdown:
    """Compute the amount to charge and the fees attributable to it.

    When the donor covers fees the charge is grossed up so that after the
    provider's percentage-plus-fixed fee and the platform's percentage fee
    the church receives exactly ``base_amount``. Otherwise the platform fee
    is still levied and absorbed by the church.
    """
    if base_amount <= 0:
        raise ValueError("base_amount must be a positive integer")

    base = Decimal(base_amount)

    if not cover_fees:
        return FeeBreakdown(
            base_amount=base_amount,
            charge_amount=base_amount,
            processing_fee=0,
            platform_fee=_ceil(base * schedule.platform_rate),
            covered_by_donor=False,
        )

    divisor = Decimal(1) - schedule.processing_rate - schedule.platform_rate
    charge = _ceil((base + schedule.processing_fixed_fee) / divisor)
    platform_fee = _ceil(Decimal(charge) * schedule.platform_rate)

    return FeeBreakdown(
        base_amount=base_amount,
        charge_amount=charge,
        processing_fee=charge - base_amount - platform_fee,
        platform_fee=platform_fee,
        covered_by_donor=True,
    )
