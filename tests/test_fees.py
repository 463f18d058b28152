"""Tests for the fee gross-up calculator."""

from decimal import Decimal, ROUND_CEILING

import pytest

from donation_payments.config import Settings
from donation_payments.fees import FeeSchedule, FeeBreakdown, calculate_fees


class TestFeesNotCovered:
    """The church absorbs fees when the donor does not cover them."""

    def test_charge_equals_base(self):
        """Test that the charge is the base amount."""
        fees = calculate_fees(10000, cover_fees=False)

        assert fees.charge_amount == 10000
        assert fees.processing_fee == 0
        assert fees.platform_fee == 100
        assert fees.covered_by_donor is False

    def test_platform_fee_rounds_up(self):
        """Test that a fractional platform fee is rounded up to the next cent."""
        fees = calculate_fees(1050, cover_fees=False)

        # 1% of 1050 is 10.5
        assert fees.platform_fee == 11

    def test_net_is_base_minus_platform_fee(self):
        """Test the church's net when it absorbs the platform fee."""
        fees = calculate_fees(2500, cover_fees=False)

        assert fees.net_amount == 2500 - fees.platform_fee


class TestFeesCovered:
    """Gross-up when the donor covers processing and platform fees."""

    def test_default_schedule(self):
        """Test the gross-up of a 100.00 donation with the default schedule."""
        fees = calculate_fees(10000, cover_fees=True)

        # ceil(10030 / 0.961) = ceil(10437.04)
        assert fees.charge_amount == 10438
        assert fees.platform_fee == 105
        assert fees.processing_fee == 333
        assert fees.covered_by_donor is True

    @pytest.mark.parametrize("base", [1, 99, 100, 500, 1234, 5000, 10000, 25075, 99999, 1000000, 99999999])
    def test_net_equals_base(self, base):
        """Test that the church nets exactly the base amount."""
        fees = calculate_fees(base, cover_fees=True)

        assert fees.net_amount == base
        assert fees.charge_amount > base

    @pytest.mark.parametrize("base", [1, 100, 1234, 10000, 99999, 99999999])
    def test_charge_covers_provider_fee(self, base):
        """Test that the charge pays the provider's percentage and fixed fee in full."""
        fees = calculate_fees(base, cover_fees=True)
        provider_fee = (Decimal(fees.charge_amount) * Decimal("0.029")).to_integral_value(
            rounding=ROUND_CEILING
        ) + 30

        assert fees.charge_amount - provider_fee - fees.platform_fee >= base - 1
        assert fees.processing_fee >= provider_fee - 1

    def test_custom_schedule(self):
        """Test a schedule with different rates."""
        schedule = FeeSchedule(processing_rate="0.022", processing_fixed_fee=30, platform_rate="0.005")
        fees = calculate_fees(5000, cover_fees=True, schedule=schedule)

        # ceil(5030 / 0.973) = ceil(5169.58)
        assert fees.charge_amount == 5170
        assert fees.platform_fee == 26
        assert fees.processing_fee == 5170 - 5000 - 26


class TestFeeSchedule:
    """Tests for FeeSchedule construction."""

    def test_rates_are_decimals(self):
        """Test that float and string rates are normalized to Decimal."""
        schedule = FeeSchedule(processing_rate=0.029, platform_rate="0.01")

        assert schedule.processing_rate == Decimal("0.029")
        assert schedule.platform_rate == Decimal("0.01")

    def test_rejects_rates_of_one_hundred_percent(self):
        """Test that combined rates at or above 100% are rejected."""
        with pytest.raises(ValueError):
            FeeSchedule(processing_rate="0.5", platform_rate="0.5")

    def test_from_settings(self):
        """Test building the schedule from settings."""
        settings = Settings(
            stripe_processing_fee_rate=Decimal("0.008"),
            stripe_processing_fixed_fee=0,
            platform_fee_rate=Decimal("0.02"),
        )

        schedule = FeeSchedule.from_settings(settings)

        assert schedule.processing_rate == Decimal("0.008")
        assert schedule.processing_fixed_fee == 0
        assert schedule.platform_rate == Decimal("0.02")

    def test_breakdown_is_immutable(self):
        """Test that a computed breakdown cannot be modified."""
        fees = calculate_fees(1000, cover_fees=False)

        assert isinstance(fees, FeeBreakdown)
        with pytest.raises(AttributeError):
            fees.charge_amount = 1


class TestInvalidAmounts:
    """Tests for non-positive amounts."""

    @pytest.mark.parametrize("base", [0, -1, -10000])
    def test_non_positive_base_rejected(self, base):
        """Test that zero and negative amounts raise ValueError."""
        with pytest.raises(ValueError):
            calculate_fees(base, cover_fees=True)
