"""Summarisation of payout balance transactions."""

import logging
from typing import Iterable

from ..connectors.base import BalanceTransaction
from .models import PayoutTotals

logger = logging.getLogger(__name__)


class PayoutReconciler:
    """Turn the balance transactions of a payout into PayoutTotals.

    Rules by balance transaction type:
    - ``charge`` and ``payment`` add to gross volume and fees.
    - ``refund`` adds its absolute amount to refunds; its fee is negative
      and reduces total fees.
    - ``adjustment`` with reporting category ``dispute`` adds its absolute
      amount to disputes.
    - Anything else is counted but only logged.
    """

    GROSS_TYPES = frozenset({"charge", "payment"})

    def summarize(self, transactions: Iterable[BalanceTransaction]) -> PayoutTotals:
        totals = PayoutTotals()

        for bt in transactions:
            totals.transaction_count += 1

            if bt.type in self.GROSS_TYPES:
                totals.gross_volume += bt.amount
                totals.total_fees += bt.fee
            elif bt.type == "refund":
                totals.total_refunds += abs(bt.amount)
                totals.total_fees += bt.fee
            elif bt.type == "adjustment" and bt.reporting_category == "dispute":
                totals.total_disputes += abs(bt.amount)
            else:
                logger.info(f"Unexpected balance transaction type {bt.type} ({bt.id}, amount {bt.amount}, fee {bt.fee})")
                totals.unexpected_types.append(bt.type)

        totals.net_amount = (
            totals.gross_volume - totals.total_fees - totals.total_refunds - totals.total_disputes
        )
        return totals
