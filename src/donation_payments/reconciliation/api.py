"""API endpoints for reconciliation operations."""

import logging
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import verify_api_key, get_gateway, get_clock
from ..connectors.base import ConnectorBase
from ..database import get_db
from .models import (
    PayoutReconciliationResult,
    ChurchReconciliationResult,
    SweepResult,
)
from .service import ReconciliationService, DEFAULT_SWEEP_AGE_DAYS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    gateway: ConnectorBase = Depends(get_gateway),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ReconciliationService:
    return ReconciliationService(db, gateway, clock=clock)


@router.post("/payouts/{payout_id}", response_model=PayoutReconciliationResult)
async def reconcile_payout(
    payout_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """
    Reconcile one payout against its balance transactions.

    Responds 404 when the payout has not been recorded yet and 422 when the
    provider reports nothing to reconcile.
    """
    result = await service.reconcile_payout(payout_id)
    if not result.success:
        status_code = 404 if result.error == "Payout not found" else 422
        raise HTTPException(status_code=status_code, detail=result.error)
    return result


@router.post("/churches/{church_id}", response_model=ChurchReconciliationResult)
async def reconcile_church(
    church_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """Reconcile every paid, unreconciled payout of a church."""
    logger.info(f"Reconciling payouts for church {church_id}")
    return await service.reconcile_church(church_id)


@router.post("/pending/sweep", response_model=SweepResult)
async def sweep_pending(
    max_age_days: int = Query(default=DEFAULT_SWEEP_AGE_DAYS, ge=1, le=365),
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """Settle or fail pending donations the provider has finished with."""
    return await service.sweep_stale_pending(max_age_days=max_age_days)


@router.post("/webhook-markers/purge")
async def purge_webhook_markers(
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    deleted = await service.purge_webhook_markers()
    return {"deleted": deleted}


@router.get("/health")
async def reconciliation_health():
    """Health check endpoint for reconciliation service."""
    return {"status": "healthy", "service": "reconciliation"}
