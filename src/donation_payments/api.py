import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request, Header, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import limiter, get_gateway, get_clock, get_webhook_verifier
from .config import Settings, get_settings
from .connectors import ConnectorBase
from .database import get_db, init_db, close_db
from .exceptions import DonationError, WebhookVerificationError, WebhookProcessingError
from .reconciliation.api import router as reconciliation_router
from .schemas import InitiateDonationRequest
from .services import DonationService
from .webhooks import WebhookVerifier, WebhookProcessor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    await init_db(create_tables=settings.database_url.startswith("sqlite"))
    yield
    await close_db()


app = FastAPI(title="Donation Payments", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(reconciliation_router)


@app.exception_handler(DonationError)
async def donation_error_handler(request: Request, exc: DonationError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(WebhookVerificationError)
@app.exception_handler(WebhookProcessingError)
async def webhook_error_handler(request: Request, exc):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    issues = [
        {"path": [str(part) for part in error.get("loc", ())[1:]], "message": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content=jsonable_encoder({"error": "Invalid input.", "issues": issues}))


@app.get("/health")
async def health(gateway: ConnectorBase = Depends(get_gateway)):
    return {"status": "ok", "gateway": gateway.health_check()}


@app.post("/donations/initiate")
@limiter.limit(lambda: get_settings().initiate_rate_limit)
async def initiate_donation(
    request: Request,
    body: InitiateDonationRequest,
    db: AsyncSession = Depends(get_db),
    gateway: ConnectorBase = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    service = DonationService(db, gateway, settings=settings, clock=clock)
    result = await service.initiate_donation(body)
    return JSONResponse(status_code=result.status_code, content=result.to_dict())


@app.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: ConnectorBase = Depends(get_gateway),
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Receive provider events. A 200 acknowledges the delivery; a 500 asks the
    provider to redeliver, which is the only retry mechanism.
    """
    payload = await request.body()
    event = verifier.verify(payload, stripe_signature)

    processor = WebhookProcessor(db, gateway, settings=settings, clock=clock)
    try:
        outcome = await processor.process(event)
    except WebhookProcessingError:
        raise
    except Exception as e:
        logger.exception(f"Unexpected failure handling webhook {event.id} ({event.type})")
        raise WebhookProcessingError("Webhook handler failed.") from e
    return outcome.to_dict()
