"""HTTP API for payment links: creation, status and provider webhooks."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Dict, Any, AsyncGenerator

from fastapi import FastAPI, Request, Header, Depends, HTTPException
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import verify_api_key, limiter, CREATE_RATE_LIMIT
from .database import get_db, init_db, close_db, PaymentLink
from .errors import PaymentLinkError, ConfigurationError, UpstreamError
from .providers import ProviderStatus, default_provider_name
from .schemas import parse_json_body
from .services import (
    PaymentLinkService,
    ChannelOutcome,
    CreateOutcome,
    StatusOutcome,
    WebhookOutcome,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Payment Links API", lifespan=lifespan)
app.state.limiter = limiter


def success(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def failure(message: str, status_code: int, details: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"message": message, "details": details}},
    )


@app.exception_handler(PaymentLinkError)
async def payment_link_error_handler(request: Request, exc: PaymentLinkError):
    if isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc.message}")
        return failure("Service configuration error", exc.status_code)
    if isinstance(exc, UpstreamError):
        # Upstream details stay in the logs
        return failure(exc.message, exc.status_code)
    return failure(exc.message, exc.status_code, exc.details)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return failure(str(exc.detail), exc.status_code)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return failure("Rate limit exceeded", 429, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return failure("Internal server error", 500)


async def get_service(db: AsyncSession = Depends(get_db)) -> AsyncGenerator[PaymentLinkService, None]:
    service = PaymentLinkService(db)
    try:
        yield service
    finally:
        await service.close()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def channel_view(outcome: ChannelOutcome, id_key: str) -> Dict[str, Any]:
    return {
        "sent": outcome.sent,
        "status": outcome.status,
        id_key: outcome.message_id,
        "reason": outcome.reason,
    }


def create_view(outcome: CreateOutcome) -> Dict[str, Any]:
    record = outcome.record
    return {
        "id": record.id,
        "provider": record.provider,
        "providerLinkRef": record.provider_link_ref,
        "providerInvoiceRef": record.provider_invoice_ref,
        "checkoutUrl": record.checkout_url,
        "status": record.status,
        "amount": record.amount,
        "currency": record.currency,
        "invoice": record.invoice,
        "customer": record.customer,
        "createdAt": _iso(record.created_at),
        "smsNotification": channel_view(outcome.sms, "messageSid"),
        "emailNotification": channel_view(outcome.email, "messageId"),
    }


def provider_status_view(snapshot: Optional[ProviderStatus]) -> Optional[Dict[str, Any]]:
    if snapshot is None:
        return None
    return {
        "status": snapshot.status,
        "amount": snapshot.amount,
        "currency": snapshot.currency,
        "transactionId": snapshot.transaction_id,
        "lastUpdated": snapshot.updated_at,
    }


def status_view(outcome: StatusOutcome) -> Dict[str, Any]:
    record: PaymentLink = outcome.record
    customer = record.customer
    data = {
        "id": record.id,
        "provider": record.provider,
        "providerLinkRef": record.provider_link_ref,
        "providerInvoiceRef": record.provider_invoice_ref,
        "checkoutUrl": record.checkout_url,
        "status": record.status,
        "statusInfo": record.status_info,
        "amount": record.amount,
        "formattedAmount": record.formatted_amount,
        "currency": record.currency,
        "invoice": record.invoice,
        # Phone number is never exposed in status responses
        "customer": {"name": customer.get("name"), "email": customer.get("email")},
        "lineItems": record.line_items,
        "createdAt": _iso(record.created_at),
        "updatedAt": _iso(record.updated_at),
        "transactionId": record.transaction_id,
        "paidAmount": record.paid_amount,
        "balance": record.balance,
        "paymentMethod": record.payment_method,
        "lastSyncAt": _iso(record.last_sync_at),
        "notifications": {
            "sms": {"status": record.sms_status, "sentAt": _iso(record.sms_sent_at)},
            "email": {"status": record.email_status, "sentAt": _iso(record.email_sent_at)},
        },
        "eventHistory": record.event_history,
        "mxMerchantStatus": provider_status_view(outcome.provider_status),
    }

    if record.status == "completed" and record.completed_at:
        data["completedAt"] = _iso(record.completed_at)
    if record.status == "failed" and record.failed_at:
        data["failedAt"] = _iso(record.failed_at)
        data["failureReason"] = record.failure_reason
    if record.status == "cancelled" and record.cancelled_at:
        data["cancelledAt"] = _iso(record.cancelled_at)
    if record.status == "partial" and record.partially_paid_at:
        data["partiallyPaidAt"] = _iso(record.partially_paid_at)
    return data


def webhook_view(outcome: WebhookOutcome) -> Dict[str, Any]:
    record = outcome.record
    event = outcome.event
    return {
        "id": record.id,
        "providerRef": event.reference,
        "referenceType": event.reference_type,
        "previousStatus": outcome.result.previous_status,
        "status": record.status,
        "eventType": event.event_type,
        "transactionId": event.transaction_id,
        "paidAmount": event.paid_amount,
        "balance": event.balance,
        "paymentMethod": event.payment_method,
        "updatedAt": _iso(record.updated_at),
        "smsNotification": channel_view(outcome.sms, "messageSid"),
    }


@app.post("/payment-links", status_code=201)
@limiter.limit(CREATE_RATE_LIMIT)
async def create_payment_link(
    request: Request,
    x_provider: Optional[str] = Header(None),
    service: PaymentLinkService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """Create a payment link and send it to the customer."""
    data = parse_json_body(await request.body())
    outcome = await service.create_payment_link(data, provider_name=x_provider or default_provider_name())
    return success(create_view(outcome), status_code=201)


@app.get("/payment-links/{link_id}")
async def get_payment_status(
    link_id: str,
    service: PaymentLinkService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """Return a payment link, refreshed from its provider when possible."""
    outcome = await service.get_payment_status(link_id)
    return success(status_view(outcome))


@app.post("/webhook")
async def handle_webhook(
    request: Request,
    x_provider: Optional[str] = Header(None),
    service: PaymentLinkService = Depends(get_service),
):
    """Receive a provider notification. Unauthenticated; payloads are not signature-checked."""
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    outcome = await service.handle_webhook(headers, body, provider_name=x_provider or default_provider_name())
    return success(webhook_view(outcome))


@app.get("/health")
async def health():
    return {"ok": True, "provider": default_provider_name()}
