import os
import asyncio
import logging
from typing import Dict, Any, Optional

import stripe

from ..errors import ConfigurationError, ProviderError, ValidationError
from .base import (
    ProviderBase,
    CheckoutRequest,
    CheckoutResponse,
    ProviderStatus,
    ProviderEvent,
    build_event,
    load_webhook_json,
    webhook_metadata,
)

logger = logging.getLogger(__name__)

# Stripe amounts are integers in the currency's minor unit
MINOR_UNITS = 100


def _to_minor(amount: float) -> int:
    return int(round(amount * MINOR_UNITS))


def _from_minor(amount: Optional[int]) -> Optional[float]:
    if amount is None:
        return None
    return amount / MINOR_UNITS


def _session_status(session: Dict[str, Any]) -> str:
    """Translate a Checkout Session into the status vocabulary the mapper knows."""
    if session.get("payment_status") == "paid":
        return "completed"
    if session.get("status") == "expired":
        return "cancelled"
    return "pending"


class StripeProvider(ProviderBase):
    """
    Stripe Checkout provider. Each payment link is a Checkout Session; the
    session id is stored as the link reference.
    """

    name = "stripe"

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or os.getenv("STRIPE_API_KEY", "")
        if not self.api_key:
            raise ConfigurationError("Stripe API key not configured")

    def _line_items(self, request: CheckoutRequest):
        currency = request.currency.lower()
        if not request.line_items:
            return [{
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": request.description or f"Invoice {request.invoice_number}"},
                    "unit_amount": _to_minor(request.amount),
                },
                "quantity": 1,
            }]

        items = []
        for item in request.line_items:
            quantity = int(item.quantity or 1)
            unit_price = item.unit_price
            if unit_price is None:
                unit_price = (item.line_total() or 0) / quantity
            items.append({
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": item.description or f"Invoice {request.invoice_number}"},
                    "unit_amount": _to_minor(unit_price),
                },
                "quantity": quantity,
            })
        return items

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        params = {
            "mode": "payment",
            "line_items": self._line_items(request),
            "customer_email": request.customer_email,
            "client_reference_id": request.invoice_number,
            "success_url": request.success_url or os.getenv("PAYMENT_SUCCESS_URL", ""),
            "cancel_url": request.cancel_url or os.getenv("PAYMENT_CANCEL_URL", ""),
            "metadata": {"invoice_number": request.invoice_number},
            "api_key": self.api_key,
        }
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout creation failed for invoice {request.invoice_number}: {e}")
            raise ProviderError("Failed to create Stripe checkout session", details=str(e)) from e

        logger.info(f"Created Stripe checkout session {session.id} for invoice {request.invoice_number}")
        return CheckoutResponse(
            link_ref=session.id,
            checkout_url=session.url,
            raw_provider_response=session.to_dict(),
        )

    async def get_status(self, ref: str) -> ProviderStatus:
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, ref, api_key=self.api_key
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve Stripe session {ref}: {e}")
            raise ProviderError("Failed to retrieve Stripe checkout session", details=str(e)) from e

        data = session.to_dict()
        return ProviderStatus(
            ref=data.get("id") or ref,
            status=_session_status(data),
            amount=_from_minor(data.get("amount_total")),
            currency=(data.get("currency") or "").upper() or None,
            transaction_id=data.get("payment_intent"),
        )

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> ProviderEvent:
        # Signature verification is out of scope; the payload is trusted as-is
        payload = load_webhook_json(body)
        data = payload.get("data")
        session = data.get("object") if isinstance(data, dict) else None
        if not isinstance(session, dict) or not session.get("id"):
            raise ValidationError("Invalid webhook payload: missing checkout session id")

        amount_total = session.get("amount_total")
        if amount_total is not None and (isinstance(amount_total, bool) or not isinstance(amount_total, int)):
            raise ValidationError("Invalid webhook payload", details="amount_total must be an integer")
        currency = session.get("currency")

        fields = {
            "reference": session["id"],
            "reference_type": "link",
            "event_type": payload.get("type") or "",
            "transaction_id": session.get("payment_intent"),
            "amount": _from_minor(amount_total),
            "currency": (currency.upper() or None) if isinstance(currency, str) else currency,
            "metadata": webhook_metadata(session.get("metadata")),
        }
        if session.get("payment_status") == "paid":
            fields["provider_status"] = "completed"
            fields["paid_amount"] = fields["amount"]
            fields["balance"] = 0.0
        if payload.get("created"):
            fields["timestamp"] = payload["created"]
        return build_event(**fields)
