"""Simulator provider for exercising payment link flows without real PSP calls."""

import uuid
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime

from ..errors import ProviderError, ValidationError
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


@dataclass
class SimulatedLink:
    """In-memory representation of a hosted payment page."""
    ref: str
    invoice_ref: str
    amount: float
    currency: str
    status: str = "created"
    transaction_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


class SimulatorProvider(ProviderBase):
    """
    In-memory provider for local development and tests.

    Features:
    - Issues hosted page URLs under a configurable base URL
    - Status of any link can be driven with ``set_status``
    - ``fail_status_reads`` makes every status read raise ProviderError
    - ``build_webhook`` produces payloads ``parse_webhook`` accepts
    """

    name = "simulator"

    def __init__(self, base_url: str = "https://pay.simulator.local", fail_status_reads: bool = False):
        self.base_url = base_url.rstrip("/")
        self.fail_status_reads = fail_status_reads
        self._links: Dict[str, SimulatedLink] = {}
        logger.info("SimulatorProvider initialized")

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        ref = f"sim_link_{uuid.uuid4().hex[:20]}"
        link = SimulatedLink(
            ref=ref,
            invoice_ref=f"sim_inv_{uuid.uuid4().hex[:20]}",
            amount=request.amount,
            currency=request.currency,
        )
        self._links[ref] = link
        return CheckoutResponse(
            link_ref=ref,
            checkout_url=f"{self.base_url}/checkout/{ref}",
            raw_provider_response={"simulator": True, "invoice_ref": link.invoice_ref},
        )

    async def get_status(self, ref: str) -> ProviderStatus:
        if self.fail_status_reads:
            raise ProviderError("Simulated provider outage")
        link = self._links.get(ref)
        if not link:
            raise ProviderError(f"Payment link {ref} not found")
        return ProviderStatus(
            ref=link.ref,
            status=link.status,
            amount=link.amount,
            currency=link.currency,
            transaction_id=link.transaction_id,
            updated_at=link.updated_at.isoformat(),
        )

    def set_status(self, ref: str, status: str, transaction_id: Optional[str] = None) -> SimulatedLink:
        """Move a simulated link to a new provider status (simulator-specific method)."""
        link = self._links.get(ref)
        if not link:
            raise KeyError(ref)
        link.status = status
        link.transaction_id = transaction_id or link.transaction_id
        link.updated_at = datetime.utcnow()
        return link

    def build_webhook(self, ref: str, event_type: str, **extra: Any) -> Dict[str, Any]:
        """Build a webhook payload for a simulated link."""
        payload = {"eventType": event_type, "paymentLinkId": ref}
        payload.update(extra)
        return payload

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> ProviderEvent:
        payload = load_webhook_json(body)
        if payload.get("paymentLinkId"):
            reference, reference_type = str(payload["paymentLinkId"]), "link"
        elif payload.get("invoiceId"):
            reference, reference_type = str(payload["invoiceId"]), "invoice"
        else:
            raise ValidationError("Invalid webhook payload: missing paymentLinkId or invoiceId")

        fields = {
            "reference": reference,
            "reference_type": reference_type,
            "event_type": payload.get("eventType") or "",
            "provider_status": payload.get("status"),
            "transaction_id": payload.get("transactionId"),
            "amount": payload.get("amount"),
            "paid_amount": payload.get("paidAmount"),
            "balance": payload.get("balance"),
            "payment_method": payload.get("paymentMethod"),
            "metadata": webhook_metadata(payload.get("metadata")),
        }
        if payload.get("timestamp"):
            fields["timestamp"] = payload["timestamp"]
        return build_event(**fields)
