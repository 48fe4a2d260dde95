"""MX Merchant provider using Link2Pay hosted payment pages."""

import os
import uuid
import asyncio
import logging
from typing import Dict, Any, Optional
from urllib.parse import urlencode

import httpx

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

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_SUCCESS_URL = "https://celebrationchevrolet.com/payment/success"
DEFAULT_CANCEL_URL = "https://celebrationchevrolet.com/payment/cancel"


class Link2PayDeviceCache:
    """Holds the hosted-page device UDID, resolved at most once per process.

    The UDID is opaque to everything outside this module.
    """

    def __init__(self, udid: Optional[str] = None):
        self._udid = udid
        self._lock = asyncio.Lock()

    @property
    def udid(self) -> Optional[str]:
        return self._udid

    async def get_or_fetch(self, fetch) -> str:
        if self._udid:
            return self._udid
        async with self._lock:
            if not self._udid:
                self._udid = await fetch()
        return self._udid

    def clear(self) -> None:
        self._udid = None


LINK2PAY_DEVICE_CACHE = Link2PayDeviceCache(os.getenv("MX_LINK2PAY_DEVICE_UDID") or None)


def _error_message(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        try:
            return error.response.json().get("message") or str(error)
        except ValueError:
            return str(error)
    return str(error)


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _blank_to_none(value: Any) -> Any:
    return None if value == "" else value


def _id_text(value: Any) -> Any:
    # MX Merchant sends numeric transaction ids
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class MXMerchantProvider(ProviderBase):
    """
    MX Merchant provider. Checkout URLs point at a Link2Pay device owned by the
    merchant; webhooks arrive as invoice notifications keyed by invoice id.
    """

    name = "mxmerchant"

    def __init__(
        self,
        api_url: Optional[str] = None,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        merchant_id: Optional[str] = None,
        payment_page_url: Optional[str] = None,
        device_cache: Optional[Link2PayDeviceCache] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the provider.

        Args:
            api_url: MX Merchant API base URL. Falls back to MX_MERCHANT_API_URL.
            consumer_key: API consumer key. Falls back to MX_MERCHANT_CONSUMER_KEY.
            consumer_secret: API consumer secret. Falls back to MX_MERCHANT_CONSUMER_SECRET.
            merchant_id: Merchant id. Falls back to MX_MERCHANT_MERCHANT_ID.
            payment_page_url: Hosted page base URL. Falls back to MX_PAYMENT_PAGE_URL.
            device_cache: Link2Pay device cache; the process-wide one by default.
            client: Preconfigured HTTP client (tests).

        Raises:
            ConfigurationError: If credentials are missing.
        """
        self.api_url = api_url or os.getenv("MX_MERCHANT_API_URL")
        self.merchant_id = merchant_id or os.getenv("MX_MERCHANT_MERCHANT_ID")
        consumer_key = consumer_key or os.getenv("MX_MERCHANT_CONSUMER_KEY")
        consumer_secret = consumer_secret or os.getenv("MX_MERCHANT_CONSUMER_SECRET")
        self.payment_page_url = (
            payment_page_url or os.getenv("MX_PAYMENT_PAGE_URL") or "https://mxmerchant.com"
        ).rstrip("/")
        self.device_cache = device_cache or LINK2PAY_DEVICE_CACHE

        if not all([self.api_url, consumer_key, consumer_secret, self.merchant_id]):
            raise ConfigurationError("MX Merchant credentials not configured")

        self._client = client or httpx.AsyncClient(
            base_url=self.api_url,
            auth=(consumer_key, consumer_secret),
            headers={"Content-Type": "application/json"},
            timeout=DEFAULT_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _fetch_link2pay_device(self) -> str:
        """Find an enabled Link2Pay device or create one."""
        response = await self._client.get(
            "/device",
            params={"merchantId": self.merchant_id, "deviceType": "Link2Pay"},
        )
        response.raise_for_status()
        for device in response.json() or []:
            if device.get("enabled") and device.get("deviceType") == "Link2Pay":
                logger.info(f"Using existing Link2Pay device {device['UDID']}")
                return device["UDID"]

        device_data = {
            "name": f"Payment Link API {uuid.uuid4().hex[:8]}",
            "description": "Hosted payment page for API",
            "deviceType": "Link2Pay",
            "merchantId": int(self.merchant_id),
            "enabled": True,
            "onSuccessUrl": os.getenv("PAYMENT_SUCCESS_URL", DEFAULT_SUCCESS_URL),
            "onFailureUrl": os.getenv("PAYMENT_CANCEL_URL", DEFAULT_CANCEL_URL),
        }
        response = await self._client.post("/device", params={"echo": "true"}, json=device_data)
        response.raise_for_status()
        udid = response.json()["UDID"]
        logger.info(f"Created new Link2Pay device {udid}")
        return udid

    async def get_link2pay_device(self) -> str:
        try:
            return await self.device_cache.get_or_fetch(self._fetch_link2pay_device)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Failed to get/create Link2Pay device: {e}")
            raise ProviderError(f"Link2Pay device error: {_error_message(e)}") from e

    def _checkout_params(self, request: CheckoutRequest) -> Dict[str, str]:
        params = {
            "Amt": f"{request.amount:.2f}",
            "InvoiceNo": request.invoice_number,
            "CustomerName": request.customer_name,
            "CustomerEmail": request.customer_email,
        }
        if request.customer_phone:
            params["CustomerPhone"] = request.customer_phone
        if request.description:
            params["Memo"] = request.description

        for index, item in enumerate(request.line_items, start=1):
            if item.description:
                params[f"Item{index}Description"] = item.description
            total = item.line_total()
            if total is not None:
                params[f"Item{index}Amount"] = f"{total:.2f}"
            if item.quantity:
                params[f"Item{index}Quantity"] = f"{item.quantity:g}"
        return params

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        """Build a Link2Pay hosted page URL for the request."""
        logger.info(f"Creating Link2Pay payment URL for invoice {request.invoice_number}")
        udid = await self.get_link2pay_device()
        checkout_url = (
            f"{self.payment_page_url}/Link2Pay/{udid}?{urlencode(self._checkout_params(request))}"
        )
        return CheckoutResponse(
            link_ref=f"link2pay_{uuid.uuid4().hex}",
            checkout_url=checkout_url,
            raw_provider_response={"device": udid},
        )

    async def get_status(self, ref: str) -> ProviderStatus:
        try:
            response = await self._client.get(f"/paymentLinks/{ref}")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to retrieve MX Merchant status for {ref}: {e}")
            raise ProviderError(
                f"Failed to retrieve payment link status: {_error_message(e)}"
            ) from e

        return ProviderStatus(
            ref=str(data.get("id") or ref),
            status=str(data.get("status") or ""),
            amount=_as_float(data.get("amount")),
            currency=data.get("currency"),
            transaction_id=data.get("transactionId"),
            updated_at=data.get("updatedAt"),
        )

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> ProviderEvent:
        """Canonicalize an MX Merchant notification.

        Invoice notifications are correlated by ``invoiceId``; payment link
        notifications by ``paymentLinkId``.
        """
        payload = load_webhook_json(body)
        metadata = webhook_metadata(payload.get("metadata"))

        if payload.get("invoiceId"):
            reference, reference_type = str(payload["invoiceId"]), "invoice"
        elif payload.get("paymentLinkId"):
            reference, reference_type = str(payload["paymentLinkId"]), "link"
        else:
            raise ValidationError(
                "Invalid webhook payload: missing invoiceId or paymentLinkId"
            )

        for key in ("invoiceNumber", "receiptNumber"):
            if payload.get(key) and key not in metadata:
                metadata[key] = payload[key]

        fields = {
            "reference": reference,
            "reference_type": reference_type,
            "event_type": payload.get("eventType") or payload.get("event") or "",
            "provider_status": payload.get("status"),
            "transaction_id": _id_text(payload.get("transactionId")),
            "amount": _blank_to_none(payload.get("amount")),
            "currency": payload.get("currency"),
            "paid_amount": _blank_to_none(payload.get("paidAmount")),
            "balance": _blank_to_none(payload.get("balance")),
            "payment_method": payload.get("paymentMethod"),
            "metadata": metadata,
        }
        if payload.get("timestamp"):
            fields["timestamp"] = payload["timestamp"]
        return build_event(**fields)
