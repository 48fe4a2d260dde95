"""SMS notifications through the Twilio REST API."""

import os
import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import ConfigurationError, NotificationError
from .base import NotificationSenderBase, NotificationResult, mask_phone

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
DEFAULT_TIMEOUT_SECONDS = 10.0


def payment_link_message(data: Dict[str, Any]) -> str:
    return (
        f"Hi {data['customer_name']}, your payment link for invoice {data['invoice_number']} "
        f"({data['amount']}) is ready. Click here to pay: {data['checkout_url']}"
    )


def payment_confirmation_message(data: Dict[str, Any]) -> str:
    return (
        f"Payment confirmed! Invoice {data['invoice_number']} for {data['amount']} has been "
        f"processed successfully. Transaction ID: {data.get('transaction_id') or 'N/A'}"
    )


def payment_failure_message(data: Dict[str, Any]) -> str:
    return (
        f"Payment failed for invoice {data['invoice_number']} ({data['amount']}). "
        f"Reason: {data.get('reason') or 'Payment failed'}. "
        f"Please try again or contact us for assistance."
    )


class TwilioSMSSender(NotificationSenderBase):
    """Sends templated text messages from the configured Twilio number."""

    channel = "sms"
    templates = {
        "payment_link": payment_link_message,
        "payment_confirmation": payment_confirmation_message,
        "payment_failure": payment_failure_message,
    }

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        phone_number: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID")
        auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN")
        self.phone_number = phone_number or os.getenv("TWILIO_PHONE_NUMBER")

        if not all([self.account_sid, auth_token, self.phone_number]):
            raise ConfigurationError("Twilio credentials not configured")

        self._client = client or httpx.AsyncClient(
            base_url=TWILIO_API_URL,
            auth=(self.account_sid, auth_token),
            timeout=DEFAULT_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, target: str, template: str, data: Dict[str, Any]) -> NotificationResult:
        body = self.render(template, data)
        logger.info(
            f"Sending {template} SMS to {mask_phone(target)} for invoice {data.get('invoice_number')}"
        )
        try:
            response = await self._client.post(
                f"/Accounts/{self.account_sid}/Messages.json",
                data={"To": target, "From": self.phone_number, "Body": body},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to send {template} SMS to {mask_phone(target)}: {e}")
            raise NotificationError(f"SMS sending failed: {e}") from e

        logger.info(f"SMS sent successfully: {payload.get('sid')} ({payload.get('status')})")
        return NotificationResult(message_id=payload.get("sid"), status="sent")
