"""Email notifications through AWS SES."""

import os
import asyncio
import logging
from html import escape
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ConfigurationError, NotificationError
from ..database.models import format_amount
from .base import NotificationSenderBase, NotificationResult

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-2"

# (subject, text body, html body)
Rendered = Tuple[str, str, str]


def _line_item_rows(data: Dict[str, Any]):
    for item in data.get("line_items") or []:
        price = item.get("unitPrice") or item.get("totalPrice") or 0
        yield item.get("description") or "", item.get("quantity") or 1, format_amount(price, data.get("currency"))


def payment_link_email(data: Dict[str, Any]) -> Rendered:
    invoice_number = data["invoice_number"]
    rows = list(_line_item_rows(data))

    text = [
        f"Payment Request for Invoice {invoice_number}",
        "",
        f"Hello {data['customer_name']},",
        "",
        f"You have a payment request for invoice {invoice_number}.",
        "",
    ]
    if data.get("description"):
        text += [data["description"], ""]
    if rows:
        text.append("Items:")
        text += [f"- {desc}: {price} x {qty}" for desc, qty, price in rows]
        text.append("")
    text += [
        f"Total Amount: {data['amount']}",
        "",
        f"Click here to pay: {data['checkout_url']}",
        "",
        "Thank you!",
    ]

    items_html = "".join(
        f"<tr><td>{escape(str(desc))}</td><td>{qty}</td><td>{price}</td></tr>"
        for desc, qty, price in rows
    )
    html = (
        "<html><body>"
        "<h1>Payment Request</h1>"
        f"<p>Hello {escape(data['customer_name'])},</p>"
        f"<p>You have a payment request for invoice <strong>{escape(invoice_number)}</strong>.</p>"
        + (f"<p>{escape(data['description'])}</p>" if data.get("description") else "")
        + (f"<table><tr><th>Description</th><th>Qty</th><th>Amount</th></tr>{items_html}</table>" if rows else "")
        + f"<p><strong>Total Amount:</strong> {data['amount']}</p>"
        f"<p><a href=\"{escape(data['checkout_url'])}\">Pay Now</a></p>"
        "<p>This is an automated payment notification. Please do not reply to this email.</p>"
        "</body></html>"
    )
    return f"Payment Request - Invoice {invoice_number}", "\n".join(text), html


def payment_confirmation_email(data: Dict[str, Any]) -> Rendered:
    invoice_number = data["invoice_number"]
    transaction_id = data.get("transaction_id") or "N/A"
    text = "\n".join([
        "Payment Confirmed!",
        "",
        f"Hello {data['customer_name']},",
        "",
        f"Your payment for invoice {invoice_number} has been processed successfully!",
        "",
        f"Amount Paid: {data['amount']}",
        f"Transaction ID: {transaction_id}",
        "",
        "Thank you for your payment!",
    ])
    html = (
        "<html><body>"
        "<h1>Payment Confirmed</h1>"
        f"<p>Hello {escape(data['customer_name'])},</p>"
        f"<p>Your payment for invoice <strong>{escape(invoice_number)}</strong> has been processed successfully!</p>"
        f"<p>Amount Paid: {data['amount']}</p>"
        f"<p><strong>Transaction ID:</strong> {escape(transaction_id)}</p>"
        "<p>Thank you for your payment!</p>"
        "</body></html>"
    )
    return f"Payment Confirmed - Invoice {invoice_number}", text, html


class SESEmailSender(NotificationSenderBase):
    """Sends templated emails through SES. boto3 is blocking, so sends run in a worker thread."""

    channel = "email"
    templates = {
        "payment_link": payment_link_email,
        "payment_confirmation": payment_confirmation_email,
    }

    def __init__(self, from_email: Optional[str] = None, region: Optional[str] = None, client=None):
        self.from_email = from_email or os.getenv("SES_FROM_EMAIL")
        self.region = region or os.getenv("SES_REGION") or os.getenv("AWS_REGION") or DEFAULT_REGION

        if not self.from_email:
            raise ConfigurationError("SES FROM email not configured")

        self._client = client or boto3.client("ses", region_name=self.region)

    async def send(self, target: str, template: str, data: Dict[str, Any]) -> NotificationResult:
        subject, text, html = self.render(template, data)
        logger.info(f"Sending {template} email to {target} for invoice {data.get('invoice_number')}")
        try:
            response = await asyncio.to_thread(
                self._client.send_email,
                Source=self.from_email,
                Destination={"ToAddresses": [target]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {
                        "Text": {"Data": text, "Charset": "UTF-8"},
                        "Html": {"Data": html, "Charset": "UTF-8"},
                    },
                },
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to send {template} email to {target}: {e}")
            raise NotificationError(f"Email sending failed: {e}") from e

        logger.info(f"Email sent successfully: {response.get('MessageId')}")
        return NotificationResult(message_id=response.get("MessageId"), status="sent")
