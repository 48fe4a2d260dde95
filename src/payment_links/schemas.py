"""Request validation and models for payment link creation."""

import re
import json
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field

from .errors import ValidationError

REQUIRED_FIELDS = ("amount", "invoice", "customer")
SUPPORTED_CURRENCIES = ("USD", "CAD")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")


class InvoiceInput(BaseModel):
    number: str
    description: Optional[str] = None


class CustomerInput(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None


class LineItemInput(BaseModel):
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = Field(default=None, alias="unitPrice")
    total_price: Optional[float] = Field(default=None, alias="totalPrice")

    class Config:
        populate_by_name = True

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class CreatePaymentLinkRequest(BaseModel):
    """A validated payment link creation request."""
    amount: float = Field(..., gt=0, description="Face value of the payment request")
    currency: str = Field(default="USD", description="USD or CAD")
    invoice: InvoiceInput
    customer: CustomerInput
    line_items: List[LineItemInput] = Field(default_factory=list, alias="lineItems")
    send_sms: bool = Field(default=True, alias="sendSMS")
    send_email: bool = Field(default=True, alias="sendEmail")
    redirect_url: Optional[str] = Field(default=None, alias="redirectUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")

    class Config:
        populate_by_name = True

    @property
    def invoice_record(self) -> Dict[str, Any]:
        return {
            "number": self.invoice.number,
            "description": self.invoice.description or f"Payment for {self.invoice.number}",
        }

    @property
    def customer_record(self) -> Dict[str, Any]:
        return self.customer.model_dump()


def parse_json_body(body: bytes) -> Any:
    """Decode a JSON request body.

    Raises:
        ValidationError: If the body is not valid JSON.
    """
    try:
        return json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Invalid JSON in request body") from e


def _parse_amount(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if amount != amount or amount <= 0:
        return None
    return amount


def validate_create_request(data: Any) -> CreatePaymentLinkRequest:
    """Validate a raw creation request without side effects.

    Checks run in a fixed order and the first failure is reported.

    Args:
        data: Decoded JSON request body.

    Returns:
        CreatePaymentLinkRequest with normalized values.

    Raises:
        ValidationError: With a caller-facing message describing the problem.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    invoice = data["invoice"] if isinstance(data["invoice"], dict) else {}
    customer = data["customer"] if isinstance(data["customer"], dict) else {}

    amount = _parse_amount(data["amount"])
    if amount is None:
        raise ValidationError("Valid amount is required")

    if not invoice.get("number"):
        raise ValidationError("Invoice number is required")

    if not customer.get("name") or not customer.get("email"):
        raise ValidationError("Customer name and email are required")

    if not EMAIL_PATTERN.match(str(customer["email"])):
        raise ValidationError("Valid customer email is required")

    phone = customer.get("phone")
    if phone and not PHONE_PATTERN.match(str(phone)):
        raise ValidationError("Valid customer phone number is required")

    currency = data.get("currency")
    if currency and currency not in SUPPORTED_CURRENCIES:
        raise ValidationError("Currency must be USD or CAD")

    line_items = data.get("lineItems") or []
    if not isinstance(line_items, list):
        raise ValidationError("Line items must be a list")

    try:
        return CreatePaymentLinkRequest(
            amount=amount,
            currency=currency or "USD",
            invoice=InvoiceInput(
                number=str(invoice["number"]),
                description=invoice.get("description") or None,
            ),
            customer=CustomerInput(
                name=str(customer["name"]),
                email=str(customer["email"]),
                phone=str(phone) if phone else None,
            ),
            line_items=[LineItemInput(**item) for item in line_items if isinstance(item, dict)],
            send_sms=data.get("sendSMS") is not False,
            send_email=data.get("sendEmail") is not False,
            redirect_url=data.get("redirectUrl"),
            cancel_url=data.get("cancelUrl"),
        )
    except ValueError as e:
        # pydantic's ValidationError subclasses ValueError
        raise ValidationError("Invalid payment link request", details=str(e)) from e
