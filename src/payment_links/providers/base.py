import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, List, Literal
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError


def load_webhook_json(body: bytes) -> Dict[str, Any]:
    """Decode a webhook body, rejecting anything that is not a JSON object."""
    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Invalid JSON in webhook payload") from e
    if not isinstance(payload, dict):
        raise ValidationError("Invalid webhook payload: expected a JSON object")
    return payload


# Canonical models
class CheckoutLineItem(BaseModel):
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None

    def line_total(self) -> Optional[float]:
        if self.total_price is not None:
            return self.total_price
        if self.unit_price is not None:
            return self.unit_price * (self.quantity or 1)
        return None

class CheckoutRequest(BaseModel):
    amount: float
    currency: str = "USD"
    invoice_number: str
    description: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    line_items: List[CheckoutLineItem] = Field(default_factory=list)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    link_ref: Optional[str] = None
    invoice_ref: Optional[str] = None
    checkout_url: str
    raw_provider_response: Optional[Dict[str, Any]] = None

class ProviderStatus(BaseModel):
    ref: str
    status: str  # provider vocabulary, mapped by the status mapper
    amount: Optional[float] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    updated_at: Optional[str] = None

class ProviderEvent(BaseModel):
    """A provider notification or poll result in canonical form."""
    reference: str
    reference_type: Literal["link", "invoice"] = "link"
    event_type: str = ""
    provider_status: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    transaction_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    paid_amount: Optional[float] = None
    balance: Optional[float] = None
    payment_method: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def webhook_metadata(value: Any) -> Dict[str, Any]:
    """Copy a webhook's metadata object. Anything other than an object is rejected."""
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("Invalid webhook payload", details="metadata must be an object")
    return dict(value)


def build_event(**fields: Any) -> ProviderEvent:
    """Construct a ProviderEvent, reporting malformed webhook fields as a ValidationError."""
    try:
        return ProviderEvent(**fields)
    except PydanticValidationError as e:
        raise ValidationError("Invalid webhook payload", details=str(e)) from e


class ProviderBase(ABC):
    """
    Payment provider interface: a checkout factory and a status oracle.
    Implementations raise ProviderError when the remote call fails.
    """

    name: str = "base"

    @abstractmethod
    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        """
        Issue a hosted checkout page for the request.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_status(self, ref: str) -> ProviderStatus:
        raise NotImplementedError

    @abstractmethod
    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> ProviderEvent:
        """
        Canonicalize a provider webhook payload. Raises ValidationError when the
        payload is not JSON, carries no correlation identifier or has a
        malformed field.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None
