"""SQLAlchemy models for payment link persistence."""

import uuid
import json
import time
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    DateTime,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import enum


# Records expire from the store 30 days after creation
TTL_SECONDS = 30 * 24 * 60 * 60


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PaymentLinkStatus(str, enum.Enum):
    """Canonical payment link statuses."""
    CREATED = "created"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class NotificationState(str, enum.Enum):
    """Delivery state of one notification channel."""
    NOT_SENT = "not_sent"
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EventSource(str, enum.Enum):
    """Origin of a history entry."""
    SYSTEM = "system"
    WEBHOOK = "webhook"
    POLL = "poll"


STATUS_INFO: Dict[str, Dict[str, str]] = {
    "created": {
        "label": "Created",
        "description": "Payment link has been created and is ready for use",
        "color": "blue",
    },
    "pending": {
        "label": "Pending",
        "description": "Payment is being processed",
        "color": "yellow",
    },
    "completed": {
        "label": "Completed",
        "description": "Payment has been successfully processed",
        "color": "green",
    },
    "failed": {
        "label": "Failed",
        "description": "Payment processing failed",
        "color": "red",
    },
    "partial": {
        "label": "Partially Paid",
        "description": "A partial payment has been received",
        "color": "orange",
    },
    "cancelled": {
        "label": "Cancelled",
        "description": "Payment link has been cancelled or expired",
        "color": "gray",
    },
    "unknown": {
        "label": "Unknown",
        "description": "Payment status is unknown",
        "color": "gray",
    },
}

CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$"}


def format_amount(amount: Optional[float], currency: Optional[str] = "USD") -> str:
    """Format an amount for display, e.g. ``$487.50``."""
    symbol = CURRENCY_SYMBOLS.get((currency or "USD").upper(), "$")
    return f"{symbol}{float(amount or 0):,.2f}"


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads(value: Optional[str], default: Any = None) -> Any:
    if value:
        return json.loads(value)
    return default


class PaymentLink(Base):
    """One payment request issued to a customer, with its full history."""
    __tablename__ = "payment_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="mxmerchant")
    provider_link_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_invoice_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentLinkStatus.CREATED.value)

    amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Immutable business data stored as JSON
    invoice_json: Mapped[str] = mapped_column(Text, nullable=False)
    customer_json: Mapped[str] = mapped_column(Text, nullable=False)
    line_items_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Payment data written by reconciliation
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_amount: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    balance: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unknown_event_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Set once, the first time the matching status is reached
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    partially_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Append-only audit trail
    event_history_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    # Notification side channel
    sms_status: Mapped[str] = mapped_column(String(20), nullable=False, default=NotificationState.PENDING.value)
    sms_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sms_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    email_status: Mapped[str] = mapped_column(String(20), nullable=False, default=NotificationState.PENDING.value)
    email_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    ttl: Mapped[int] = mapped_column(Integer, nullable=False, default=lambda: int(time.time()) + TTL_SECONDS)

    __table_args__ = (
        Index("ix_payment_links_status", "status"),
        Index("ix_payment_links_provider_link_ref", "provider_link_ref"),
        Index("ix_payment_links_provider_invoice_ref", "provider_invoice_ref"),
        Index("ix_payment_links_created_at", "created_at"),
    )

    @property
    def invoice(self) -> Dict[str, Any]:
        """Get invoice as dictionary."""
        return _loads(self.invoice_json, {})

    @invoice.setter
    def invoice(self, value: Dict[str, Any]) -> None:
        self.invoice_json = _dumps(value)

    @property
    def customer(self) -> Dict[str, Any]:
        """Get customer as dictionary."""
        return _loads(self.customer_json, {})

    @customer.setter
    def customer(self, value: Dict[str, Any]) -> None:
        self.customer_json = _dumps(value)

    @property
    def line_items(self) -> List[Dict[str, Any]]:
        """Get line items as a list."""
        return _loads(self.line_items_json, [])

    @line_items.setter
    def line_items(self, value: Optional[List[Dict[str, Any]]]) -> None:
        self.line_items_json = _dumps(value or [])

    @property
    def event_history(self) -> List[Dict[str, Any]]:
        """Get event history, oldest first."""
        return _loads(self.event_history_json, [])

    @event_history.setter
    def event_history(self, value: List[Dict[str, Any]]) -> None:
        self.event_history_json = _dumps(value)

    @property
    def status_info(self) -> Dict[str, str]:
        return STATUS_INFO.get(self.status, STATUS_INFO["unknown"])

    @property
    def is_active(self) -> bool:
        return self.status in (PaymentLinkStatus.CREATED.value, PaymentLinkStatus.PENDING.value)

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentLinkStatus.COMPLETED.value

    @property
    def has_failed(self) -> bool:
        return self.status == PaymentLinkStatus.FAILED.value

    @property
    def formatted_amount(self) -> str:
        return format_amount(self.amount, self.currency)

    @property
    def most_recent_event(self) -> Optional[Dict[str, Any]]:
        history = self.event_history
        return history[-1] if history else None

    def events_by_type(self, event_type: str) -> List[Dict[str, Any]]:
        """Return history entries with the given event type, in order."""
        return [e for e in self.event_history if e.get("eventType") == event_type]

    def provider_ref(self) -> Optional[str]:
        """Reference used to poll the provider for this link."""
        return self.provider_link_ref or self.provider_invoice_ref

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment link to dictionary representation."""
        return {
            "id": self.id,
            "provider": self.provider,
            "provider_link_ref": self.provider_link_ref,
            "provider_invoice_ref": self.provider_invoice_ref,
            "checkout_url": self.checkout_url,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "invoice": self.invoice,
            "customer": self.customer,
            "line_items": self.line_items,
            "transaction_id": self.transaction_id,
            "paid_amount": self.paid_amount,
            "balance": self.balance,
            "payment_method": self.payment_method,
            "failure_reason": self.failure_reason,
            "event_history": self.event_history,
            "sms_status": self.sms_status,
            "email_status": self.email_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
