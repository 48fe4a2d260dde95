"""Models passed between the status mapper, the locator and the engine."""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

from ..database.models import PaymentLink


# Status-specific timestamps; each is written only the first time it is reached
TIMESTAMP_FIELDS = (
    "completed_at",
    "failed_at",
    "cancelled_at",
    "partially_paid_at",
    "sent_at",
)

# Event data copied onto the record whenever a mapped result carries it
PAYMENT_FIELDS = (
    "transaction_id",
    "paid_amount",
    "balance",
    "payment_method",
    "failure_reason",
    "unknown_event_type",
)


class NotificationDecision(str, enum.Enum):
    """Which customer notification a transition warrants."""
    NONE = "none"
    CONFIRMATION = "confirmation"
    FAILURE = "failure"


class MappedStatus(BaseModel):
    """Canonical status plus the fields derived from one provider event."""
    status: str = Field(..., description="Canonical payment link status")
    event_type: str = Field(default="", description="Raw event type as received")
    timestamp: datetime = Field(..., description="Event time, naive UTC")
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    partially_paid_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    unknown_event_type: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_amount: Optional[float] = None
    balance: Optional[float] = None
    payment_method: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def timestamp_fields(self) -> Dict[str, datetime]:
        return {name: getattr(self, name) for name in TIMESTAMP_FIELDS if getattr(self, name) is not None}

    def payment_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in PAYMENT_FIELDS if getattr(self, name) is not None}


@dataclass
class ReconciliationResult:
    """Outcome of applying one mapped status to a record."""
    record: PaymentLink
    previous_status: str
    transitioned: bool
    notification: NotificationDecision
    history_entry: Optional[Dict[str, Any]] = None
