"""Translation of provider events into canonical payment link statuses."""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from ..database.models import PaymentLinkStatus
from ..providers.base import ProviderEvent
from .models import MappedStatus

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment failed"

# Ordered; the first rule whose substrings occur in the event type wins.
# "unpaid" must precede "paid" or unpaid invoices would read as completed.
# Note that "partially_paid" still contains "paid" and maps to completed.
EVENT_TYPE_RULES: Tuple[Tuple[Tuple[str, ...], PaymentLinkStatus], ...] = (
    (("unpaid",), PaymentLinkStatus.PENDING),
    (("paid", "payment.completed"), PaymentLinkStatus.COMPLETED),
    (("fail", "declined"), PaymentLinkStatus.FAILED),
    (("partial",), PaymentLinkStatus.PARTIAL),
    (("cancel", "void", "expired"), PaymentLinkStatus.CANCELLED),
    (("sent", "created"), PaymentLinkStatus.PENDING),
)

# Consulted only when no event type rule matched
PROVIDER_STATUS_RULES = {
    "completed": PaymentLinkStatus.COMPLETED,
    "failed": PaymentLinkStatus.FAILED,
    "partial": PaymentLinkStatus.PARTIAL,
    "cancelled": PaymentLinkStatus.CANCELLED,
    "pending": PaymentLinkStatus.PENDING,
}

TIMESTAMP_FIELD_BY_STATUS = {
    PaymentLinkStatus.COMPLETED: "completed_at",
    PaymentLinkStatus.FAILED: "failed_at",
    PaymentLinkStatus.PARTIAL: "partially_paid_at",
    PaymentLinkStatus.CANCELLED: "cancelled_at",
    PaymentLinkStatus.PENDING: "sent_at",
}


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC, the form stored on records."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def classify(event_type: Optional[str], provider_status: Optional[str] = None) -> PaymentLinkStatus:
    """Return the canonical status for an event type and provider status.

    Args:
        event_type: Raw provider event type; matched by lower-cased substring.
        provider_status: Explicit provider status; matched by lower-cased equality.

    Returns:
        The canonical status, ``UNKNOWN`` when nothing matches.
    """
    lowered = (event_type or "").lower()
    if lowered:
        for needles, status in EVENT_TYPE_RULES:
            if any(needle in lowered for needle in needles):
                return status

    return PROVIDER_STATUS_RULES.get((provider_status or "").lower(), PaymentLinkStatus.UNKNOWN)


def map_status(event: ProviderEvent) -> MappedStatus:
    """Map a canonical provider event to a status and its derived fields.

    Pure: the event is not modified and no exception is raised for
    unrecognized input, which maps to ``unknown``.

    Args:
        event: Provider event from a webhook or a status poll.

    Returns:
        MappedStatus carrying the new status, the status-specific timestamp,
        the failure reason (for failures) and the event's payment data.
    """
    status = classify(event.event_type, event.provider_status)
    timestamp = to_naive_utc(event.timestamp)
    metadata = dict(event.metadata or {})

    fields = {
        "status": status.value,
        "event_type": event.event_type or "",
        "timestamp": timestamp,
        "transaction_id": event.transaction_id,
        "paid_amount": event.paid_amount,
        "balance": event.balance,
        "payment_method": event.payment_method,
        "metadata": metadata,
    }

    timestamp_field = TIMESTAMP_FIELD_BY_STATUS.get(status)
    if timestamp_field:
        fields[timestamp_field] = timestamp

    if status == PaymentLinkStatus.FAILED:
        fields["failure_reason"] = metadata.get("reason") or DEFAULT_FAILURE_REASON
    elif status == PaymentLinkStatus.UNKNOWN:
        logger.warning(
            f"Unknown event type {event.event_type!r} (provider status {event.provider_status!r})"
        )
        fields["unknown_event_type"] = event.event_type or ""

    return MappedStatus(**fields)
