"""Status reconciliation for payment links.

Provider signals, whether pushed by webhook or pulled by a status poll, go
through the same path:

- ``map_status`` turns a provider event into a canonical status
- ``RecordLocator`` finds the record a webhook refers to
- ``ReconciliationEngine`` persists the transition and its history entry
  and decides which customer notification it warrants
"""

from .models import (
    MappedStatus,
    NotificationDecision,
    ReconciliationResult,
    TIMESTAMP_FIELDS,
    PAYMENT_FIELDS,
)
from .status_mapper import map_status, classify, to_naive_utc
from .locator import RecordLocator
from .engine import ReconciliationEngine, describe_transition, notification_for

__all__ = [
    # Models
    "MappedStatus",
    "NotificationDecision",
    "ReconciliationResult",
    "TIMESTAMP_FIELDS",
    "PAYMENT_FIELDS",
    # Mapping
    "map_status",
    "classify",
    "to_naive_utc",
    # Core Components
    "RecordLocator",
    "ReconciliationEngine",
    "describe_transition",
    "notification_for",
]
