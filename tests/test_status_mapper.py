"""Tests for mapping provider events to canonical statuses."""

import pytest
from datetime import datetime, timezone, timedelta

from payment_links.providers import ProviderEvent
from payment_links.reconciliation import map_status, classify, to_naive_utc


def make_event(event_type="", provider_status=None, **kwargs):
    return ProviderEvent(
        reference="inv_1",
        reference_type="invoice",
        event_type=event_type,
        provider_status=provider_status,
        timestamp=kwargs.pop("timestamp", datetime(2026, 3, 1, 12, 0, 0)),
        **kwargs,
    )


class TestEventTypeRules:
    """Event type substring matching."""

    @pytest.mark.parametrize("event_type,expected", [
        ("invoice.paid", "completed"),
        ("payment.completed", "completed"),
        ("Payment.Completed", "completed"),
        ("payment.failed", "failed"),
        ("card.declined", "failed"),
        ("invoice.partial_payment", "partial"),
        ("invoice.cancelled", "cancelled"),
        ("invoice.voided", "cancelled"),
        ("link.expired", "cancelled"),
        ("invoice.sent", "pending"),
        ("invoice.created", "pending"),
        ("invoice.unpaid", "pending"),
    ])
    def test_event_type_maps_to_status(self, event_type, expected):
        assert map_status(make_event(event_type)).status == expected

    def test_unpaid_is_not_completed(self):
        """'unpaid' contains 'paid' but must stay pending."""
        mapped = map_status(make_event("invoice.unpaid"))
        assert mapped.status == "pending"
        assert mapped.sent_at is not None
        assert mapped.completed_at is None

    def test_partially_paid_maps_to_completed(self):
        """The 'paid' rule precedes 'partial', so partially_paid reads as completed."""
        assert map_status(make_event("invoice.partially_paid")).status == "completed"

    def test_event_type_wins_over_provider_status(self):
        mapped = map_status(make_event("invoice.paid", provider_status="failed"))
        assert mapped.status == "completed"


class TestProviderStatusFallback:
    """Explicit provider status is used only when the event type is silent."""

    @pytest.mark.parametrize("provider_status,expected", [
        ("completed", "completed"),
        ("COMPLETED", "completed"),
        ("failed", "failed"),
        ("partial", "partial"),
        ("cancelled", "cancelled"),
        ("pending", "pending"),
    ])
    def test_provider_status(self, provider_status, expected):
        mapped = map_status(make_event("invoice.updated", provider_status=provider_status))
        assert mapped.status == expected

    def test_unrecognized_provider_status_is_unknown(self):
        mapped = map_status(make_event("invoice.updated", provider_status="refunded"))
        assert mapped.status == "unknown"

    def test_classify_without_event_type(self):
        assert classify(None, "completed").value == "completed"
        assert classify("", None).value == "unknown"


class TestDerivedFields:
    """Timestamps, failure reasons and payment data."""

    def test_completed_sets_completed_at(self):
        mapped = map_status(make_event("invoice.paid", transaction_id="txn_1", paid_amount=487.5, balance=0))
        assert mapped.completed_at == datetime(2026, 3, 1, 12, 0, 0)
        assert mapped.transaction_id == "txn_1"
        assert mapped.paid_amount == 487.5
        assert mapped.balance == 0

    def test_failure_reason_from_metadata(self):
        mapped = map_status(make_event("payment.failed", metadata={"reason": "Card expired"}))
        assert mapped.failed_at is not None
        assert mapped.failure_reason == "Card expired"

    def test_failure_reason_default(self):
        assert map_status(make_event("payment.failed")).failure_reason == "Payment failed"

    def test_partial_sets_partially_paid_at(self):
        mapped = map_status(make_event("invoice.partial", paid_amount=100.0))
        assert mapped.partially_paid_at is not None
        assert mapped.timestamp_fields() == {"partially_paid_at": mapped.partially_paid_at}

    def test_cancelled_sets_cancelled_at(self):
        assert map_status(make_event("invoice.voided")).cancelled_at is not None

    def test_unknown_carries_raw_event_type(self):
        mapped = map_status(make_event("Invoice.Mystery"))
        assert mapped.status == "unknown"
        assert mapped.unknown_event_type == "Invoice.Mystery"
        assert mapped.timestamp_fields() == {}

    def test_empty_event_never_raises(self):
        mapped = map_status(make_event())
        assert mapped.status == "unknown"
        assert mapped.unknown_event_type == ""

    def test_payment_fields_skip_missing_values(self):
        mapped = map_status(make_event("invoice.paid", transaction_id="txn_9"))
        assert mapped.payment_fields() == {"transaction_id": "txn_9"}

    def test_timezone_aware_timestamp_is_normalized(self):
        aware = datetime(2026, 3, 1, 7, 0, 0, tzinfo=timezone(timedelta(hours=-5)))
        mapped = map_status(make_event("invoice.paid", timestamp=aware))
        assert mapped.completed_at == datetime(2026, 3, 1, 12, 0, 0)
        assert mapped.completed_at.tzinfo is None

    def test_input_event_is_not_mutated(self):
        event = make_event("payment.failed", metadata={"reason": "Declined"})
        before = event.model_dump()
        map_status(event)
        assert event.model_dump() == before

    def test_to_naive_utc_leaves_naive_values(self):
        value = datetime(2026, 1, 1)
        assert to_naive_utc(value) is value
