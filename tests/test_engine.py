"""Tests for the reconciliation engine."""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from sqlalchemy.exc import SQLAlchemyError

from payment_links.providers import ProviderEvent
from payment_links.reconciliation import (
    ReconciliationEngine,
    NotificationDecision,
    map_status,
    describe_transition,
)


def mapped_for(event_type, timestamp=datetime(2026, 3, 1, 12, 0, 0), **kwargs):
    return map_status(ProviderEvent(
        reference="link_abc",
        event_type=event_type,
        timestamp=timestamp,
        **kwargs,
    ))


class TestReconcile:
    """Tests for ReconciliationEngine.reconcile."""

    async def test_completed_transition(self, repository, make_link):
        link = await make_link()
        engine = ReconciliationEngine(repository)

        result = await engine.reconcile(
            link, mapped_for("payment.completed", transaction_id="txn_1", paid_amount=487.5, balance=0.0)
        )

        assert result.transitioned is True
        assert result.previous_status == "created"
        assert result.notification == NotificationDecision.CONFIRMATION
        record = result.record
        assert record.status == "completed"
        assert record.transaction_id == "txn_1"
        assert record.paid_amount == 487.5
        assert record.balance == 0.0
        assert record.completed_at == datetime(2026, 3, 1, 12, 0, 0)
        assert len(record.event_history) == 2
        entry = record.event_history[-1]
        assert entry["eventType"] == "payment.completed"
        assert entry["source"] == "webhook"
        assert entry["description"] == "Payment completed - $487.50"
        assert entry["metadata"]["transaction_id"] == "txn_1"

    async def test_failed_transition_decides_failure_notification(self, repository, make_link):
        link = await make_link()
        result = await ReconciliationEngine(repository).reconcile(
            link, mapped_for("payment.failed", metadata={"reason": "Card declined"})
        )
        assert result.notification == NotificationDecision.FAILURE
        assert result.record.failure_reason == "Card declined"
        assert result.history_entry["description"] == "Payment failed - Card declined"

    @pytest.mark.parametrize("event_type", ["invoice.sent", "invoice.partial", "invoice.voided", "mystery"])
    async def test_other_statuses_need_no_notification(self, repository, make_link, event_type):
        link = await make_link()
        result = await ReconciliationEngine(repository).reconcile(link, mapped_for(event_type))
        assert result.notification == NotificationDecision.NONE

    async def test_unknown_event_is_recorded(self, repository, make_link):
        link = await make_link()
        result = await ReconciliationEngine(repository).reconcile(link, mapped_for("invoice.mystery"))
        assert result.record.status == "unknown"
        assert result.record.unknown_event_type == "invoice.mystery"
        assert result.history_entry["description"] == "Unrecognized event invoice.mystery"

    async def test_same_status_still_writes_and_appends(self, repository, make_link):
        """Duplicate events are not deduplicated."""
        link = await make_link()
        engine = ReconciliationEngine(repository)

        first = await engine.reconcile(link, mapped_for("invoice.sent"))
        second = await engine.reconcile(first.record, mapped_for("invoice.sent"))

        assert first.transitioned is True
        assert second.transitioned is False
        assert second.record.status == "pending"
        assert len(second.record.event_history) == 3

    async def test_status_timestamp_written_once(self, repository, make_link):
        link = await make_link()
        engine = ReconciliationEngine(repository)

        first = await engine.reconcile(link, mapped_for("invoice.sent", timestamp=datetime(2026, 3, 1, 9, 0)))
        second = await engine.reconcile(first.record, mapped_for("invoice.sent", timestamp=datetime(2026, 3, 2, 9, 0)))

        assert second.record.sent_at == datetime(2026, 3, 1, 9, 0)

    async def test_payment_data_is_overwritten(self, repository, make_link):
        link = await make_link()
        engine = ReconciliationEngine(repository)

        first = await engine.reconcile(link, mapped_for("invoice.partial", paid_amount=100.0, balance=387.5))
        second = await engine.reconcile(first.record, mapped_for("invoice.partial", paid_amount=200.0, balance=287.5))

        assert second.record.paid_amount == 200.0
        assert second.record.balance == 287.5
        assert second.history_entry["description"] == "Partial payment received - $200.00 of $487.50"

    async def test_extra_fields_and_poll_source(self, repository, make_link):
        link = await make_link()
        synced = datetime(2026, 3, 5, 8, 30)
        result = await ReconciliationEngine(repository).reconcile(
            link, mapped_for("cancelled"), source="poll", extra_fields={"last_sync_at": synced}
        )
        assert result.record.last_sync_at == synced
        assert result.record.event_history[-1]["source"] == "poll"

    async def test_history_failure_does_not_undo_status(self, repository, make_link):
        link = await make_link()
        engine = ReconciliationEngine(repository)
        repository.append_history = AsyncMock(side_effect=SQLAlchemyError("disk full"))

        result = await engine.reconcile(link, mapped_for("payment.completed"))

        assert result.history_entry is None
        assert result.record.status == "completed"
        stored = await repository.get(link.id)
        assert stored.status == "completed"
        assert len(stored.event_history) == 1


class TestDescribeTransition:
    """Tests for history descriptions."""

    async def test_completed_defaults_to_face_value(self, make_link):
        link = await make_link(amount=50)
        assert describe_transition(link, mapped_for("invoice.paid")) == "Payment completed - $50.00"

    async def test_cancelled_and_sent(self, make_link):
        link = await make_link()
        assert describe_transition(link, mapped_for("link.expired")) == "Payment link cancelled"
        assert describe_transition(link, mapped_for("invoice.created")) == "Payment link sent to customer"
