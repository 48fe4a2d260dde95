"""Reconciliation engine: applies mapped statuses to payment link records."""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFoundError
from ..database.models import PaymentLink, PaymentLinkStatus, EventSource, format_amount
from ..database.repository import PaymentLinkRepository
from .models import MappedStatus, NotificationDecision, ReconciliationResult

logger = logging.getLogger(__name__)

NOTIFICATION_BY_STATUS = {
    PaymentLinkStatus.COMPLETED.value: NotificationDecision.CONFIRMATION,
    PaymentLinkStatus.FAILED.value: NotificationDecision.FAILURE,
}


def describe_transition(record: PaymentLink, mapped: MappedStatus) -> str:
    """Human-readable history description for a mapped status."""
    currency = record.currency
    status = mapped.status

    if status == PaymentLinkStatus.COMPLETED.value:
        paid = mapped.paid_amount if mapped.paid_amount is not None else record.amount
        return f"Payment completed - {format_amount(paid, currency)}"
    if status == PaymentLinkStatus.PARTIAL.value:
        paid = mapped.paid_amount or 0
        return (
            f"Partial payment received - {format_amount(paid, currency)} "
            f"of {format_amount(record.amount, currency)}"
        )
    if status == PaymentLinkStatus.FAILED.value:
        return f"Payment failed - {mapped.failure_reason}"
    if status == PaymentLinkStatus.CANCELLED.value:
        return "Payment link cancelled"
    if status == PaymentLinkStatus.PENDING.value:
        return "Payment link sent to customer"
    return f"Unrecognized event {mapped.event_type or 'without type'}"


def notification_for(status: str) -> NotificationDecision:
    return NOTIFICATION_BY_STATUS.get(status, NotificationDecision.NONE)


class ReconciliationEngine:
    """
    Applies one mapped provider signal to one record.

    Every call persists the status and derived fields, even when the status
    is unchanged, and appends one history entry. Identical events are not
    deduplicated.
    """

    def __init__(self, repository: PaymentLinkRepository):
        self.repository = repository

    def _build_update(
        self,
        record: PaymentLink,
        mapped: MappedStatus,
        extra_fields: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"status": mapped.status}
        fields.update(mapped.payment_fields())
        for name, value in mapped.timestamp_fields().items():
            if getattr(record, name) is None:
                fields[name] = value
        if extra_fields:
            fields.update(extra_fields)
        return fields

    def _history_entry(self, record: PaymentLink, mapped: MappedStatus, source: str) -> Dict[str, Any]:
        metadata = dict(mapped.metadata)
        for key in ("transaction_id", "paid_amount", "balance", "payment_method"):
            value = getattr(mapped, key)
            if value is not None:
                metadata.setdefault(key, value)
        return {
            "eventType": mapped.event_type or mapped.status,
            "status": mapped.status,
            "timestamp": mapped.timestamp.isoformat(),
            "source": source,
            "description": describe_transition(record, mapped),
            "metadata": metadata,
        }

    async def reconcile(
        self,
        record: PaymentLink,
        mapped: MappedStatus,
        source: str = EventSource.WEBHOOK.value,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> ReconciliationResult:
        """Apply a mapped status to a located record.

        The status write is committed before the history entry is appended.
        A failed append is logged and does not undo the status write.

        Args:
            record: Existing payment link, typically from the RecordLocator.
            mapped: Output of the status mapper.
            source: History source, ``webhook`` or ``poll``.
            extra_fields: Additional updatable columns to write (e.g. ``last_sync_at``).

        Returns:
            ReconciliationResult with the updated record and notification decision.

        Raises:
            NotFoundError: If the record disappeared before the update.
        """
        previous_status = record.status
        fields = self._build_update(record, mapped, extra_fields)

        record = await self.repository.update_fields(record.id, fields)
        await self.repository.commit()

        transitioned = mapped.status != previous_status
        logger.info(
            f"Reconciled payment link {record.id} from {source}: "
            f"{previous_status} -> {mapped.status}"
            + ("" if transitioned else " (unchanged)")
        )

        entry = self._history_entry(record, mapped, source)
        try:
            record = await self.repository.append_history(record.id, entry)
            await self.repository.commit()
        except (SQLAlchemyError, NotFoundError) as e:
            logger.error(f"Failed to append history to payment link {record.id}: {e}")
            await self.repository.rollback(record)
            entry = None

        return ReconciliationResult(
            record=record,
            previous_status=previous_status,
            transitioned=transitioned,
            notification=notification_for(mapped.status),
            history_entry=entry,
        )

