"""Repository layer for payment link persistence operations."""

import time
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError
from .models import (
    PaymentLink,
    PaymentLinkStatus,
    NotificationState,
    EventSource,
    TTL_SECONDS,
)

logger = logging.getLogger(__name__)

# Default page size for status queries
DEFAULT_QUERY_LIMIT = 100

# Columns reconciliation is allowed to write through update_fields
UPDATABLE_FIELDS = frozenset([
    "status",
    "transaction_id",
    "paid_amount",
    "balance",
    "payment_method",
    "failure_reason",
    "unknown_event_type",
    "completed_at",
    "failed_at",
    "cancelled_at",
    "partially_paid_at",
    "sent_at",
    "last_sync_at",
])


class PaymentLinkRepository:
    """Keyed record store for payment links.

    Updates are unconditional and last-write-wins; there is no version check.
    """

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        amount: float,
        invoice: Dict[str, Any],
        customer: Dict[str, Any],
        currency: str = "USD",
        provider: str = "mxmerchant",
        provider_link_ref: Optional[str] = None,
        provider_invoice_ref: Optional[str] = None,
        checkout_url: Optional[str] = None,
        line_items: Optional[List[Dict[str, Any]]] = None,
    ) -> PaymentLink:
        """Create a new payment link record with its seed history entry.

        Args:
            amount: Face value of the payment request.
            invoice: Invoice reference (number, description).
            customer: Customer details (name, email, phone).
            currency: Three-letter currency code.
            provider: Name of the provider that issued the checkout.
            provider_link_ref: Provider's payment link identifier.
            provider_invoice_ref: Provider's invoice identifier.
            checkout_url: Hosted payment page URL.
            line_items: Informational line items.

        Returns:
            Created PaymentLink instance.
        """
        now = datetime.utcnow()
        link = PaymentLink(
            provider=provider,
            provider_link_ref=provider_link_ref,
            provider_invoice_ref=provider_invoice_ref,
            checkout_url=checkout_url,
            status=PaymentLinkStatus.CREATED.value,
            amount=amount,
            currency=(currency or "USD").upper(),
            sms_status=NotificationState.PENDING.value,
            email_status=NotificationState.PENDING.value,
            created_at=now,
            updated_at=now,
            ttl=int(time.time()) + TTL_SECONDS,
        )
        link.invoice = invoice
        link.customer = customer
        link.line_items = line_items
        link.event_history = [{
            "eventType": "created",
            "status": PaymentLinkStatus.CREATED.value,
            "timestamp": now.isoformat(),
            "source": EventSource.SYSTEM.value,
            "description": "Payment link created",
            "metadata": {},
        }]

        await self.put(link)
        logger.info(f"Created payment link {link.id} for invoice {invoice.get('number')}")
        return link

    async def put(self, link: PaymentLink) -> PaymentLink:
        """Insert or replace a payment link record."""
        self.session.add(link)
        await self.session.flush()
        return link

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self, link: Optional[PaymentLink] = None) -> None:
        """Roll back pending changes, reloading ``link`` from committed state."""
        await self.session.rollback()
        if link is not None:
            await self.session.refresh(link)

    async def get(self, link_id: str) -> Optional[PaymentLink]:
        """Get a payment link by its ID.

        Args:
            link_id: Payment link ID.

        Returns:
            PaymentLink instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(PaymentLink).where(PaymentLink.id == link_id)
        )
        return result.scalar_one_or_none()

    async def _require(self, link_id: str) -> PaymentLink:
        link = await self.get(link_id)
        if link is None:
            raise NotFoundError("Payment link not found", details={"id": link_id})
        return link

    async def update_fields(self, link_id: str, fields: Dict[str, Any]) -> PaymentLink:
        """Overwrite the given fields and refresh ``updated_at``.

        Fields whose value is None are skipped.

        Args:
            link_id: Payment link ID.
            fields: Mapping of column name to new value.

        Returns:
            Updated PaymentLink instance.

        Raises:
            NotFoundError: If the record does not exist.
            ValueError: If a field is not writable.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")

        link = await self._require(link_id)
        for key, value in fields.items():
            if value is not None:
                setattr(link, key, value)
        link.updated_at = datetime.utcnow()

        await self.session.flush()
        logger.info(
            f"Updated payment link {link_id} status to {link.status} "
            f"(fields: {', '.join(sorted(k for k, v in fields.items() if v is not None))})"
        )
        return link

    async def query_by_status(
        self,
        status: str,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> List[PaymentLink]:
        """List payment links currently in the given status.

        Args:
            status: Payment link status to filter by.
            limit: Maximum number of results.

        Returns:
            List of PaymentLink instances, oldest first.
        """
        result = await self.session.execute(
            select(PaymentLink)
            .where(PaymentLink.status == status)
            .order_by(PaymentLink.created_at)
            .limit(limit)
        )
        links = list(result.scalars().all())
        logger.debug(f"Found {len(links)} payment links with status {status}")
        return links

    async def append_history(self, link_id: str, entry: Dict[str, Any]) -> PaymentLink:
        """Append one entry to the record's event history.

        Args:
            link_id: Payment link ID.
            entry: History entry; missing keys get defaults.

        Returns:
            Updated PaymentLink instance.
        """
        link = await self._require(link_id)
        now = datetime.utcnow()
        event = {
            "eventType": entry.get("eventType"),
            "status": entry.get("status"),
            "timestamp": entry.get("timestamp") or now.isoformat(),
            "source": entry.get("source") or EventSource.WEBHOOK.value,
            "description": entry.get("description") or f"Status changed to {entry.get('status')}",
            "metadata": entry.get("metadata") or {},
        }
        link.event_history = link.event_history + [event]
        link.updated_at = now

        await self.session.flush()
        logger.debug(
            f"Added {event['eventType']} event to payment link {link_id} "
            f"({len(link.event_history)} total)"
        )
        return link

    async def update_notification_status(
        self,
        link_id: str,
        sms_status: Optional[str] = None,
        sms_message_id: Optional[str] = None,
        email_status: Optional[str] = None,
        email_message_id: Optional[str] = None,
    ) -> PaymentLink:
        """Record the outcome of the SMS and/or email side channel.

        A sent timestamp is stored alongside each message id.
        """
        link = await self._require(link_id)
        now = datetime.utcnow()

        if sms_status:
            link.sms_status = sms_status
            if sms_message_id:
                link.sms_message_id = sms_message_id
                link.sms_sent_at = now
        if email_status:
            link.email_status = email_status
            if email_message_id:
                link.email_message_id = email_message_id
                link.email_sent_at = now
        link.updated_at = now

        await self.session.flush()
        logger.info(
            f"Updated notification status for {link_id}: "
            f"sms={link.sms_status}, email={link.email_status}"
        )
        return link
