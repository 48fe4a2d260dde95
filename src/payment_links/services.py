"""Payment link service layer: creation, status polling and webhook handling."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    PaymentLinkError,
    ConfigurationError,
    NotFoundError,
    UpstreamError,
    NotificationError,
)
from .database import (
    PaymentLink,
    PaymentLinkRepository,
    PaymentLinkStatus,
    NotificationState,
    EventSource,
)
from .providers import (
    ProviderBase,
    CheckoutRequest,
    CheckoutLineItem,
    ProviderStatus,
    ProviderEvent,
    get_provider,
    default_provider_name,
)
from .notifications import (
    NotificationSenderBase,
    get_sms_sender,
    get_email_sender,
    mask_phone,
)
from .reconciliation import (
    RecordLocator,
    ReconciliationEngine,
    ReconciliationResult,
    NotificationDecision,
    MappedStatus,
    map_status,
)
from .schemas import validate_create_request

logger = logging.getLogger(__name__)

SMS_TEMPLATE_BY_DECISION = {
    NotificationDecision.CONFIRMATION: "payment_confirmation",
    NotificationDecision.FAILURE: "payment_failure",
}


@dataclass
class ChannelOutcome:
    """What happened on one notification channel."""
    sent: bool
    status: str
    message_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class CreateOutcome:
    record: PaymentLink
    sms: ChannelOutcome
    email: ChannelOutcome


@dataclass
class StatusOutcome:
    record: PaymentLink
    provider_status: Optional[ProviderStatus] = None


@dataclass
class WebhookOutcome:
    record: PaymentLink
    event: ProviderEvent
    mapped: MappedStatus
    result: ReconciliationResult
    sms: ChannelOutcome


@dataclass
class SyncSummary:
    """Totals from a bulk status sync."""
    checked: int = 0
    changed: int = 0
    failed: int = 0
    skipped: int = 0
    changed_ids: List[str] = field(default_factory=list)


def _upstream(operation: str, error: Exception) -> UpstreamError:
    """Replace an upstream failure with a generic caller-facing error."""
    detail = error.message if isinstance(error, PaymentLinkError) else str(error)
    logger.error(f"Failed to {operation}: {detail}")
    error_class = type(error) if isinstance(error, UpstreamError) else UpstreamError
    return error_class(f"Failed to {operation}", details=detail)


class PaymentLinkService:
    """Service class for payment link operations with persistence."""

    def __init__(
        self,
        session: AsyncSession,
        provider_factory: Callable[[Optional[str]], ProviderBase] = get_provider,
        sms_sender: Optional[NotificationSenderBase] = None,
        email_sender: Optional[NotificationSenderBase] = None,
    ):
        """Initialize the service with a database session.

        Args:
            session: AsyncSession instance for database operations.
            provider_factory: Builds a provider from its name.
            sms_sender: SMS sender; built from the environment when first needed.
            email_sender: Email sender; built from the environment when first needed.
        """
        self.session = session
        self.repository = PaymentLinkRepository(session)
        self.locator = RecordLocator(self.repository)
        self.engine = ReconciliationEngine(self.repository)
        self.provider_factory = provider_factory
        self._providers: Dict[str, ProviderBase] = {}
        self._sms_sender = sms_sender
        self._email_sender = email_sender

    def provider(self, name: Optional[str] = None) -> ProviderBase:
        """Get (and cache) the provider for a name.

        Raises:
            ConfigurationError: If the provider is unknown or not configured.
        """
        name = (name or default_provider_name()).lower()
        if name not in self._providers:
            self._providers[name] = self.provider_factory(name)
        return self._providers[name]

    def _sms(self) -> NotificationSenderBase:
        if self._sms_sender is None:
            self._sms_sender = get_sms_sender()
        return self._sms_sender

    def _email(self) -> NotificationSenderBase:
        if self._email_sender is None:
            self._email_sender = get_email_sender()
        return self._email_sender

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()
        for sender in (self._sms_sender, self._email_sender):
            if sender is not None:
                await sender.close()

    async def _send(
        self,
        channel: str,
        sender_getter: Callable[[], NotificationSenderBase],
        target: str,
        template: str,
        data: Dict[str, Any],
        failure_reason: str,
    ) -> ChannelOutcome:
        try:
            result = await sender_getter().send(target, template, data)
        except (NotificationError, ConfigurationError) as e:
            logger.error(f"Failed to send {template} {channel} for invoice {data.get('invoice_number')}: {e.message}")
            return ChannelOutcome(sent=False, status=NotificationState.FAILED.value, reason=failure_reason)
        return ChannelOutcome(sent=True, status=NotificationState.SENT.value, message_id=result.message_id)

    async def create_payment_link(
        self,
        data: Dict[str, Any],
        provider_name: Optional[str] = None,
    ) -> CreateOutcome:
        """Validate a request, issue a checkout and store the new record.

        The payment link notification is then sent by SMS and email. Neither
        a failed send nor a failed notification status write fails creation.

        Args:
            data: Decoded JSON request body.
            provider_name: Provider to issue the checkout with.

        Returns:
            CreateOutcome with the stored record and per-channel results.

        Raises:
            ValidationError: If the request is invalid.
            ConfigurationError: If the provider is not configured.
            UpstreamError: If the provider or the store fails.
        """
        request = validate_create_request(data)
        provider = self.provider(provider_name)

        checkout_request = CheckoutRequest(
            amount=request.amount,
            currency=request.currency,
            invoice_number=request.invoice.number,
            description=request.invoice_record["description"],
            customer_name=request.customer.name,
            customer_email=request.customer.email,
            customer_phone=request.customer.phone,
            line_items=[
                CheckoutLineItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
                for item in request.line_items
            ],
            success_url=request.redirect_url,
            cancel_url=request.cancel_url,
        )

        logger.info(
            f"Creating payment link with {provider.name} for invoice {request.invoice.number} "
            f"({request.amount:.2f} {request.currency})"
        )
        try:
            checkout = await provider.create_checkout(checkout_request)
        except UpstreamError as e:
            raise _upstream("create payment link", e) from e

        try:
            record = await self.repository.create(
                amount=request.amount,
                currency=request.currency,
                invoice=request.invoice_record,
                customer=request.customer_record,
                line_items=[item.to_record() for item in request.line_items],
                provider=provider.name,
                provider_link_ref=checkout.link_ref,
                provider_invoice_ref=checkout.invoice_ref,
                checkout_url=checkout.checkout_url,
            )
            await self.repository.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise _upstream("create payment link", e) from e

        message_data = {
            "customer_name": request.customer.name,
            "invoice_number": request.invoice.number,
            "amount": record.formatted_amount,
            "currency": request.currency,
            "checkout_url": record.checkout_url,
            "description": request.invoice_record["description"],
            "line_items": record.line_items,
        }

        phone = request.customer.phone
        if not phone:
            sms = ChannelOutcome(sent=False, status=NotificationState.NOT_SENT.value, reason="No phone number provided")
        elif not request.send_sms:
            sms = ChannelOutcome(sent=False, status=NotificationState.NOT_SENT.value, reason="SMS disabled")
        else:
            sms = await self._send("SMS", self._sms, phone, "payment_link", message_data, "SMS sending failed")

        email = request.customer.email
        if not email:
            email_outcome = ChannelOutcome(sent=False, status=NotificationState.NOT_SENT.value, reason="No email provided")
        elif not request.send_email:
            email_outcome = ChannelOutcome(sent=False, status=NotificationState.NOT_SENT.value, reason="Email disabled")
        else:
            email_outcome = await self._send(
                "email", self._email, email, "payment_link", message_data, "Email sending failed"
            )

        try:
            record = await self.repository.update_notification_status(
                record.id,
                sms_status=sms.status,
                sms_message_id=sms.message_id,
                email_status=email_outcome.status,
                email_message_id=email_outcome.message_id,
            )
            await self.repository.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update notification status for {record.id}: {e}")
            await self.repository.rollback(record)

        logger.info(
            f"Payment link {record.id} created for invoice {request.invoice.number} "
            f"(sms={sms.status}, email={email_outcome.status}, phone={mask_phone(phone)})"
        )
        return CreateOutcome(record=record, sms=sms, email=email_outcome)

    async def _poll(self, record: PaymentLink) -> Tuple[PaymentLink, Optional[ProviderStatus], bool]:
        """Fetch the provider's status for a record and reconcile on change.

        Nothing is written when the provider status equals the stored status,
        or when it maps to the stored status.

        Returns:
            (record, provider snapshot or None, whether the record changed).
        """
        ref = record.provider_ref()
        if not ref:
            return record, None, False

        try:
            snapshot = await self.provider(record.provider).get_status(ref)
        except UpstreamError as e:
            logger.error(f"Failed to fetch status for payment link {record.id} from {record.provider}: {e.message}")
            return record, None, False

        # The provider agrees with the record; "created" would otherwise map to pending
        if (snapshot.status or "").lower() == record.status:
            return record, snapshot, False

        mapped = map_status(ProviderEvent(
            reference=ref,
            reference_type="link" if record.provider_link_ref else "invoice",
            event_type=snapshot.status,
            provider_status=snapshot.status,
            transaction_id=snapshot.transaction_id,
        ))
        if mapped.status == record.status:
            return record, snapshot, False

        logger.info(
            f"Status mismatch for payment link {record.id}: "
            f"stored {record.status}, provider {snapshot.status} ({mapped.status})"
        )
        result = await self.engine.reconcile(
            record,
            mapped,
            source=EventSource.POLL.value,
            extra_fields={"last_sync_at": datetime.utcnow()},
        )
        return result.record, snapshot, True

    async def get_payment_status(self, link_id: str) -> StatusOutcome:
        """Return a record, refreshed from the provider when possible.

        A provider failure is logged and the stored status is returned with
        no provider snapshot.

        Raises:
            NotFoundError: If no record has the id.
            ConfigurationError: If the record's provider is not configured.
            UpstreamError: If the store fails.
        """
        try:
            record = await self.repository.get(link_id)
            if record is None:
                logger.warning(f"Payment link not found: {link_id}")
                raise NotFoundError("Payment link not found", details={"id": link_id})

            record, snapshot, _ = await self._poll(record)
        except SQLAlchemyError as e:
            raise _upstream("get payment status", e) from e

        return StatusOutcome(record=record, provider_status=snapshot)

    async def handle_webhook(
        self,
        headers: Dict[str, str],
        body: bytes,
        provider_name: Optional[str] = None,
    ) -> WebhookOutcome:
        """Reconcile a provider webhook and notify the customer when warranted.

        Raises:
            ValidationError: If the payload is not JSON or has no reference.
            NotFoundError: If no created or pending record matches the reference.
            ConfigurationError: If the provider is not configured.
            UpstreamError: If the store fails.
        """
        provider = self.provider(provider_name)
        event = provider.parse_webhook(headers, body)
        logger.info(
            f"Processing {provider.name} webhook {event.event_type!r} "
            f"for {event.reference_type} {event.reference}"
        )

        try:
            record = await self.locator.locate(event.reference, event.reference_type)
            mapped = map_status(event)
            result = await self.engine.reconcile(record, mapped, source=EventSource.WEBHOOK.value)
        except SQLAlchemyError as e:
            raise _upstream("process webhook", e) from e

        record = result.record
        sms = await self._notify(record, result.notification, event)
        return WebhookOutcome(record=record, event=event, mapped=mapped, result=result, sms=sms)

    async def _notify(
        self,
        record: PaymentLink,
        decision: NotificationDecision,
        event: ProviderEvent,
    ) -> ChannelOutcome:
        template = SMS_TEMPLATE_BY_DECISION.get(decision)
        if template is None:
            logger.info(f"No SMS notification needed for status {record.status}")
            return ChannelOutcome(
                sent=False, status=NotificationState.NOT_SENT.value,
                reason="No notification required for status",
            )

        phone = record.customer.get("phone")
        if not phone:
            return ChannelOutcome(sent=False, status=NotificationState.NOT_SENT.value, reason="No phone number on file")

        data = {
            "customer_name": record.customer.get("name"),
            "invoice_number": record.invoice.get("number"),
            "amount": record.formatted_amount,
            "transaction_id": event.transaction_id or record.transaction_id,
            "reason": record.failure_reason,
        }
        return await self._send("SMS", self._sms, phone, template, data, "SMS sending failed")

    async def sync_active_links(self, limit: int = 100) -> SyncSummary:
        """Poll the provider for every created or pending record.

        Args:
            limit: Maximum records fetched per status.

        Returns:
            SyncSummary with counts of checked, changed, failed and skipped records.
        """
        summary = SyncSummary()
        records: List[PaymentLink] = []
        for status in (PaymentLinkStatus.CREATED.value, PaymentLinkStatus.PENDING.value):
            records.extend(await self.repository.query_by_status(status, limit))

        for record in records:
            if not record.provider_ref():
                summary.skipped += 1
                continue
            summary.checked += 1
            try:
                record, snapshot, changed = await self._poll(record)
            except ConfigurationError as e:
                logger.error(f"Cannot poll payment link {record.id}: {e.message}")
                summary.failed += 1
                continue
            if snapshot is None:
                summary.failed += 1
            elif changed:
                summary.changed += 1
                summary.changed_ids.append(record.id)

        logger.info(
            f"Status sync complete: {summary.checked} checked, {summary.changed} changed, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        return summary
