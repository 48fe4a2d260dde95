"""Resolution of provider references to payment link records."""

import logging

from ..errors import NotFoundError
from ..database.models import PaymentLink, PaymentLinkStatus
from ..database.repository import PaymentLinkRepository, DEFAULT_QUERY_LIMIT

logger = logging.getLogger(__name__)

# Only records still awaiting payment are searched. A late event for a record
# that already reached a terminal status is reported as not found.
SEARCHED_STATUSES = (PaymentLinkStatus.CREATED.value, PaymentLinkStatus.PENDING.value)

REFERENCE_ATTRIBUTES = {
    "link": "provider_link_ref",
    "invoice": "provider_invoice_ref",
}


class RecordLocator:
    """Finds the payment link a provider event refers to."""

    def __init__(self, repository: PaymentLinkRepository, limit: int = DEFAULT_QUERY_LIMIT):
        self.repository = repository
        self.limit = limit

    async def locate(self, reference: str, reference_type: str = "link") -> PaymentLink:
        """Find the active record carrying the given provider reference.

        Only the attribute matching ``reference_type`` is compared, so an
        invoice id never matches a link reference and vice versa.

        Args:
            reference: Provider-assigned identifier from the event.
            reference_type: ``"link"`` or ``"invoice"``.

        Returns:
            The matching PaymentLink.

        Raises:
            NotFoundError: If no created or pending record carries the reference.
            ValueError: If the reference type is not recognized.
        """
        attribute = REFERENCE_ATTRIBUTES.get(reference_type)
        if attribute is None:
            raise ValueError(f"Unknown reference type: {reference_type}")

        for status in SEARCHED_STATUSES:
            candidates = await self.repository.query_by_status(status, self.limit)
            for link in candidates:
                if getattr(link, attribute) == reference:
                    logger.debug(f"Located payment link {link.id} for {reference_type} {reference}")
                    return link

        logger.warning(f"Payment link not found for {reference_type} reference {reference}")
        raise NotFoundError(
            "Payment link not found",
            details={"reference": reference, "referenceType": reference_type},
        )
