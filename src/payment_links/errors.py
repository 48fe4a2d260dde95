"""Exception hierarchy shared by the payment link flows."""

from typing import Any, Optional


class PaymentLinkError(Exception):
    """Base class for all payment link errors.

    Attributes:
        message: Caller-facing message.
        details: Optional operator-facing detail (never sent for upstream errors).
    """

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PaymentLinkError):
    """Malformed or missing input. Raised before any external call."""

    status_code = 400


class NotFoundError(PaymentLinkError):
    """Record absent, or an inbound event could not be correlated to a record."""

    status_code = 404


class ConfigurationError(PaymentLinkError):
    """A collaborator is missing required credentials or settings."""

    status_code = 500


class UpstreamError(PaymentLinkError):
    """The store or a remote service failed."""

    status_code = 500


class ProviderError(UpstreamError):
    """The payment provider rejected or failed a call."""

    status_code = 502


class NotificationError(PaymentLinkError):
    """An SMS or email send failed. Always absorbed by the caller."""
