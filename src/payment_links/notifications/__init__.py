"""Notification senders and their factories."""

from .base import NotificationSenderBase, NotificationResult, mask_phone
from .sms import TwilioSMSSender
from .email import SESEmailSender


def get_sms_sender() -> NotificationSenderBase:
    """Build the SMS sender from environment configuration.

    Raises:
        ConfigurationError: If Twilio credentials are missing.
    """
    return TwilioSMSSender()


def get_email_sender() -> NotificationSenderBase:
    """Build the email sender from environment configuration.

    Raises:
        ConfigurationError: If the SES sender address is missing.
    """
    return SESEmailSender()


__all__ = [
    "NotificationSenderBase",
    "NotificationResult",
    "mask_phone",
    "TwilioSMSSender",
    "SESEmailSender",
    "get_sms_sender",
    "get_email_sender",
]
