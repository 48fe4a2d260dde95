"""Payment providers and the provider factory."""

import os
import logging
from typing import Optional

from ..errors import ConfigurationError
from .base import (
    ProviderBase,
    CheckoutLineItem,
    CheckoutRequest,
    CheckoutResponse,
    ProviderStatus,
    ProviderEvent,
    build_event,
    load_webhook_json,
    webhook_metadata,
)
from .mx_merchant import MXMerchantProvider, Link2PayDeviceCache, LINK2PAY_DEVICE_CACHE
from .stripe_provider import StripeProvider
from .simulator import SimulatorProvider, SimulatedLink

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "mxmerchant"

PROVIDERS = {
    "mxmerchant": MXMerchantProvider,
    "stripe": StripeProvider,
    "simulator": SimulatorProvider,
}

# Simulator state must survive across requests to be useful
_simulator_instance: Optional[SimulatorProvider] = None


def default_provider_name() -> str:
    return (os.getenv("PAYMENT_PROVIDER") or DEFAULT_PROVIDER).lower()


def get_provider(name: Optional[str] = None) -> ProviderBase:
    """
    Factory function to get the provider for a given name.

    Args:
        name: Provider name. Falls back to PAYMENT_PROVIDER, then "mxmerchant".

    Returns:
        Provider instance.

    Raises:
        ConfigurationError: If the provider is unknown or not configured.
    """
    global _simulator_instance

    name = (name or default_provider_name()).lower()
    provider_class = PROVIDERS.get(name)
    if provider_class is None:
        raise ConfigurationError(
            f"Unknown payment provider: {name}",
            details={"supported": sorted(PROVIDERS)},
        )

    if provider_class is SimulatorProvider:
        if _simulator_instance is None:
            _simulator_instance = SimulatorProvider()
        return _simulator_instance

    return provider_class()


def reset_simulator() -> None:
    """Drop the shared simulator instance (for test cleanup)."""
    global _simulator_instance
    _simulator_instance = None


__all__ = [
    "ProviderBase",
    "CheckoutLineItem",
    "CheckoutRequest",
    "CheckoutResponse",
    "ProviderStatus",
    "ProviderEvent",
    "build_event",
    "load_webhook_json",
    "webhook_metadata",
    "MXMerchantProvider",
    "Link2PayDeviceCache",
    "LINK2PAY_DEVICE_CACHE",
    "StripeProvider",
    "SimulatorProvider",
    "SimulatedLink",
    "DEFAULT_PROVIDER",
    "PROVIDERS",
    "default_provider_name",
    "get_provider",
    "reset_simulator",
]
