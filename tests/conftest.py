"""Shared test fixtures and configuration."""

import os
import pytest
from unittest.mock import MagicMock, AsyncMock
from typing import Dict, Any

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_PROVIDER", "simulator")
os.environ.setdefault("CREATE_RATE_LIMIT", "1000/minute")

from payment_links.notifications import NotificationResult, NotificationSenderBase
from payment_links.providers import SimulatorProvider


@pytest.fixture
def mock_api_key():
    """Return the API key configured for tests."""
    return os.environ["API_KEY"]


@pytest.fixture
def auth_headers(mock_api_key):
    """Return headers with authentication."""
    return {
        "Authorization": f"Bearer {mock_api_key}",
        "X-Provider": "simulator",
    }


@pytest.fixture
def valid_link_request() -> Dict[str, Any]:
    """Return a valid payment link creation body."""
    return {
        "amount": 487.50,
        "currency": "USD",
        "invoice": {"number": "RO-252656", "description": "Brake service"},
        "customer": {
            "name": "Sarah Johnson",
            "email": "sarah.johnson@email.com",
            "phone": "+15551234567",
        },
        "lineItems": [
            {"description": "Brake pads", "quantity": 1, "unitPrice": 287.50, "totalPrice": 287.50},
            {"description": "Labor", "quantity": 2, "unitPrice": 100.00, "totalPrice": 200.00},
        ],
    }


@pytest.fixture
def simulator():
    """Create a fresh simulator provider."""
    return SimulatorProvider()


def _mock_sender(channel: str, message_id: str) -> MagicMock:
    sender = MagicMock(spec=NotificationSenderBase)
    sender.channel = channel
    sender.send = AsyncMock(return_value=NotificationResult(message_id=message_id, status="sent"))
    sender.close = AsyncMock()
    return sender


@pytest.fixture
def sms_sender():
    """Create a mock SMS sender that always succeeds."""
    return _mock_sender("sms", "SM1234567890")


@pytest.fixture
def email_sender():
    """Create a mock email sender that always succeeds."""
    return _mock_sender("email", "ses-0001")


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from payment_links.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    from payment_links.database import get_async_session_factory

    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository(db_session):
    """Create a payment link repository on the test session."""
    from payment_links.database import PaymentLinkRepository

    return PaymentLinkRepository(db_session)


@pytest.fixture
def service(db_session, simulator, sms_sender, email_sender):
    """Create a service wired to the simulator and mock senders."""
    from payment_links.services import PaymentLinkService

    return PaymentLinkService(
        db_session,
        provider_factory=lambda name: simulator,
        sms_sender=sms_sender,
        email_sender=email_sender,
    )


@pytest.fixture
def make_link(repository):
    """Factory storing a payment link directly through the repository."""

    async def _make(
        provider_link_ref: str = "link_abc",
        provider_invoice_ref: str = None,
        amount: float = 487.50,
        phone: str = "+15551234567",
        provider: str = "simulator",
    ):
        customer = {"name": "Sarah Johnson", "email": "sarah.johnson@email.com"}
        if phone:
            customer["phone"] = phone
        link = await repository.create(
            amount=amount,
            invoice={"number": "RO-252656", "description": "Payment for RO-252656"},
            customer=customer,
            provider=provider,
            provider_link_ref=provider_link_ref,
            provider_invoice_ref=provider_invoice_ref,
            checkout_url=f"https://pay.simulator.local/checkout/{provider_link_ref}",
        )
        await repository.commit()
        return link

    return _make
