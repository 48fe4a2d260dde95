"""Database module for payment link persistence."""

from .models import (
    Base,
    PaymentLink,
    PaymentLinkStatus,
    NotificationState,
    EventSource,
    STATUS_INFO,
    format_amount,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    get_db_context,
)
from .repository import PaymentLinkRepository

__all__ = [
    # Models
    "Base",
    "PaymentLink",
    "PaymentLinkStatus",
    "NotificationState",
    "EventSource",
    "STATUS_INFO",
    "format_amount",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "PaymentLinkRepository",
]
