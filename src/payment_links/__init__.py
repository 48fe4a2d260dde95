# payment_links package
__version__ = "0.1.0"

from .errors import (
    PaymentLinkError,
    ValidationError,
    NotFoundError,
    ConfigurationError,
    UpstreamError,
    ProviderError,
    NotificationError,
)
from .database import (
    PaymentLink,
    PaymentLinkStatus,
    PaymentLinkRepository,
    init_db,
    close_db,
    get_db,
)
from .services import PaymentLinkService

# Reconciliation exports
from .reconciliation import (
    map_status,
    RecordLocator,
    ReconciliationEngine,
    ReconciliationResult,
    NotificationDecision,
    MappedStatus,
)
