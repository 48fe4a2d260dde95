"""API key authentication and rate limiting for the payment link API."""

import os
import secrets
import logging
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is reported as 401 in the API envelope
security = HTTPBearer(auto_error=False)

# Applied to link creation, which fans out to the provider and both notification channels
CREATE_RATE_LIMIT = os.getenv("CREATE_RATE_LIMIT", "30/minute")

limiter = Limiter(key_func=get_remote_address)


async def verify_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> str:
    """Verify the bearer API key on the Authorization header.

    Args:
        credentials: HTTP Bearer credentials from the request.

    Returns:
        The verified API key.

    Raises:
        ConfigurationError: If API_KEY is not set.
        HTTPException: 401 if the key is missing or wrong.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise ConfigurationError("API key not configured")
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing API key")
    if not secrets.compare_digest(credentials.credentials, expected_key):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
