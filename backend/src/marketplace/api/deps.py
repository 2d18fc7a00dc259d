"""Request dependencies for the referral API.

Sessions are resolved by the upstream gateway, which forwards the viewer as
``X-User-Id``. Service-to-service routes (onboarding, payment verification)
authenticate with a shared ``X-Internal-Token``.
"""

import secrets

from fastapi import Header, HTTPException, status

from marketplace.logging_config import get_logger
from marketplace.settings import settings

logger = get_logger(__name__)


async def require_viewer(x_user_id: int | None = Header(default=None, alias="X-User-Id")) -> int:
    """Id of the user making the request."""
    if x_user_id is None or x_user_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id


async def require_internal(x_internal_token: str | None = Header(default=None, alias="X-Internal-Token")) -> None:
    """Reject calls that do not carry the internal service token."""
    if not x_internal_token or not secrets.compare_digest(x_internal_token, settings.internal_api_token):
        logger.warning("internal_token_rejected")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Internal token required",
        )
