"""Authentication utilities."""
from typing import Optional
from fastapi import Depends, Header, HTTPException
import logging

from config import API_TOKENS, ADMIN_TOKENS
from monitoring import auth_failures_counter, auth_attempts_counter

logger = logging.getLogger(__name__)


def _extract_token(authorization: str) -> str:
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format", extra={
            "auth_header": authorization[:20] + "..." if len(authorization) > 20 else authorization
        })
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = parts[1]
    if token not in API_TOKENS:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": token[:8] + "..." if len(token) > 8 else token
        })
        raise HTTPException(status_code=401, detail="Invalid token")
    return token


def verify_token(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify authentication token.

    Args:
        authorization: Authorization header value

    Returns:
        Valid token

    Raises:
        HTTPException: If token is invalid or missing
    """
    auth_attempts_counter.add(1, {"type": "bearer_token"})

    if authorization is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise HTTPException(status_code=401, detail="Missing authorization header")

    token = _extract_token(authorization)
    logger.debug("Authentication successful", extra={
        "user_id": get_user_id_from_token(token)
    })
    return token


def optional_user_id(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """
    Resolve the caller's user id, allowing guest checkout.

    A missing header means a guest; a present but invalid header is still
    rejected.
    """
    if authorization is None:
        return None
    auth_attempts_counter.add(1, {"type": "bearer_token"})
    return get_user_id_from_token(_extract_token(authorization))


def require_admin(token: str = Depends(verify_token)) -> str:
    """Allow only admin tokens."""
    if token not in ADMIN_TOKENS:
        auth_failures_counter.add(1, {"reason": "not_admin"})
        logger.warning("Admin access denied", extra={
            "user_id": get_user_id_from_token(token)
        })
        raise HTTPException(status_code=403, detail="Admin access required")
    return token


def get_user_id_from_token(token: str) -> str:
    """
    Extract user ID from token.

    Args:
        token: Authentication token

    Returns:
        User ID
    """
    return API_TOKENS[token]


def is_admin(token: str) -> bool:
    return token in ADMIN_TOKENS
