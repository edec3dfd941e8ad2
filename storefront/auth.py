"""Authentication utilities.

Identity is owned by an external provider; this module only resolves a bearer
token into the principal the core operations receive explicitly.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging

from fastapi import Depends, Header

from storefront.config import API_TOKENS
from storefront.errors import Forbidden, Unauthorized
from storefront.monitoring import auth_failures_counter, auth_attempts_counter

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""
    user_id: str
    roles: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def verify_token(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify authentication token.

    Args:
        authorization: Authorization header value

    Returns:
        Valid token

    Raises:
        Unauthorized: If token is invalid or missing
    """
    # Record authentication attempt
    auth_attempts_counter.add(1, {"type": "bearer_token"})

    if authorization is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise Unauthorized("Missing authorization header")

    # Extract token (Bearer <token>)
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format", extra={
            "auth_header": authorization[:20] + "..." if len(authorization) > 20 else authorization
        })
        raise Unauthorized("Invalid authorization header format")

    token = parts[1]
    if token not in API_TOKENS:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": token[:8] + "..." if len(token) > 8 else token
        })
        raise Unauthorized("Invalid token")

    return token


def get_current_user(token: str = Depends(verify_token)) -> Principal:
    """Resolve the principal behind a verified token."""
    user_id, roles = API_TOKENS[token]
    logger.debug("Authentication successful", extra={"user_id": user_id})
    return Principal(user_id=user_id, roles=tuple(roles))


def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    """Dependency for admin-only endpoints."""
    if not principal.is_admin:
        auth_failures_counter.add(1, {"reason": "forbidden"})
        logger.warning("Authorization failed: admin role required", extra={
            "user_id": principal.user_id
        })
        raise Forbidden("This action is unauthorized")
    return principal
