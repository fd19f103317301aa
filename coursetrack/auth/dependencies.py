"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Current user extraction from JWT
- Role-based access control
- API Key authentication for integrations
"""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from pydantic import ValidationError

from coursetrack.auth.permissions import UserRole, has_permission
from coursetrack.auth.schemas import AuthenticatedUser
from coursetrack.auth.security import decode_access_token
from coursetrack.config.settings import Settings, get_settings
from coursetrack.core.context import set_user_id


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


async def get_current_user(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> AuthenticatedUser:
    """Get current authenticated user from JWT token.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token)
        user = AuthenticatedUser(
            id=payload["sub"],
            email=payload.get("email"),
            role=payload.get("role", UserRole.USER),
        )
    except (JWTError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    # Set user_id in context for logging
    set_user_id(str(user.id))

    return user


def require_role(*allowed_roles: UserRole):
    """Create dependency requiring at least one of the given roles (or higher)."""

    async def role_checker(
        user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    ) -> AuthenticatedUser:
        if not any(has_permission(user.role, role) for role in allowed_roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

        return user

    return role_checker


# ==============================================================================
# Type Aliases for Cleaner Code
# ==============================================================================

CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]

AdminUser = Annotated[AuthenticatedUser, Depends(require_role(UserRole.ADMIN))]


# ==============================================================================
# API Key Authentication (for integration endpoints)
# ==============================================================================


async def verify_master_api_key(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """Verify X-API-Key header against master API key.

    Raises:
        HTTPException(401): If API key is missing
        HTTPException(403): If API key is invalid
        HTTPException(503): If API key is not configured
    """
    api_key = request.headers.get("X-API-Key")

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API Key required",
        )

    if not settings.master_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API Key authentication not configured",
        )

    if not secrets.compare_digest(api_key, settings.master_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API Key",
        )

    return api_key


MasterApiKey = Annotated[str, Depends(verify_master_api_key)]
