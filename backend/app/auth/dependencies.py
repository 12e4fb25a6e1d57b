"""Bearer-token dependency shared by the protected REST routes."""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.errors import AuthError
from app.services import Services, get_services

from .schemas import UserRecord

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    services: Services = Depends(get_services),
) -> UserRecord:
    """Resolve the ``Authorization: Bearer <token>`` header to an active user.

    Raises:
        AuthError: If the header is missing, or the token is invalid, expired,
            or belongs to an unknown or deactivated account.
    """
    if credentials is None or not credentials.credentials:
        raise AuthError("Access denied. No token provided")
    return services.auth.resolve_token(credentials.credentials)
