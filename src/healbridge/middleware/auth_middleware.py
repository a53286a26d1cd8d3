"""
Authentication Middleware — FastAPI dependency for bearer-token validation.
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import structlog

from healbridge.errors import UnauthorizedError
from healbridge.models import User
from healbridge.services.auth_service import AuthService, get_auth_service
from healbridge.services.token_service import TokenService, get_token_service

log = structlog.get_logger()

security = HTTPBearer(auto_error=False)


# ---- Core Authentication Dependency ----

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    token_service: TokenService = Depends(get_token_service),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Get current authenticated user from the access token.

    Usage in route:
        @router.get("/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}

    Raises:
        UnauthorizedError if the token is missing, invalid, expired, or its user is gone
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing bearer token")

    payload = token_service.verify_access(credentials.credentials)

    user = await auth_service.get_user_by_id(payload["sub"])
    if user is None:
        log.info("auth_token_user_missing", user_id=payload["sub"])
        raise UnauthorizedError("User not found")

    return user
