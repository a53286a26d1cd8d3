"""
Authentication API Routes — Register, Login, Token Refresh, Logout.
"""
from typing import Union

from fastapi import APIRouter, Depends, Response, status
import structlog

from healbridge.api.schemas import (
    LoginRequest, RefreshRequest, RegisterRequest, SessionResponse,
    TokenResponse, TwoFactorChallengeResponse, UserOut, VerifyTwoFactorRequest,
)
from healbridge.middleware.auth_middleware import get_current_user
from healbridge.models import User
from healbridge.services.auth_service import AuthService, get_auth_service

log = structlog.get_logger()

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def register(
    req: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Register a new account and open its first session.

    Returns 409 when the email is already registered.
    """
    return await auth_service.register(
        email=req.email,
        password=req.password,
        display_name=req.display_name,
        primary_condition_id=req.primary_condition_id,
    )


@router.post("/login", response_model=Union[SessionResponse, TwoFactorChallengeResponse])
async def login(
    req: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Login with email and password.

    Returns the user with a token pair, or `{requires2FA, tempToken}` when the
    account has two-factor enabled. Unknown email and wrong password give the
    same 401.
    """
    return await auth_service.login(req.email, req.password)


@router.post("/refresh-token", response_model=TokenResponse)
async def refresh_token(
    req: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Exchange a refresh token for a new pair. The submitted token is consumed
    and cannot be used again.
    """
    pair = await auth_service.refresh(req.refresh_token)
    return pair.to_dict()


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke every refresh token of the current user."""
    await auth_service.logout(user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user.to_public()


@router.post("/2fa/verify", responses={501: {"description": "Two-factor verification not available"}})
async def verify_two_factor(
    req: VerifyTwoFactorRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Complete a two-factor login. Currently always 501 for a valid temp token."""
    return await auth_service.verify_two_factor(req.temp_token, req.code)
