"""
Authentication Service — registration, login, token refresh, logout.
Failures surface only as Conflict (duplicate email) or Unauthorized; callers never learn
whether an email exists.
"""
from typing import Any, Dict, Optional
import structlog

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from healbridge.config import get_config, AuthConfig
from healbridge.errors import ConflictError, TwoFactorNotImplementedError, UnauthorizedError
from healbridge.models import Condition, User, UserProfile, UserRole
from healbridge.services.audit_service import record_audit
from healbridge.services.database import get_session
from healbridge.services.token_service import TokenPair, TokenService, get_token_service

log = structlog.get_logger()

INVALID_CREDENTIALS = "Invalid credentials"


class AuthService:
    """Orchestrates the session lifecycle on top of the TokenService."""

    def __init__(
        self,
        token_service: Optional[TokenService] = None,
        auth_cfg: Optional[AuthConfig] = None,
    ):
        self.cfg = auth_cfg or get_config().auth
        self.tokens = token_service or get_token_service()
        self.bcrypt_rounds = self.cfg.bcrypt_rounds
        self._dummy_hash: Optional[str] = None

    def _timing_equalizer(self, password: str) -> None:
        """Spend a bcrypt check on unknown emails so they cost as much as a wrong password."""
        if self._dummy_hash is None:
            self._dummy_hash = User.hash_password("healbridge-dummy-password", self.bcrypt_rounds)
        User.check_password(password, self._dummy_hash)

    @staticmethod
    def _session_response(user: User, pair: TokenPair) -> Dict[str, Any]:
        return {"user": user.to_public(), **pair.to_dict()}

    async def register(
        self,
        email: str,
        password: str,
        display_name: str,
        primary_condition_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a user with its profile and open a first session.

        User and profile rows commit together; if either insert fails neither
        is kept.

        Raises:
            ConflictError: email already registered
        """
        password_hash = User.hash_password(password, cost_factor=self.bcrypt_rounds)

        try:
            async with get_session() as session:
                existing = await session.execute(select(User.id).where(User.email == email))
                if existing.scalar_one_or_none() is not None:
                    log.info("register_rejected", reason="email_exists")
                    raise ConflictError("Email already registered")

                condition_id = None
                if primary_condition_id:
                    found = await session.execute(
                        select(Condition.id).where(Condition.id == primary_condition_id)
                    )
                    condition_id = found.scalar_one_or_none()

                user = User(email=email, password_hash=password_hash, role=UserRole.PATIENT)
                user.profile = UserProfile(
                    display_name=display_name,
                    primary_condition_id=condition_id,
                )
                session.add(user)
                await session.flush()

                pair = await self.tokens.issue(user.id, user.email, user.role, session=session)
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email
            log.info("register_rejected", reason="email_exists_race")
            raise ConflictError("Email already registered")

        log.info("user_registered", user_id=user.id)
        await record_audit(user.id, "register")
        return self._session_response(user, pair)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Check credentials and open a session, or park the login in the
        two-factor pending state.

        Raises:
            UnauthorizedError: unknown email or wrong password (same message)
        """
        async with get_session() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

            if user is None:
                self._timing_equalizer(password)
                log.info("auth_failed", reason="user_not_found")
                raise UnauthorizedError(INVALID_CREDENTIALS)

            if not user.verify_password(password):
                log.info("auth_failed", reason="invalid_password", user_id=user.id)
                raise UnauthorizedError(INVALID_CREDENTIALS)

            if user.is_2fa_enabled:
                log.info("auth_pending_2fa", user_id=user.id)
                return {
                    "requires2FA": True,
                    "tempToken": self.tokens.issue_two_factor(user.id),
                }

            pair = await self.tokens.issue(user.id, user.email, user.role, session=session)
            user.record_login()

        log.info("auth_success", user_id=user.id)
        await record_audit(user.id, "login")
        return self._session_response(user, pair)

    async def refresh(self, refresh_token: str) -> TokenPair:
        return await self.tokens.rotate(refresh_token)

    async def logout(self, user_id: str) -> None:
        await self.tokens.revoke_all(user_id)
        log.info("user_logged_out", user_id=user_id)
        await record_audit(user_id, "logout")

    async def verify_two_factor(self, temp_token: str, code: str) -> Dict[str, Any]:
        """
        Second step of a two-factor login.

        The temporary token is validated so a bad or expired one still gets a
        401, but no verifier is wired up yet, so a valid token always ends in
        TwoFactorNotImplementedError and no session is issued.
        """
        claims = self.tokens.verify_two_factor(temp_token)
        log.info("two_factor_verify_unavailable", user_id=claims.get("sub"))
        raise TwoFactorNotImplementedError()

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        async with get_session() as session:
            result = await session.execute(select(User).where(User.id == str(user_id)))
            return result.scalar_one_or_none()


# Singleton
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Get singleton AuthService instance."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def reset_auth_service() -> None:
    global _auth_service
    _auth_service = None
