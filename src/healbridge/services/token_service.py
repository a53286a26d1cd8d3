"""
Token Service — JWT minting and verification plus server-side refresh-token storage.
Refresh tokens are single use: rotation deletes the stored row before a new pair is issued.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from jose import JWTError, jwt
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from healbridge.config import get_config, AuthConfig
from healbridge.errors import UnauthorizedError
from healbridge.models import RefreshToken, UserRole
from healbridge.services.database import get_session

log = structlog.get_logger()

MIN_SECRET_LENGTH = 32

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
TOKEN_TYPE_TWO_FACTOR = "2fa"


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
        }


class TokenService:
    """Issues, verifies, rotates, and revokes session credentials."""

    def __init__(self, auth_cfg: Optional[AuthConfig] = None):
        self.cfg = auth_cfg or get_config().auth
        self.algorithm = self.cfg.jwt_algorithm
        self.secret_key = self._resolve_secret_key()
        self.refresh_secret_key = self._resolve_refresh_secret_key()

    def _resolve_secret_key(self) -> str:
        key = self.cfg.jwt_secret_key
        if not key or len(str(key)) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"JWT_SECRET_KEY must be set and at least {MIN_SECRET_LENGTH} characters"
            )
        return str(key)

    def _resolve_refresh_secret_key(self) -> str:
        key = self.cfg.jwt_refresh_secret_key
        if key and len(str(key)) >= MIN_SECRET_LENGTH:
            return str(key)
        # Fall back to primary secret with suffix for separation
        return self.secret_key + "_refresh"

    @property
    def access_lifetime(self) -> timedelta:
        return timedelta(seconds=self.cfg.access_token_expire_seconds)

    @property
    def refresh_lifetime(self) -> timedelta:
        return timedelta(days=self.cfg.refresh_token_expire_days)

    def _encode(self, claims: Dict[str, Any], token_type: str, lifetime: timedelta, secret: str) -> str:
        now = datetime.now(timezone.utc)
        to_encode = {
            **claims,
            "type": token_type,
            "iat": now,
            "exp": now + lifetime,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, secret, algorithm=self.algorithm)

    def _decode(self, token: str, token_type: str, secret: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, secret, algorithms=[self.algorithm])
        except JWTError as e:
            log.info("jwt_verification_failed", token_type=token_type, error=str(e))
            raise UnauthorizedError("Invalid or expired token")

        if payload.get("type") != token_type:
            log.warning("token_type_mismatch", expected=token_type, actual=payload.get("type"))
            raise UnauthorizedError("Invalid or expired token")
        if not payload.get("sub"):
            raise UnauthorizedError("Invalid token payload")
        return payload

    @staticmethod
    def _session_claims(user_id: str, email: str, role) -> Dict[str, Any]:
        role_value = role.value if isinstance(role, UserRole) else str(role)
        return {"sub": str(user_id), "email": email, "role": role_value}

    def create_access_token(self, user_id: str, email: str, role) -> str:
        """Short-lived bearer token for API requests."""
        return self._encode(
            self._session_claims(user_id, email, role),
            TOKEN_TYPE_ACCESS, self.access_lifetime, self.secret_key,
        )

    def create_refresh_token(self, user_id: str, email: str, role) -> str:
        return self._encode(
            self._session_claims(user_id, email, role),
            TOKEN_TYPE_REFRESH, self.refresh_lifetime, self.refresh_secret_key,
        )

    def issue_two_factor(self, user_id: str) -> str:
        """Temporary token handed out while a login waits for its second factor."""
        return self._encode(
            {"sub": str(user_id)},
            TOKEN_TYPE_TWO_FACTOR,
            timedelta(minutes=self.cfg.two_factor_expire_minutes),
            self.secret_key,
        )

    def verify_access(self, token: str) -> Dict[str, Any]:
        return self._decode(token, TOKEN_TYPE_ACCESS, self.secret_key)

    def verify_two_factor(self, token: str) -> Dict[str, Any]:
        return self._decode(token, TOKEN_TYPE_TWO_FACTOR, self.secret_key)

    async def issue(
        self,
        user_id: str,
        email: str,
        role,
        session: Optional[AsyncSession] = None,
    ) -> TokenPair:
        """
        Mint an access/refresh pair and persist the refresh token.

        Args:
            user_id: Owner of the new session
            email: Email claim
            role: Role claim
            session: Join an open session instead of committing on our own

        Returns:
            TokenPair with expires_in set to the access-token lifetime in seconds
        """
        access_token = self.create_access_token(user_id, email, role)
        refresh_token = self.create_refresh_token(user_id, email, role)
        row = RefreshToken(
            token=refresh_token,
            user_id=str(user_id),
            expires_at=datetime.now(timezone.utc) + self.refresh_lifetime,
        )

        if session is not None:
            session.add(row)
            await session.flush()
        else:
            async with get_session() as own_session:
                own_session.add(row)

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_lifetime.total_seconds()),
        )

    async def rotate(self, old_refresh_token: str) -> TokenPair:
        """
        Exchange a stored refresh token for a brand-new pair.

        The old row is deleted before anything is issued. When two requests race
        on the same token only the one whose DELETE removes the row succeeds.

        Raises:
            UnauthorizedError: token unknown, already used, or expired
        """
        async with get_session() as session:
            result = await session.execute(
                select(RefreshToken).where(RefreshToken.token == old_refresh_token)
            )
            stored = result.scalar_one_or_none()

            if stored is None:
                log.info("refresh_rejected", reason="unknown_token")
                raise UnauthorizedError("Invalid or expired refresh token")
            if stored.is_expired():
                log.info("refresh_rejected", reason="expired", user_id=stored.user_id)
                raise UnauthorizedError("Invalid or expired refresh token")

            user = stored.user
            deleted = await session.execute(
                delete(RefreshToken).where(RefreshToken.id == stored.id)
            )
            if deleted.rowcount != 1:
                log.warning("refresh_rejected", reason="concurrent_rotation", user_id=stored.user_id)
                raise UnauthorizedError("Invalid or expired refresh token")

            pair = await self.issue(user.id, user.email, user.role, session=session)

        log.info("refresh_token_rotated", user_id=user.id)
        return pair

    async def revoke_all(self, user_id: str) -> int:
        """Delete every refresh token owned by the user. Returns how many were removed."""
        async with get_session() as session:
            result = await session.execute(
                delete(RefreshToken).where(RefreshToken.user_id == str(user_id))
            )
            count = result.rowcount or 0
        log.info("refresh_tokens_revoked", user_id=user_id, count=count)
        return count


# Singleton
_token_service: Optional[TokenService] = None


def get_token_service() -> TokenService:
    """Get singleton TokenService instance."""
    global _token_service
    if _token_service is None:
        _token_service = TokenService()
    return _token_service


def reset_token_service() -> None:
    global _token_service
    _token_service = None
