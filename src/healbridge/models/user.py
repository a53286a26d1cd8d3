"""
User, profile, condition, refresh-token, and audit-log SQLAlchemy models.
Passwords are bcrypt hashed; refresh tokens are tracked server-side so they can be rotated and revoked.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

import bcrypt
from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Index, String, Text
)
from sqlalchemy.orm import relationship

from healbridge.models.base import Base, utcnow, as_utc

# bcrypt only consumes the first 72 bytes of a secret
BCRYPT_MAX_BYTES = 72


class UserRole(str, enum.Enum):
    PATIENT = "PATIENT"
    SURVIVOR = "SURVIVOR"
    CAREGIVER = "CAREGIVER"
    HEALTHCARE_PROFESSIONAL = "HEALTHCARE_PROFESSIONAL"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"


class ConditionCategory(str, enum.Enum):
    CANCER = "CANCER"
    TOURETTE = "TOURETTE"
    LYME = "LYME"
    OTHER = "OTHER"


# Conditions every deployment starts with; ids are stable so clients can hard-code them
DEFAULT_CONDITIONS = (
    {
        "id": "cond_breast_cancer",
        "name": "Breast Cancer",
        "category": ConditionCategory.CANCER,
        "description": "Comprehensive guide to breast cancer awareness and treatment.",
    },
    {
        "id": "cond_chronic_lyme",
        "name": "Chronic Lyme",
        "category": ConditionCategory.LYME,
        "description": "Understanding long-term effects and management of Lyme disease.",
    },
    {
        "id": "cond_tourette",
        "name": "Tourette Syndrome",
        "category": ConditionCategory.TOURETTE,
        "description": "Support and strategies for managing Tourette Syndrome.",
    },
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


class User(Base):
    """
    Account record. Email is unique and matched exactly as stored.
    Owns a profile, refresh tokens, and AI conversations (deleted with the user).
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.PATIENT)
    is_2fa_enabled = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    profile = relationship(
        "UserProfile", back_populates="user", uselist=False,
        cascade="all, delete-orphan", lazy="selectin",
    )
    refresh_tokens = relationship(
        "RefreshToken", back_populates="user", cascade="all, delete-orphan",
    )
    conversations = relationship(
        "AIConversation", back_populates="user", cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"

    @staticmethod
    def hash_password(password: str, cost_factor: int = 12) -> str:
        """
        Hash password using bcrypt with configurable cost factor.
        Cost factor 12 takes a few hundred milliseconds on modern hardware.

        Args:
            password: Plaintext password to hash
            cost_factor: Bcrypt cost factor (4-31, default 12)

        Returns:
            Bcrypt hash string (60 chars)
        """
        if not password:
            raise ValueError("Password must not be empty")
        salt = bcrypt.gensalt(rounds=cost_factor)
        return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")

    @staticmethod
    def check_password(password: str, password_hash: str) -> bool:
        """Constant-time bcrypt comparison; malformed hashes never match."""
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
        except (ValueError, AttributeError):
            return False

    def verify_password(self, password: str) -> bool:
        return self.check_password(password, self.password_hash)

    def record_login(self) -> None:
        self.last_login_at = utcnow()

    def to_public(self) -> dict:
        """Shape returned to API callers. Never includes the password hash."""
        profile = None
        if self.profile is not None:
            profile = {
                "displayName": self.profile.display_name,
                "avatarUrl": self.profile.avatar_url,
                "isSurvivor": self.profile.is_survivor,
            }
        role = self.role.value if isinstance(self.role, UserRole) else self.role
        return {"id": self.id, "email": self.email, "role": role, "profile": profile}


class Condition(Base):
    __tablename__ = "conditions"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(200), unique=True, nullable=False)
    category = Column(Enum(ConditionCategory, name="condition_category"), nullable=False)
    description = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Condition(id={self.id}, name='{self.name}')>"


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    display_name = Column(String(50), nullable=False)
    primary_condition_id = Column(String(36), ForeignKey("conditions.id", ondelete="SET NULL"), nullable=True)
    condition_stage = Column(String(100), nullable=True)
    avatar_url = Column(String(2000), nullable=True)
    is_survivor = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="profile")
    condition = relationship("Condition", lazy="selectin")

    def clinical_context(self) -> str:
        """One-line summary of the user's condition handed to the copilot."""
        name = self.condition.name if self.condition is not None else None
        return (
            f"User condition: {name or 'Not specified'}. "
            f"Stage: {self.condition_stage or 'Not specified'}."
        )


class RefreshToken(Base):
    """
    Server-side record of an issued refresh token.
    A row past its expiry is never honoured, even before it is deleted.
    """
    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=_new_id)
    token = Column(String(1024), unique=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User", back_populates="refresh_tokens", lazy="selectin")

    __table_args__ = (
        Index("idx_refresh_user", "user_id"),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return as_utc(self.expires_at) <= now


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(100), nullable=True)
    entity_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_audit_user", "user_id"),
        Index("idx_audit_action", "action"),
    )
