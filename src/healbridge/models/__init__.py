"""Database models for accounts, sessions, and copilot conversations."""
from healbridge.models.base import Base
from healbridge.models.user import (
    User, UserProfile, Condition, RefreshToken, AuditLog,
    UserRole, ConditionCategory, DEFAULT_CONDITIONS,
)
from healbridge.models.conversation import AIConversation
