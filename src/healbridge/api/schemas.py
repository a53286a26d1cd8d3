"""Request/response models. camelCase on the wire, snake_case in Python."""
from typing import Any, Dict, List, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Auth ----

class RegisterRequest(CamelModel):
    """User registration request."""
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    display_name: str = Field(..., min_length=2, max_length=50)
    primary_condition_id: Optional[str] = None

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        # Check the format only; the address is stored exactly as submitted
        try:
            validate_email(v, check_deliverability=False)
        except EmailNotValidError as e:
            raise ValueError(str(e))
        return v


class LoginRequest(CamelModel):
    """Any string is accepted so a malformed email fails like an unknown one."""
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class VerifyTwoFactorRequest(CamelModel):
    temp_token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=6)


class UserProfileOut(CamelModel):
    display_name: str
    avatar_url: Optional[str] = None
    is_survivor: bool = False


class UserOut(CamelModel):
    id: str
    email: str
    role: str
    profile: Optional[UserProfileOut] = None


class TokenResponse(CamelModel):
    """JWT token pair; expires_in is the access-token lifetime in seconds."""
    access_token: str
    refresh_token: str
    expires_in: int


class SessionResponse(TokenResponse):
    user: UserOut


class TwoFactorChallengeResponse(CamelModel):
    requires_2fa: bool = Field(True, alias="requires2FA")
    temp_token: str


# ---- Copilot ----

class ChatRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=4000)
    conversation_id: Optional[str] = None


class ChatMessageOut(CamelModel):
    role: str
    content: str
    timestamp: str
    sources: List[Dict[str, Any]] = Field(default_factory=list)


class ChatResponse(CamelModel):
    conversation_id: str
    message: ChatMessageOut
    disclaimer: str


class ConversationSummary(CamelModel):
    id: str
    title: Optional[str] = None
    created_at: str
    updated_at: str


class ConversationDetail(ConversationSummary):
    user_id: str
    messages: List[Dict[str, Any]]


class MessageResponse(BaseModel):
    """Generic message response."""
    message: str
