"""SQLAlchemy model for AI copilot conversations."""
import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.orm import relationship

from healbridge.models.base import Base, utcnow, isoformat

TITLE_MAX_LENGTH = 100


class AIConversation(Base):
    """
    Per-user chat history. `messages` is an append-only JSON list; the
    `version` column makes each append conditional on the log being unchanged.
    """
    __tablename__ = "ai_conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(TITLE_MAX_LENGTH), nullable=True)
    messages = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User", back_populates="conversations")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_aiconv_user_updated", "user_id", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<AIConversation(id={self.id}, user_id={self.user_id}, messages={len(self.messages or [])})>"

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "messages": list(self.messages or []),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
