"""
Copilot Service — multi-turn health companion chat backed by stored conversations.

Each turn: resolve the conversation, build the model context, ask the provider,
append the exchange, audit. Every reply carries DISCLAIMER, fallbacks included.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from healbridge.config import get_config, CopilotConfig
from healbridge.errors import ConversationBusyError, NotFoundError
from healbridge.models import AIConversation, UserProfile
from healbridge.models.base import utcnow
from healbridge.models.conversation import TITLE_MAX_LENGTH
from healbridge.pagination import Pagination
from healbridge.services.audit_service import record_audit
from healbridge.services.database import get_session
from healbridge.services.gemini_client import (
    AIProvider, ProviderNotConfiguredError, ProviderRateLimitError, get_ai_provider,
)

log = structlog.get_logger()


SYSTEM_PROMPT = """You are HealBridge AI, a supportive health companion. Your role is to:
1. Provide evidence-based health information from verified medical sources
2. Offer emotional support and coping strategies
3. Help users understand their conditions and treatment options
4. Suggest when to consult healthcare professionals

CRITICAL RULES:
- NEVER provide medical diagnoses
- NEVER prescribe medications or treatments
- NEVER replace professional medical advice
- ALWAYS include disclaimers when discussing health topics
- ALWAYS suggest consulting a healthcare provider for serious concerns
- If a user expresses suicidal thoughts or self-harm, immediately provide crisis hotline numbers:
  - National Suicide Prevention Lifeline: 988
  - Crisis Text Line: Text HOME to 741741

When citing information, always reference the source."""

DISCLAIMER = (
    "⚕️ This information is for educational purposes only and should not replace "
    "professional medical advice. Always consult your healthcare provider for "
    "personalized guidance."
)

NOT_CONFIGURED_REPLY = (
    f"I understand you're looking for health information. {DISCLAIMER}\n\n"
    "Please configure the GOOGLE_AI_API_KEY environment variable to enable AI responses."
)
RATE_LIMITED_REPLY = (
    "I apologize, but I've reached my message limit for the moment. "
    f"Please try again in a few minutes. {DISCLAIMER}"
)
UNAVAILABLE_REPLY = (
    "I apologize, but I'm having trouble connecting to my knowledge base right now. "
    f"Please try again later. {DISCLAIMER}"
)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class CopilotService:
    """Orchestrates the copilot chat pipeline."""

    def __init__(
        self,
        provider: Optional[AIProvider] = None,
        copilot_cfg: Optional[CopilotConfig] = None,
    ):
        self.cfg = copilot_cfg or get_config().copilot
        self.provider = provider or get_ai_provider()

    # ---- Context ----

    @staticmethod
    def build_context(
        user_context: str,
        history: List[Dict[str, Any]],
        message: str,
    ) -> List[Dict[str, str]]:
        """System instruction + user context, the prior log, then the new message."""
        return [
            {"role": "system", "content": f"{SYSTEM_PROMPT}\n\nUser Context: {user_context}"},
            *({"role": m["role"], "content": m["content"]} for m in history),
            {"role": "user", "content": message},
        ]

    async def _user_context(self, session: AsyncSession, user_id: str) -> str:
        result = await session.execute(
            select(UserProfile).where(UserProfile.user_id == user_id)
        )
        profile = result.scalar_one_or_none()
        return profile.clinical_context() if profile is not None else ""

    async def _generate_reply(self, context: List[Dict[str, str]], user_id: str) -> str:
        """Ask the provider; any failure becomes a disclaimer-bearing fallback."""
        try:
            return await self.provider.generate(context)
        except ProviderNotConfiguredError:
            log.warning("copilot_provider_not_configured", user_id=user_id)
            return NOT_CONFIGURED_REPLY
        except ProviderRateLimitError:
            log.warning("copilot_provider_rate_limited", user_id=user_id)
            return RATE_LIMITED_REPLY
        except Exception as e:
            log.error("copilot_provider_failed", user_id=user_id, error=str(e), error_type=type(e).__name__)
            if "429" in str(e) or "quota" in str(e).lower():
                return RATE_LIMITED_REPLY
            return UNAVAILABLE_REPLY

    # ---- Persistence ----

    @staticmethod
    async def _load_owned(
        session: AsyncSession, user_id: str, conversation_id: str
    ) -> Optional[AIConversation]:
        result = await session.execute(
            select(AIConversation).where(
                AIConversation.id == conversation_id,
                AIConversation.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _turn_entries(history: List[Dict[str, Any]], message: str, reply: str):
        """Stamp the exchange no earlier than the last stored message."""
        stamp = utcnow()
        last = _parse_timestamp(history[-1].get("timestamp")) if history else None
        if last is not None and last.tzinfo is not None and last > stamp:
            stamp = last
        ts = stamp.isoformat()
        user_entry = {"role": "user", "content": message, "timestamp": ts}
        assistant_entry = {"role": "assistant", "content": reply, "timestamp": ts, "sources": []}
        return user_entry, assistant_entry

    async def _append_turn(
        self,
        user_id: str,
        conversation_id: Optional[str],
        message: str,
        reply: str,
    ):
        """
        Append one user/assistant exchange.

        Updates are conditional on the row's version; when a concurrent turn
        got there first the append is replayed on the fresh log, so appends on
        one conversation are totally ordered and none is lost.
        """
        if conversation_id is None:
            async with get_session() as session:
                user_entry, assistant_entry = self._turn_entries([], message, reply)
                conv = AIConversation(
                    user_id=user_id,
                    title=message[:TITLE_MAX_LENGTH],
                    messages=[user_entry, assistant_entry],
                    created_at=utcnow(),
                    updated_at=utcnow(),
                )
                session.add(conv)
                await session.flush()
                new_id = conv.id
            log.info("copilot_conversation_created", user_id=user_id, conversation_id=new_id)
            return new_id, assistant_entry

        attempts = max(1, int(self.cfg.append_retries))
        for attempt in range(1, attempts + 1):
            try:
                async with get_session() as session:
                    conv = await self._load_owned(session, user_id, conversation_id)
                    if conv is None:
                        raise NotFoundError("Conversation not found")
                    history = list(conv.messages or [])
                    user_entry, assistant_entry = self._turn_entries(history, message, reply)
                    # Assign a new list so the JSON column is flagged dirty
                    conv.messages = [*history, user_entry, assistant_entry]
                    conv.updated_at = utcnow()
                return conversation_id, assistant_entry
            except StaleDataError:
                log.info("copilot_append_conflict", conversation_id=conversation_id, attempt=attempt)

        log.warning("copilot_append_gave_up", conversation_id=conversation_id, attempts=attempts)
        raise ConversationBusyError()

    # ---- Public operations ----

    async def chat(
        self,
        user_id: str,
        message: str,
        conversation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run one chat turn.

        Raises:
            NotFoundError: conversation_id given but not owned by user_id
            ConversationBusyError: the append kept losing to concurrent turns
        """
        async with get_session() as session:
            history: List[Dict[str, Any]] = []
            if conversation_id:
                conv = await self._load_owned(session, user_id, conversation_id)
                if conv is None:
                    raise NotFoundError("Conversation not found")
                history = list(conv.messages or [])
            user_context = await self._user_context(session, user_id)

        context = self.build_context(user_context, history, message)
        reply = await self._generate_reply(context, user_id)

        conversation_id, assistant_entry = await self._append_turn(
            user_id, conversation_id or None, message, reply
        )

        await record_audit(
            user_id, "ai_chat",
            entity_type="ai_conversation", entity_id=conversation_id,
        )

        return {
            "conversationId": conversation_id,
            "message": assistant_entry,
            "disclaimer": DISCLAIMER,
        }

    async def get_history(
        self, user_id: str, pagination: Optional[Pagination] = None
    ) -> List[Dict[str, Any]]:
        """List conversations, most recently updated first, without message bodies."""
        pagination = pagination or Pagination.from_query()
        async with get_session() as session:
            result = await session.execute(
                select(AIConversation)
                .where(AIConversation.user_id == user_id)
                .order_by(AIConversation.updated_at.desc())
                .offset(pagination.offset)
                .limit(pagination.limit)
            )
            return [c.summary() for c in result.scalars().all()]

    async def get_conversation(self, user_id: str, conversation_id: str) -> Dict[str, Any]:
        async with get_session() as session:
            conv = await self._load_owned(session, user_id, conversation_id)
            if conv is None:
                raise NotFoundError("Conversation not found")
            return conv.to_dict()

    async def delete_conversation(self, user_id: str, conversation_id: str) -> Dict[str, str]:
        async with get_session() as session:
            conv = await self._load_owned(session, user_id, conversation_id)
            if conv is None:
                raise NotFoundError("Conversation not found")
            await session.delete(conv)
        log.info("copilot_conversation_deleted", user_id=user_id, conversation_id=conversation_id)
        return {"message": "Conversation deleted"}


_service: Optional[CopilotService] = None


def get_copilot_service() -> CopilotService:
    global _service
    if _service is None:
        _service = CopilotService()
    return _service


def reset_copilot_service() -> None:
    global _service
    _service = None
