"""
Copilot flow tests — conversation lifecycle, context assembly, fallbacks, append ordering.
"""
import httpx
import pytest
from sqlalchemy import select
from unittest.mock import patch

from healbridge.errors import ConversationBusyError, NotFoundError
from healbridge.models import AIConversation, AuditLog, UserProfile
from healbridge.pagination import Pagination
from healbridge.services.copilot_service import (
    DISCLAIMER, NOT_CONFIGURED_REPLY, RATE_LIMITED_REPLY, SYSTEM_PROMPT, UNAVAILABLE_REPLY,
    CopilotService,
)
from healbridge.services.database import get_session
from healbridge.services.gemini_client import GeminiProvider, ProviderError, ProviderRateLimitError


async def _append_directly(conversation_id: str, content: str):
    """Append a pair from a separate session, as a concurrent turn would."""
    async with get_session() as session:
        conv = (await session.execute(
            select(AIConversation).where(AIConversation.id == conversation_id)
        )).scalar_one()
        conv.messages = [
            *conv.messages,
            {"role": "user", "content": content, "timestamp": conv.messages[-1]["timestamp"]},
            {"role": "assistant", "content": "ok", "timestamp": conv.messages[-1]["timestamp"], "sources": []},
        ]


class TestChat:

    async def test_first_message_creates_titled_conversation(self, alice, copilot):
        user_id = alice["user"]["id"]

        result = await copilot.chat(user_id, "Hello")

        conv = await copilot.get_conversation(user_id, result["conversationId"])
        assert conv["title"] == "Hello"
        assert [m["role"] for m in conv["messages"]] == ["user", "assistant"]
        assert result["message"]["role"] == "assistant"
        assert result["message"]["sources"] == []
        assert result["disclaimer"] == DISCLAIMER
        assert len(await copilot.get_history(user_id)) == 1

    async def test_follow_up_appends_two_and_keeps_title(self, alice, copilot):
        user_id = alice["user"]["id"]
        first = await copilot.chat(user_id, "Hello")

        second = await copilot.chat(user_id, "More", first["conversationId"])

        conv = await copilot.get_conversation(user_id, first["conversationId"])
        assert second["conversationId"] == first["conversationId"]
        assert conv["title"] == "Hello"
        assert len(conv["messages"]) == 4
        assert conv["messages"][2] == {
            "role": "user", "content": "More", "timestamp": conv["messages"][2]["timestamp"],
        }
        assert len(await copilot.get_history(user_id)) == 1

    async def test_title_truncated_to_100_chars(self, alice, copilot):
        message = "x" * 250
        result = await copilot.chat(alice["user"]["id"], message)
        conv = await copilot.get_conversation(alice["user"]["id"], result["conversationId"])
        assert conv["title"] == "x" * 100
        assert conv["messages"][0]["content"] == message

    async def test_timestamps_are_monotonic(self, alice, copilot):
        user_id = alice["user"]["id"]
        first = await copilot.chat(user_id, "one")
        await copilot.chat(user_id, "two", first["conversationId"])
        await copilot.chat(user_id, "three", first["conversationId"])

        conv = await copilot.get_conversation(user_id, first["conversationId"])
        stamps = [m["timestamp"] for m in conv["messages"]]
        assert stamps == sorted(stamps)

    async def test_updated_at_moves_only_on_append(self, alice, copilot):
        user_id = alice["user"]["id"]
        first = await copilot.chat(user_id, "one")
        before = (await copilot.get_conversation(user_id, first["conversationId"]))["updatedAt"]

        await copilot.get_history(user_id)
        assert (await copilot.get_conversation(user_id, first["conversationId"]))["updatedAt"] == before

        await copilot.chat(user_id, "two", first["conversationId"])
        after = (await copilot.get_conversation(user_id, first["conversationId"]))["updatedAt"]
        assert after >= before

    async def test_unknown_conversation_is_not_found(self, alice, copilot, provider):
        with pytest.raises(NotFoundError):
            await copilot.chat(alice["user"]["id"], "Hi", "does-not-exist")
        assert provider.calls == []

    async def test_other_users_conversation_is_not_found(self, alice, auth_service, copilot):
        bob = await auth_service.register("bob@example.com", "Passw0rd!", "Bob")
        mine = await copilot.chat(alice["user"]["id"], "private")

        with pytest.raises(NotFoundError):
            await copilot.chat(bob["user"]["id"], "peek", mine["conversationId"])
        with pytest.raises(NotFoundError):
            await copilot.get_conversation(bob["user"]["id"], mine["conversationId"])
        with pytest.raises(NotFoundError):
            await copilot.delete_conversation(bob["user"]["id"], mine["conversationId"])

    async def test_every_turn_is_audited(self, alice, copilot):
        user_id = alice["user"]["id"]
        result = await copilot.chat(user_id, "Hello")
        await copilot.chat(user_id, "Again", result["conversationId"])

        async with get_session() as session:
            rows = (await session.execute(
                select(AuditLog).where(AuditLog.action == "ai_chat")
            )).scalars().all()
        assert len(rows) == 2
        assert {r.entity_id for r in rows} == {result["conversationId"]}
        assert {r.entity_type for r in rows} == {"ai_conversation"}

    async def test_audit_failure_does_not_break_chat(self, alice, copilot):
        with patch("healbridge.services.audit_service.get_session", side_effect=RuntimeError("audit down")):
            result = await copilot.chat(alice["user"]["id"], "Hello")
        assert result["disclaimer"] == DISCLAIMER


class TestContext:

    async def test_context_has_system_history_and_new_message(self, alice, copilot, provider):
        user_id = alice["user"]["id"]
        first = await copilot.chat(user_id, "Hello")
        await copilot.chat(user_id, "More", first["conversationId"])

        context = provider.calls[-1]
        assert context[0]["role"] == "system"
        assert context[0]["content"].startswith(SYSTEM_PROMPT)
        assert [m["role"] for m in context[1:]] == ["user", "assistant", "user"]
        assert context[1]["content"] == "Hello"
        assert context[-1] == {"role": "user", "content": "More"}

    async def test_user_context_defaults_to_not_specified(self, alice, copilot, provider):
        await copilot.chat(alice["user"]["id"], "Hello")
        assert "User Context: User condition: Not specified. Stage: Not specified." in provider.calls[0][0]["content"]

    async def test_user_context_uses_condition_and_stage(self, alice, copilot, provider):
        async with get_session() as session:
            profile = (await session.execute(
                select(UserProfile).where(UserProfile.user_id == alice["user"]["id"])
            )).scalar_one()
            profile.primary_condition_id = "cond_breast_cancer"
            profile.condition_stage = "Stage II"

        await copilot.chat(alice["user"]["id"], "Hello")

        assert "User condition: Breast Cancer. Stage: Stage II." in provider.calls[0][0]["content"]

    def test_build_context_without_history(self):
        context = CopilotService.build_context("", [], "Hi")
        assert context == [
            {"role": "system", "content": f"{SYSTEM_PROMPT}\n\nUser Context: "},
            {"role": "user", "content": "Hi"},
        ]


class TestProviderFallbacks:

    @pytest.mark.parametrize("error, expected", [
        (ProviderRateLimitError("429"), RATE_LIMITED_REPLY),
        (ProviderError("boom"), UNAVAILABLE_REPLY),
        (httpx.ReadTimeout("timed out"), UNAVAILABLE_REPLY),
        (RuntimeError("quota exceeded"), RATE_LIMITED_REPLY),
    ])
    async def test_failures_become_disclaimer_fallbacks(self, alice, copilot, provider, error, expected):
        provider.error = error
        svc = copilot

        result = await svc.chat(alice["user"]["id"], "What is Lyme disease?")

        assert result["message"]["content"] == expected
        assert DISCLAIMER in result["message"]["content"]
        assert result["disclaimer"] == DISCLAIMER
        conv = await svc.get_conversation(alice["user"]["id"], result["conversationId"])
        assert conv["messages"][-1]["content"] == expected

    async def test_unconfigured_provider_returns_configuration_reminder(self, alice, db, test_config):
        svc = CopilotService(provider=GeminiProvider(test_config.copilot))

        result = await svc.chat(alice["user"]["id"], "What is Lyme disease?")

        assert result["message"]["content"] == NOT_CONFIGURED_REPLY
        assert "GOOGLE_AI_API_KEY" in result["message"]["content"]
        assert result["disclaimer"] == DISCLAIMER


class TestAppendOrdering:

    async def test_concurrent_append_is_replayed_not_lost(self, alice, copilot):
        user_id = alice["user"]["id"]
        first = await copilot.chat(user_id, "Hello")
        conv_id = first["conversationId"]

        original = CopilotService._load_owned
        calls = {"n": 0}

        async def racing_load(session, owner_id, conversation_id):
            conv = await original(session, owner_id, conversation_id)
            calls["n"] += 1
            # The append's first read gets overtaken by another turn
            if calls["n"] == 2:
                await _append_directly(conversation_id, "sneaky")
            return conv

        with patch.object(CopilotService, "_load_owned", staticmethod(racing_load)):
            await copilot.chat(user_id, "Mine", conv_id)

        conv = await copilot.get_conversation(user_id, conv_id)
        assert [m["content"] for m in conv["messages"] if m["role"] == "user"] == ["Hello", "sneaky", "Mine"]
        assert len(conv["messages"]) == 6
        assert calls["n"] == 3

    async def test_gives_up_after_configured_retries(self, alice, copilot):
        user_id = alice["user"]["id"]
        first = await copilot.chat(user_id, "Hello")
        conv_id = first["conversationId"]

        original = CopilotService._load_owned
        calls = {"n": 0}

        async def always_racing(session, owner_id, conversation_id):
            conv = await original(session, owner_id, conversation_id)
            calls["n"] += 1
            if calls["n"] > 1:
                await _append_directly(conversation_id, f"racer-{calls['n']}")
            return conv

        with patch.object(CopilotService, "_load_owned", staticmethod(always_racing)):
            with pytest.raises(ConversationBusyError):
                await copilot.chat(user_id, "Mine", conv_id)

        conv = await copilot.get_conversation(user_id, conv_id)
        assert "Mine" not in [m["content"] for m in conv["messages"]]
        # one initial read plus append_retries=3 attempts
        assert calls["n"] == 4


class TestHistory:

    async def test_history_lists_newest_first_without_messages(self, alice, copilot):
        user_id = alice["user"]["id"]
        older = await copilot.chat(user_id, "older")
        newer = await copilot.chat(user_id, "newer")
        await copilot.chat(user_id, "bump", older["conversationId"])

        history = await copilot.get_history(user_id)

        assert [h["id"] for h in history] == [older["conversationId"], newer["conversationId"]]
        assert set(history[0]) == {"id", "title", "createdAt", "updatedAt"}

    async def test_history_is_per_user(self, alice, auth_service, copilot):
        bob = await auth_service.register("bob@example.com", "Passw0rd!", "Bob")
        await copilot.chat(alice["user"]["id"], "mine")
        assert await copilot.get_history(bob["user"]["id"]) == []

    async def test_history_paginates(self, alice, copilot):
        user_id = alice["user"]["id"]
        for i in range(5):
            await copilot.chat(user_id, f"topic {i}")

        page_one = await copilot.get_history(user_id, Pagination(page=1, limit=2))
        page_three = await copilot.get_history(user_id, Pagination(page=3, limit=2))

        assert [h["title"] for h in page_one] == ["topic 4", "topic 3"]
        assert [h["title"] for h in page_three] == ["topic 0"]

    async def test_delete_conversation(self, alice, copilot):
        user_id = alice["user"]["id"]
        result = await copilot.chat(user_id, "forget me")

        assert await copilot.delete_conversation(user_id, result["conversationId"]) == {
            "message": "Conversation deleted"
        }
        with pytest.raises(NotFoundError):
            await copilot.get_conversation(user_id, result["conversationId"])
        with pytest.raises(NotFoundError):
            await copilot.delete_conversation(user_id, result["conversationId"])


class TestPagination:

    def test_defaults(self, test_config):
        assert Pagination.from_query() == Pagination(page=1, limit=20)

    def test_limit_is_capped(self, test_config):
        assert Pagination.from_query(page=2, limit=10_000).limit == test_config.api.max_page_limit

    def test_offset(self):
        assert Pagination(page=3, limit=20).offset == 40
