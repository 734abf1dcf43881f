"""Tests for the Redis conversation store."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from crm_assistant.models.conversation import ConversationTurn
from crm_assistant.services.conversation_store import ConversationStore, best_effort, chat_key, memory_key


class TestConversationStore:
    """Test history, expiry and working memory."""

    @pytest.mark.asyncio
    async def test_append_then_read_round_trip(self, store):
        """Test that role and content survive a round trip."""
        await store.append_turn("tenant-1", "conv-1", ConversationTurn(role="user", content="Show overdue invoices"))
        await store.append_turn("tenant-1", "conv-1", ConversationTurn(role="assistant", content="No overdue invoices."))

        history = await store.get_history("tenant-1", "conv-1", 10)

        assert [(t.role, t.content) for t in history] == [
            ("user", "Show overdue invoices"),
            ("assistant", "No overdue invoices."),
        ]

    @pytest.mark.asyncio
    async def test_history_is_bounded_and_oldest_first(self, store):
        """Test that only the last `limit` turns are returned, oldest first."""
        for i in range(6):
            await store.append_turn("tenant-1", "conv-1", ConversationTurn(role="user", content=f"message {i}"))

        history = await store.get_history("tenant-1", "conv-1", 3)

        assert [t.content for t in history] == ["message 3", "message 4", "message 5"]

    @pytest.mark.asyncio
    async def test_every_write_resets_expiry(self, store, fake_redis):
        """Test that appends set the sliding expiry on the conversation key."""
        await store.append_turn("tenant-1", "conv-1", ConversationTurn(role="user", content="hi"))

        assert fake_redis.ttls[chat_key("tenant-1", "conv-1")] == 3600

    @pytest.mark.asyncio
    async def test_conversations_are_tenant_scoped(self, store):
        """Test that the same conversation id in another tenant is a different history."""
        await store.append_turn("tenant-1", "conv-1", ConversationTurn(role="user", content="tenant one"))

        assert await store.get_history("tenant-2", "conv-1", 10) == []

    @pytest.mark.asyncio
    async def test_undecodable_entries_are_skipped(self, store, fake_redis):
        """Test that corrupt entries do not break history reads."""
        key = chat_key("tenant-1", "conv-1")
        fake_redis.lists[key] = [
            "not json",
            ConversationTurn(role="user", content="valid").model_dump_json(),
            '{"role": "system", "content": "bad role"}',
        ]

        history = await store.get_history("tenant-1", "conv-1", 10)

        assert [t.content for t in history] == ["valid"]

    @pytest.mark.asyncio
    async def test_read_failure_returns_empty_history(self):
        """Test that a Redis outage yields an empty history instead of an error."""
        broken = MagicMock()
        broken.lrange = AsyncMock(side_effect=ConnectionError("redis down"))
        store = ConversationStore(broken, ttl_seconds=60)

        assert await store.get_history("tenant-1", "conv-1", 10) == []

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self):
        """Test that a failed append does not raise."""
        broken = MagicMock()
        broken.pipeline = MagicMock(side_effect=ConnectionError("redis down"))
        store = ConversationStore(broken, ttl_seconds=60)

        result = await store.append_turn("tenant-1", "conv-1", ConversationTurn(role="user", content="hi"))

        assert result is None

    @pytest.mark.asyncio
    async def test_working_memory_round_trip(self, store, fake_redis):
        """Test that working memory is stored per scoped user with expiry."""
        assert await store.get_working_memory("user-1:tenant-1") is None

        await store.save_working_memory("user-1:tenant-1", "Prefers answers in English")

        assert await store.get_working_memory("user-1:tenant-1") == "Prefers answers in English"
        assert fake_redis.ttls[memory_key("user-1:tenant-1")] == 3600


class TestBestEffort:
    """Test the swallow-and-log decorator."""

    @pytest.mark.asyncio
    async def test_callable_default_gives_fresh_value(self):
        """Test that a callable default is called on every failure."""
        @best_effort(list)
        async def failing():
            raise RuntimeError("boom")

        first = await failing()
        first.append("x")

        assert await failing() == []

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        """Test that results are returned unchanged on success."""
        @best_effort()
        async def working(value):
            return value * 2

        assert await working(21) == 42
