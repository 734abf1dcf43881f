"""End-to-end tests for the chat API with faked provider, database and Redis."""

import asyncio
import json
from datetime import date

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, patch

from crm_assistant.adapters.vendor_adapter_openai import ChatCompletionResult, ToolCall
from crm_assistant.infra.config import config
from crm_assistant.main import app
from crm_assistant.models.conversation import ConversationTurn
from crm_assistant.services.agent_dispatcher import StreamEvent
from crm_assistant.services.chat_service import ChatService, get_chat_service
from crm_assistant.services.conversation_store import ConversationStore, chat_key
from crm_assistant.services.messages import get_message
from crm_assistant.services.tool_registry import TOOL_REGISTRY

TRIAGE_CALL = "crm_assistant.services.triage_router.call_openai_chat"
DISPATCH_CALL = "crm_assistant.services.agent_dispatcher.call_openai_chat"
DEV_TENANT = config.DEV_TENANT_ID


@pytest.fixture
def chat_store(fake_redis):
    return ConversationStore(fake_redis, ttl_seconds=3600)


@pytest.fixture
def client(chat_store):
    app.dependency_overrides[get_chat_service] = lambda: ChatService(store=chat_store)
    with patch.object(config, "AUTH_DISABLED", True), patch.object(config, "APP_ENV", "test"):
        yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api_key_configured():
    with patch.object(config, "OPENAI_API_KEY", "sk-test"):
        yield


class TestChatScenarios:
    """Test complete chat turns."""

    @pytest.mark.usefixtures("api_key_configured")
    def test_overdue_invoices_turn(self, client, fake_redis):
        """Test routing to invoices, one tool call and a persisted exchange."""
        triage = AsyncMock(return_value=ChatCompletionResult(content='{"agent": "invoices"}'))
        dispatch = AsyncMock(side_effect=[
            ChatCompletionResult(tool_calls=[ToolCall(id="call-1", name="getOverdueInvoices", arguments="{}")]),
            ChatCompletionResult(content="You have 1 overdue invoice from Globex (1,200.00 EUR)."),
        ])
        overdue = AsyncMock(return_value=[{
            "invoice_number": "INV-2026-00007",
            "customer_name": "Globex",
            "total": 1200,
            "paid_amount": 0,
            "currency": "EUR",
            "due_date": date(2026, 1, 1),
        }])
        with patch(TRIAGE_CALL, triage), patch(DISPATCH_CALL, dispatch), \
                patch("crm_assistant.data.invoices.overdue_invoices", overdue):
            response = client.post("/api/v1/chat", json={"message": "Show overdue invoices", "chatId": "chat-a"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["chatId"] == "chat-a"
        assert body["data"]["agent"] == "invoices"
        assert body["data"]["message"]["role"] == "assistant"
        assert body["data"]["message"]["content"].startswith("You have 1 overdue invoice")

        overdue.assert_awaited_once_with(DEV_TENANT)
        tool_message = dispatch.call_args_list[1].args[0][-1]
        assert tool_message["role"] == "tool"
        assert "INV-2026-00007" in tool_message["content"]

        stored = [ConversationTurn.model_validate_json(raw) for raw in fake_redis.lists[chat_key(DEV_TENANT, "chat-a")]]
        assert [(t.role, t.content) for t in stored] == [
            ("user", "Show overdue invoices"),
            ("assistant", body["data"]["message"]["content"]),
        ]

    def test_missing_api_key_degrades(self, client, fake_redis):
        """Test that a missing provider key still answers 200 and keeps the user turn."""
        with patch.object(config, "OPENAI_API_KEY", None):
            response = client.post("/api/v1/chat", json={"message": "Hello", "chatId": "chat-b"})

        assert response.status_code == 200
        body = response.json()
        language = config.DEFAULT_LOCALE.split("-")[0]
        assert body["data"]["message"]["content"] == get_message("not_configured", language)
        assert body["data"]["agent"] == "general"

        stored = [ConversationTurn.model_validate_json(raw) for raw in fake_redis.lists[chat_key(DEV_TENANT, "chat-b")]]
        assert stored[0].role == "user"
        assert stored[0].content == "Hello"

    @pytest.mark.usefixtures("api_key_configured")
    def test_unroutable_text_goes_to_general(self, client):
        """Test that gibberish routes to general with the full registry."""
        triage = AsyncMock(return_value=ChatCompletionResult(content="hmm, not sure"))
        dispatch = AsyncMock(return_value=ChatCompletionResult(content="Could you tell me more?"))
        with patch(TRIAGE_CALL, triage), patch(DISPATCH_CALL, dispatch):
            response = client.post("/api/v1/chat", json={"message": "zzkx qwv"})

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["agent"] == "general"
        assert body["data"]["message"]["content"] == "Could you tell me more?"
        assert body["data"]["chatId"]
        assert len(dispatch.call_args.kwargs["tools"]) == len(TOOL_REGISTRY)

    @pytest.mark.usefixtures("api_key_configured")
    def test_provider_outage_still_replies(self, client):
        """Test that failing triage and dispatch still yield a 200 apology."""
        failing = AsyncMock(side_effect=RuntimeError("provider down"))
        with patch(TRIAGE_CALL, failing), patch(DISPATCH_CALL, failing):
            response = client.post("/api/v1/chat", json={"message": "Hi"})

        assert response.status_code == 200
        language = config.DEFAULT_LOCALE.split("-")[0]
        assert response.json()["data"]["message"]["content"] == get_message("generation_failed", language)

    @pytest.mark.usefixtures("api_key_configured")
    def test_history_is_replayed(self, client, chat_store):
        """Test that earlier turns are sent to the model on the next message."""
        dispatch = AsyncMock(return_value=ChatCompletionResult(content="Sure."))
        triage = AsyncMock(return_value=ChatCompletionResult(content='{"agent": "general"}'))
        with patch(TRIAGE_CALL, triage), patch(DISPATCH_CALL, dispatch):
            client.post("/api/v1/chat", json={"message": "first", "chatId": "chat-r"})
            client.post("/api/v1/chat", json={"message": "second", "chatId": "chat-r"})

        messages = dispatch.call_args.args[0]
        assert [m["content"] for m in messages[1:]] == ["first", "Sure.", "second"]


class TestChatValidation:
    """Test request validation and error envelopes."""

    @pytest.mark.parametrize("payload", [
        {"message": ""},
        {"message": "   "},
        {"message": "x" * 10001},
        {"message": "hi", "chatId": "bad id!"},
        {"message": "hi", "chatId": "x" * 129},
        {},
    ])
    def test_invalid_payloads(self, client, payload):
        response = client.post("/api/v1/chat", json=payload)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_missing_credentials(self, chat_store):
        """Test that requests without a key are rejected when auth is enabled."""
        app.dependency_overrides[get_chat_service] = lambda: ChatService(store=chat_store)
        try:
            with patch.object(config, "AUTH_DISABLED", False):
                response = TestClient(app).post("/api/v1/chat", json={"message": "hi"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_short_key_is_rejected(self, client):
        with patch.object(config, "AUTH_DISABLED", False):
            response = client.post("/api/v1/chat", json={"message": "hi"}, headers={"X-API-Key": "short"})

        assert response.status_code == 401


class TestChatEndpoints:
    """Test history, agents, memory and streaming endpoints."""

    def test_history(self, client, fake_redis):
        key = chat_key(DEV_TENANT, "chat-h")
        fake_redis.lists[key] = [
            ConversationTurn(role="user", content="q").model_dump_json(),
            ConversationTurn(role="assistant", content="a").model_dump_json(),
        ]

        response = client.get("/api/v1/chat/history/chat-h")

        assert response.status_code == 200
        assert response.json()["data"] == {
            "chatId": "chat-h",
            "messages": [{"role": "user", "content": "q"}, {"role": "assistant", "content": "a"}],
        }

    def test_history_rejects_bad_chat_id(self, client):
        response = client.get("/api/v1/chat/history/bad.id")
        assert response.status_code == 400

    def test_agents(self, client):
        response = client.get("/api/v1/chat/agents")

        assert response.status_code == 200
        names = {agent["name"] for agent in response.json()["data"]}
        assert "general" in names
        assert len(names) == 10

    def test_memory_disabled(self, client):
        with patch.object(config, "WORKING_MEMORY_ENABLED", False):
            response = client.get("/api/v1/chat/memory")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_memory_round_trip(self, client):
        with patch.object(config, "WORKING_MEMORY_ENABLED", True):
            put = client.put("/api/v1/chat/memory", json={"content": "Prefers EUR"})
            get = client.get("/api/v1/chat/memory")

        assert put.status_code == 200
        assert get.json()["data"] == {"content": "Prefers EUR"}

    def test_memory_too_long(self, client):
        with patch.object(config, "WORKING_MEMORY_ENABLED", True):
            response = client.put("/api/v1/chat/memory", json={"content": "x" * 4001})

        assert response.status_code == 400

    def test_stream_without_api_key(self, client, fake_redis):
        """Test that streaming degrades to a fixed reply and terminates."""
        with patch.object(config, "OPENAI_API_KEY", None):
            response = client.post("/api/v1/chat/stream", json={"message": "Hello", "chatId": "chat-s"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["X-Agent-Name"] == "general"
        assert response.headers["X-Chat-Id"] == "chat-s"
        lines = [line for line in response.text.split("\n\n") if line]
        assert lines[-1] == "data: [DONE]"
        done = json.loads(lines[-2][len("data: "):])
        assert done["type"] == "done"
        assert len(fake_redis.lists[chat_key(DEV_TENANT, "chat-s")]) == 2

    @pytest.mark.usefixtures("api_key_configured")
    def test_stream_persists_final_text(self, client, fake_redis):
        """Test that the streamed answer is stored once the stream ends."""
        triage = AsyncMock(return_value=ChatCompletionResult(content='{"agent": "general"}'))

        def fake_stream(messages, tools=None, model=None, timeout=None):
            async def generator():
                yield {"type": "text-delta", "delta": "Hi "}
                yield {"type": "text-delta", "delta": "there"}
                yield {"type": "completion", "result": ChatCompletionResult(content="Hi there")}
            return generator()

        with patch(TRIAGE_CALL, triage), patch("crm_assistant.services.agent_dispatcher.stream_openai_chat", fake_stream):
            response = client.post("/api/v1/chat/stream", json={"message": "Hello", "chatId": "chat-t"})

        events = [json.loads(line[len("data: "):]) for line in response.text.split("\n\n") if line and line != "data: [DONE]"]
        assert [e["type"] for e in events] == ["text-delta", "text-delta", "done"]
        assert events[-1]["text"] == "Hi there"
        stored = [ConversationTurn.model_validate_json(raw) for raw in fake_redis.lists[chat_key(DEV_TENANT, "chat-t")]]
        assert [(t.role, t.content) for t in stored] == [("user", "Hello"), ("assistant", "Hi there")]


class TestHealth:
    """Test health endpoints that need no backing services."""

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "chat_turns_total" in response.text

    def test_request_id_is_echoed(self, client):
        """Test that a well-formed request id is kept and a malformed one replaced."""
        kept = client.get("/health", headers={"X-Request-ID": "req-123"})
        replaced = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})

        assert kept.headers["X-Request-ID"] == "req-123"
        assert replaced.headers["X-Request-ID"] != "bad id with spaces"
        assert "X-Response-Time-Ms" in kept.headers


CHAT_SERVICE = "crm_assistant.services.chat_service"


async def never_finishes(*args, **kwargs):
    await asyncio.Event().wait()


class TestChatTimeouts:
    """Test the whole-turn deadline for sync and streamed replies."""

    @pytest.mark.usefixtures("api_key_configured")
    def test_slow_generation_replies_with_apology(self, client, fake_redis):
        """Test that a turn past the deadline stores the user turn, then the apology."""
        triage = AsyncMock(return_value=ChatCompletionResult(content='{"agent": "general"}'))
        with patch(TRIAGE_CALL, triage), patch(f"{CHAT_SERVICE}.CHAT_TURN_TIMEOUT", 0.05), \
                patch("crm_assistant.services.agent_dispatcher.respond", never_finishes):
            response = client.post("/api/v1/chat", json={"message": "hi", "chatId": "chat-slow"})

        apology = get_message("generation_failed", config.DEFAULT_LOCALE.split("-")[0])
        assert response.status_code == 200
        assert response.json()["data"]["message"]["content"] == apology
        stored = [ConversationTurn.model_validate_json(raw) for raw in fake_redis.lists[chat_key(DEV_TENANT, "chat-slow")]]
        assert [(t.role, t.content) for t in stored] == [("user", "hi"), ("assistant", apology)]

    @pytest.mark.usefixtures("api_key_configured")
    def test_slow_triage_still_stores_user_turn(self, client, fake_redis):
        """Test that the user turn is stored even when the deadline hits during routing."""
        with patch(f"{CHAT_SERVICE}.CHAT_TURN_TIMEOUT", 0.05), \
                patch("crm_assistant.services.triage_router.classify", never_finishes):
            response = client.post("/api/v1/chat", json={"message": "hi", "chatId": "chat-triage"})

        assert response.status_code == 200
        stored = [ConversationTurn.model_validate_json(raw) for raw in fake_redis.lists[chat_key(DEV_TENANT, "chat-triage")]]
        assert [t.role for t in stored] == ["user", "assistant"]

    @pytest.mark.usefixtures("api_key_configured")
    def test_stream_deadline_sends_apology_and_terminates(self, client, fake_redis):
        triage = AsyncMock(return_value=ChatCompletionResult(content='{"agent": "general"}'))

        async def stalled_stream(*args, **kwargs):
            yield StreamEvent("text-delta", {"delta": "Let me check"})
            await asyncio.Event().wait()

        with patch(TRIAGE_CALL, triage), patch(f"{CHAT_SERVICE}.CHAT_TURN_TIMEOUT", 0.05), \
                patch("crm_assistant.services.agent_dispatcher.stream_respond", stalled_stream):
            response = client.post("/api/v1/chat/stream", json={"message": "hi", "chatId": "chat-stall"})

        apology = get_message("generation_failed", config.DEFAULT_LOCALE.split("-")[0])
        lines = [line for line in response.text.split("\n\n") if line]
        assert lines[-1] == "data: [DONE]"
        events = [json.loads(line[len("data: "):]) for line in lines[:-1]]
        assert [e["type"] for e in events] == ["text-delta", "done"]
        assert events[-1]["text"] == apology
        stored = [ConversationTurn.model_validate_json(raw) for raw in fake_redis.lists[chat_key(DEV_TENANT, "chat-stall")]]
        assert [(t.role, t.content) for t in stored] == [("user", "hi"), ("assistant", apology)]


class TestStreamDisconnect:
    """Test that an abandoned stream still leaves an assistant turn."""

    def _events(self):
        async def generator():
            yield StreamEvent("text-delta", {"delta": "Partial answer"})
            await asyncio.Event().wait()
        return generator()

    @pytest.mark.asyncio
    async def test_closed_stream_persists_partial_text(self, store, ctx):
        """Test that closing the stream early stores what was already sent."""
        stream = ChatService(store=store)._sse_stream(ctx, self._events())
        first = await stream.__anext__()
        await stream.aclose()

        assert json.loads(first[len("data: "):])["delta"] == "Partial answer"
        history = await store.get_history(ctx.tenant_id, ctx.conversation_id, 10)
        assert [(t.role, t.content) for t in history] == [("assistant", "Partial answer")]

    @pytest.mark.asyncio
    async def test_cancelled_stream_persists_partial_text(self, store, ctx):
        """Test that cancelling the consumer mid-stream still stores the reply."""
        stream = ChatService(store=store)._sse_stream(ctx, self._events())

        async def consume():
            async for _ in stream:
                pass

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)

        history = await store.get_history(ctx.tenant_id, ctx.conversation_id, 10)
        assert [(t.role, t.content) for t in history] == [("assistant", "Partial answer")]
