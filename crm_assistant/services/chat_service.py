"""Chat turn orchestration: context, triage, dispatch and persistence."""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Tuple

from crm_assistant.api.models import ChatHistory, ChatMessage, ChatReply, ChatRequest, HistoryMessage
from crm_assistant.infra.config import config
from crm_assistant.infra.metrics import chat_turns_total
from crm_assistant.infra.timeout import CHAT_TURN_TIMEOUT
from crm_assistant.models.context import ExecutionContext, UserSession
from crm_assistant.models.conversation import ConversationTurn
from crm_assistant.services import agent_dispatcher, triage_router
from crm_assistant.services.agents import AgentName
from crm_assistant.services.context_builder import build_context
from crm_assistant.services.conversation_store import ConversationStore, get_conversation_store
from crm_assistant.services.messages import get_message

logger = logging.getLogger(__name__)

SSE_DONE = "data: [DONE]\n\n"


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@dataclass
class _TurnState:
    agent: AgentName = AgentName.GENERAL
    user_persisted: bool = False


class ChatService:
    """Handles chat turns for an authenticated session."""

    def __init__(self, store: Optional[ConversationStore] = None):
        self._store = store

    @property
    def store(self) -> ConversationStore:
        return self._store or get_conversation_store()

    async def _persist(self, ctx: ExecutionContext, role: str, content: str) -> None:
        await self.store.append_turn(ctx.tenant_id, ctx.conversation_id, ConversationTurn(role=role, content=content))

    async def _working_memory(self, ctx: ExecutionContext) -> Optional[str]:
        if not config.WORKING_MEMORY_ENABLED:
            return None
        return await self.store.get_working_memory(ctx.user_id)

    async def _persist_user_turn(self, ctx: ExecutionContext, message: str, state: _TurnState) -> None:
        await self._persist(ctx, "user", message)
        state.user_persisted = True

    async def _run_turn(self, ctx: ExecutionContext, message: str, state: _TurnState) -> str:
        history = await self.store.get_history(ctx.tenant_id, ctx.conversation_id, config.CHAT_REPLAY_LIMIT)
        state.agent = await triage_router.classify(message, ctx)
        await self._persist_user_turn(ctx, message, state)
        working_memory = await self._working_memory(ctx)
        return await agent_dispatcher.respond(state.agent, ctx, history, message, working_memory)

    async def _not_configured(self, ctx: ExecutionContext, message: str) -> str:
        logger.warning(
            "OPENAI_API_KEY not configured, returning fixed reply",
            extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id},
        )
        reply = get_message("not_configured", ctx.language)
        await self._persist(ctx, "user", message)
        await self._persist(ctx, "assistant", reply)
        return reply

    async def handle_message(self, session: UserSession, request: ChatRequest) -> ChatReply:
        """
        Run one chat turn and return the assistant reply.

        Provider, tool and persistence failures never escape; the reply is
        then a localized fixed message.
        """
        start_time = time.time()
        ctx = build_context(session, request.chatId, request.timezone)
        state = _TurnState()

        if not config.llm_configured:
            text = await self._not_configured(ctx, request.message)
            outcome = "not_configured"
        else:
            try:
                text = await asyncio.wait_for(
                    self._run_turn(ctx, request.message, state),
                    timeout=CHAT_TURN_TIMEOUT,
                )
                outcome = "ok"
            except asyncio.TimeoutError:
                logger.error(
                    f"Chat turn timed out after {CHAT_TURN_TIMEOUT} seconds",
                    extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id},
                )
                if not state.user_persisted:
                    await self._persist(ctx, "user", request.message)
                text = get_message("generation_failed", ctx.language)
                outcome = "timeout"
            await self._persist(ctx, "assistant", text)

        chat_turns_total.labels(mode="sync", outcome=outcome).inc()
        logger.info(
            "Chat turn completed",
            extra={
                "tenant_id": ctx.tenant_id,
                "conversation_id": ctx.conversation_id,
                "agent": state.agent.value,
                "latency_ms": int((time.time() - start_time) * 1000),
            },
        )
        return ChatReply(
            chatId=ctx.conversation_id,
            agent=state.agent.value,
            message=ChatMessage(id=str(uuid.uuid4()), content=text),
        )

    async def stream_message(
        self, session: UserSession, request: ChatRequest
    ) -> Tuple[AgentName, str, AsyncIterator[str]]:
        """
        Classify the message and return (agent, conversation id, SSE iterator).

        The iterator persists the final assistant text once the stream ends.
        """
        ctx = build_context(session, request.chatId, request.timezone)

        if not config.llm_configured:
            text = await self._not_configured(ctx, request.message)
            chat_turns_total.labels(mode="stream", outcome="not_configured").inc()
            return AgentName.GENERAL, ctx.conversation_id, self._fixed_stream(text)

        state = _TurnState()
        history = await self.store.get_history(ctx.tenant_id, ctx.conversation_id, config.CHAT_REPLAY_LIMIT)
        state.agent = await triage_router.classify(request.message, ctx)
        await self._persist_user_turn(ctx, request.message, state)
        working_memory = await self._working_memory(ctx)
        events = agent_dispatcher.stream_respond(state.agent, ctx, history, request.message, working_memory)
        return state.agent, ctx.conversation_id, self._sse_stream(ctx, events)

    async def _fixed_stream(self, text: str) -> AsyncIterator[str]:
        yield sse_event({"type": "text-delta", "delta": text})
        yield sse_event({"type": "done", "text": text})
        yield SSE_DONE

    async def _sse_stream(self, ctx: ExecutionContext, events) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + CHAT_TURN_TIMEOUT
        deltas = []
        final_text = None
        outcome = "disconnected"
        try:
            try:
                while True:
                    remaining = max(deadline - loop.time(), 0.001)
                    try:
                        event = await asyncio.wait_for(events.__anext__(), timeout=remaining)
                    except StopAsyncIteration:
                        break
                    if event.type == "text-delta":
                        deltas.append(event.data.get("delta", ""))
                    elif event.type == "done":
                        final_text = event.data.get("text")
                    yield sse_event(event.as_payload())
                outcome = "ok"
            except asyncio.TimeoutError:
                logger.error(
                    f"Streamed chat turn timed out after {CHAT_TURN_TIMEOUT} seconds",
                    extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id},
                )
                final_text = get_message("generation_failed", ctx.language)
                outcome = "timeout"
                yield sse_event({"type": "done", "text": final_text})
        finally:
            # Runs on client disconnect too; keep whatever was streamed
            if not final_text and outcome == "disconnected":
                final_text = "".join(deltas)
            chat_turns_total.labels(mode="stream", outcome=outcome).inc()
            try:
                await asyncio.shield(
                    self._persist(ctx, "assistant", final_text or get_message("empty_response", ctx.language))
                )
            finally:
                await events.aclose()

        yield SSE_DONE

    async def get_history(self, session: UserSession, chat_id: str) -> ChatHistory:
        ctx = build_context(session, chat_id)
        turns = await self.store.get_history(ctx.tenant_id, chat_id, config.CHAT_HISTORY_LIMIT)
        return ChatHistory(
            chatId=chat_id,
            messages=[HistoryMessage(role=turn.role, content=turn.content) for turn in turns],
        )

    async def get_memory(self, session: UserSession) -> Optional[str]:
        ctx = build_context(session)
        return await self.store.get_working_memory(ctx.user_id)

    async def save_memory(self, session: UserSession, content: str) -> None:
        ctx = build_context(session)
        await self.store.save_working_memory(ctx.user_id, content)


_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """FastAPI dependency returning the shared ChatService."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service
