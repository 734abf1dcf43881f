"""Chat API router."""

import re

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from crm_assistant.api.models import (
    AgentInfo,
    AgentListResponse,
    ChatHistoryResponse,
    ChatRequest,
    ChatResponse,
    MemoryUpdate,
    WorkingMemory,
    WorkingMemoryResponse,
)
from crm_assistant.infra.auth import get_current_session
from crm_assistant.infra.config import config
from crm_assistant.infra.error_handler import ValidationError
from crm_assistant.models.context import UserSession
from crm_assistant.services.agents import list_agents
from crm_assistant.services.chat_service import ChatService, get_chat_service

router = APIRouter(prefix="/api/v1/chat", tags=["Chat"])

CHAT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def require_working_memory() -> None:
    if not config.WORKING_MEMORY_ENABLED:
        raise StarletteHTTPException(status_code=404, detail="Working memory is not enabled")


@router.post("", response_model=ChatResponse)
async def send_message(
    request: ChatRequest,
    session: UserSession = Depends(get_current_session),
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and receive the assistant's reply."""
    reply = await service.handle_message(session, request)
    return ChatResponse(data=reply)


@router.post("/stream")
async def stream_message(
    request: ChatRequest,
    session: UserSession = Depends(get_current_session),
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and stream the reply as server-sent events."""
    agent, chat_id, events = await service.stream_message(session, request)
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={
            "X-Agent-Name": agent.value,
            "X-Chat-Id": chat_id,
            "Cache-Control": "no-cache",
        },
    )


@router.get("/history/{chat_id}", response_model=ChatHistoryResponse)
async def get_history(
    chat_id: str,
    session: UserSession = Depends(get_current_session),
    service: ChatService = Depends(get_chat_service),
):
    """Stored turns of a conversation, oldest first."""
    if not CHAT_ID_PATTERN.match(chat_id):
        raise ValidationError("chatId must be 1-128 characters of letters, digits, '_' or '-'")
    history = await service.get_history(session, chat_id)
    return ChatHistoryResponse(data=history)


@router.get("/agents", response_model=AgentListResponse)
async def get_agents(session: UserSession = Depends(get_current_session)):
    """Specialist agents the router can pick."""
    return AgentListResponse(data=[AgentInfo(**agent) for agent in list_agents()])


@router.get("/memory", response_model=WorkingMemoryResponse, dependencies=[Depends(require_working_memory)])
async def get_memory(
    session: UserSession = Depends(get_current_session),
    service: ChatService = Depends(get_chat_service),
):
    content = await service.get_memory(session)
    return WorkingMemoryResponse(data=WorkingMemory(content=content))


@router.put("/memory", response_model=WorkingMemoryResponse, dependencies=[Depends(require_working_memory)])
async def update_memory(
    update: MemoryUpdate,
    session: UserSession = Depends(get_current_session),
    service: ChatService = Depends(get_chat_service),
):
    await service.save_memory(session, update.content)
    return WorkingMemoryResponse(data=WorkingMemory(content=update.content))
