"""API request/response models."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

MAX_MESSAGE_LENGTH = 10000
MAX_MEMORY_LENGTH = 4000


# ============================================================================
# Chat Models
# ============================================================================

class ChatRequest(BaseModel):
    """Request model for one chat turn."""
    message: str = Field(..., description="User message", examples=["Show my overdue invoices"])
    chatId: Optional[str] = Field(
        None,
        max_length=128,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Conversation id; a new one is generated when omitted",
    )
    timezone: Optional[str] = Field(None, description="IANA timezone of the client", examples=["Europe/Belgrade"])

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message must not be empty")
        if len(value) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"message must be at most {MAX_MESSAGE_LENGTH} characters")
        return value


class ChatMessage(BaseModel):
    """An assistant message returned by the chat endpoint."""
    id: str
    role: Literal["assistant"] = "assistant"
    content: str


class ChatReply(BaseModel):
    chatId: str
    agent: str
    message: ChatMessage


class ChatResponse(BaseModel):
    """Envelope for a chat turn."""
    success: bool = True
    data: ChatReply


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatHistory(BaseModel):
    chatId: str
    messages: List[HistoryMessage]


class ChatHistoryResponse(BaseModel):
    success: bool = True
    data: ChatHistory


class AgentInfo(BaseModel):
    name: str
    description: str


class AgentListResponse(BaseModel):
    success: bool = True
    data: List[AgentInfo]


# ============================================================================
# Working Memory Models
# ============================================================================

class MemoryUpdate(BaseModel):
    """Request model for replacing the user's working memory."""
    content: str = Field(..., max_length=MAX_MEMORY_LENGTH, description="Free-form notes about the user")


class WorkingMemory(BaseModel):
    content: Optional[str] = None


class WorkingMemoryResponse(BaseModel):
    success: bool = True
    data: WorkingMemory


class ErrorResponse(BaseModel):
    """Error envelope returned by the exception handlers."""
    success: bool = False
    error: Dict[str, Any]
