"""Conversation turn model."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationTurn(BaseModel):
    """One stored chat turn."""
    role: Literal["user", "assistant"]
    content: str
    created_at: str = Field(default_factory=_now_iso, description="ISO timestamp, informational only")

    def as_llm_message(self) -> dict:
        return {"role": self.role, "content": self.content}
