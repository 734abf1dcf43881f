from .context import ExecutionContext, UserSession
from .conversation import ConversationTurn
from .tool import EmptyParams, ToolDefinition, ToolGroup, ToolLink, ToolResult

__all__ = [
    "ExecutionContext",
    "UserSession",
    "ConversationTurn",
    "EmptyParams",
    "ToolDefinition",
    "ToolGroup",
    "ToolLink",
    "ToolResult",
]
