"""Canonical tool definition model."""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field


class ToolGroup(str, Enum):
    """Tool groups; each specialist agent is built from one or more groups."""
    INVOICES = "invoices"
    CUSTOMERS = "customers"
    SALES = "sales"
    FINANCIAL_ANALYSIS = "financial-analysis"
    RESEARCH = "research"
    OPERATIONS = "operations"
    TIMETRACKING = "timetracking"
    TRANSACTIONS = "transactions"


class ToolLink(BaseModel):
    """Deep link into the dashboard attached to a tool result."""
    text: str
    url: str


class ToolResult(BaseModel):
    """What a tool hands back to the model: display text plus optional link."""
    text: str
    link: Optional[ToolLink] = None

    def as_model_content(self) -> str:
        """Text sent back to the model as the tool message content."""
        if self.link:
            return f"{self.text}\n\n[{self.link.text}]({self.link.url})"
        return self.text


class EmptyParams(BaseModel):
    """Parameter model for tools that take no arguments."""
    model_config = ConfigDict(extra="ignore")


ToolExecutor = Callable[[Any, Any], Awaitable[Union[ToolResult, str]]]


class ToolDefinition(BaseModel):
    """A tenant-scoped data tool the model may call."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., description="Tool name as exposed to the model")
    description: str = Field(..., description="Tool description shown to the model")
    group: ToolGroup = Field(..., description="Tool group")
    parameters_model: Type[BaseModel] = Field(..., description="Pydantic model validating the arguments")
    executor: ToolExecutor = Field(..., description="async (ctx, params) -> ToolResult | str")
    writes: bool = Field(default=False, description="True if the tool creates records")
    failure_message: str = Field(default="Tool failed", description="Prefix of the failure text")

    @property
    def parameters_schema(self) -> Dict[str, Any]:
        """JSON schema of the parameters, as shown to the model."""
        schema = self.parameters_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema
