"""Static registry of tenant-scoped data tools."""

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple

from crm_assistant.models.tool import ToolDefinition, ToolGroup
from crm_assistant.tools import (
    customers,
    financial_analysis,
    invoices,
    operations,
    research,
    sales,
    timetracking,
    transactions,
)

_TOOL_MODULES = (
    invoices,
    customers,
    sales,
    financial_analysis,
    research,
    operations,
    timetracking,
    transactions,
)


def build_registry(tools: Iterable[ToolDefinition]) -> Mapping[str, ToolDefinition]:
    """
    Build a read-only name -> definition mapping.

    Raises:
        ValueError: If two tools share a name
    """
    registry: Dict[str, ToolDefinition] = {}
    for tool in tools:
        if tool.name in registry:
            raise ValueError(f"Duplicate tool name in registry: {tool.name}")
        registry[tool.name] = tool
    return MappingProxyType(registry)


def _all_tools() -> List[ToolDefinition]:
    return [tool for module in _TOOL_MODULES for tool in module.TOOLS]


TOOL_REGISTRY: Mapping[str, ToolDefinition] = build_registry(_all_tools())

TOOL_GROUPS: Mapping[ToolGroup, Tuple[str, ...]] = MappingProxyType({
    group: tuple(name for name, tool in TOOL_REGISTRY.items() if tool.group == group)
    for group in ToolGroup
})


def tools_for_agent(agent_name: str) -> Mapping[str, ToolDefinition]:
    """
    Tools a specialist may call, projected from the registry.

    `general` and unknown agent names get the full registry.
    """
    # Imported here: agents builds its allow-lists from TOOL_GROUPS
    from crm_assistant.services.agents import SPECIALISTS, AgentName, resolve_agent_name

    agent = SPECIALISTS.get(resolve_agent_name(agent_name))
    if agent is None or agent.name == AgentName.GENERAL:
        return TOOL_REGISTRY
    return MappingProxyType({name: TOOL_REGISTRY[name] for name in TOOL_REGISTRY if name in agent.tool_names})
