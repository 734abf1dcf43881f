"""Tool execution: argument scoping, validation and failure absorption."""

import asyncio
import logging
import time
from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from crm_assistant.infra.error_handler import ToolArgumentsError, ToolExecutionFailure
from crm_assistant.infra.metrics import tool_call_duration, tool_calls_total
from crm_assistant.infra.timeout import TOOL_EXECUTION_TIMEOUT
from crm_assistant.models.context import ExecutionContext
from crm_assistant.models.tool import ToolDefinition, ToolResult

logger = logging.getLogger(__name__)

# Scoping comes from the execution context, never from model output
SCOPE_KEYS = ("tenant_id", "tenantId", "user_id", "userId")


def strip_scope_arguments(tool_def: ToolDefinition, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
    """Remove any tenant/user identifiers the model tried to pass."""
    removed = {key: str(args[key])[:50] for key in SCOPE_KEYS if key in args}
    if not removed:
        return args
    logger.warning(
        f"Dropped scope arguments for tool {tool_def.name}: {removed}",
        extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id, "tool_name": tool_def.name},
    )
    return {key: value for key, value in args.items() if key not in SCOPE_KEYS}


def validate_arguments(tool_def: ToolDefinition, args: Dict[str, Any]):
    """
    Validate arguments against the tool's parameter model.

    Raises:
        ToolArgumentsError: If the arguments do not match the schema
    """
    try:
        return tool_def.parameters_model.model_validate(args)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
        )
        raise ToolArgumentsError(tool_def.name, problems) from e


async def execute_tool_call(ctx: ExecutionContext, tool_def: ToolDefinition, raw_args: Dict[str, Any]) -> ToolResult:
    """
    Execute one tool call for the model.

    Argument problems raise ToolArgumentsError before any I/O. Failures
    while running the tool (query errors, timeouts) are absorbed into a
    failure ToolResult so the conversation can continue.

    Raises:
        ToolArgumentsError: If the arguments are invalid
    """
    args = strip_scope_arguments(tool_def, raw_args or {}, ctx)
    params = validate_arguments(tool_def, args)

    start_time = time.time()
    try:
        result = await asyncio.wait_for(tool_def.executor(ctx, params), timeout=TOOL_EXECUTION_TIMEOUT)
        if isinstance(result, str):
            result = ToolResult(text=result)
        tool_calls_total.labels(tool_name=tool_def.name, status="success").inc()
        return result
    except asyncio.TimeoutError:
        failure = ToolExecutionFailure(tool_def.name, f"timed out after {TOOL_EXECUTION_TIMEOUT} seconds")
    except Exception as e:
        failure = ToolExecutionFailure(tool_def.name, str(e) or type(e).__name__)
    finally:
        tool_call_duration.labels(tool_name=tool_def.name).observe(time.time() - start_time)

    tool_calls_total.labels(tool_name=tool_def.name, status="error").inc()
    logger.error(
        f"Tool {tool_def.name} failed: {failure.message}",
        extra={
            "tenant_id": ctx.tenant_id,
            "conversation_id": ctx.conversation_id,
            "tool_name": tool_def.name,
            "error_category": failure.category.value,
        },
    )
    return ToolResult(text=f"❌ {tool_def.failure_message}: {failure.message}")
