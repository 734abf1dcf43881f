"""Dispatch loop: drive a specialist's model/tool conversation to a reply."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence

from crm_assistant.adapters.vendor_adapter_openai import (
    ChatCompletionResult,
    ToolCall,
    build_openai_tools,
    call_openai_chat,
    stream_openai_chat,
)
from crm_assistant.infra.config import config
from crm_assistant.infra.error_handler import GenerationFailure, ToolArgumentsError
from crm_assistant.models.context import ExecutionContext
from crm_assistant.models.conversation import ConversationTurn
from crm_assistant.models.tool import ToolDefinition
from crm_assistant.services.agents import system_prompt
from crm_assistant.services.messages import get_message
from crm_assistant.services.tool_execution_engine import execute_tool_call
from crm_assistant.services.tool_registry import tools_for_agent

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """Result of one model-requested tool call, as sent back to the model."""
    tool_name: str
    tool_call_id: str
    text: str
    ok: bool = True

    def as_message(self) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.text}


@dataclass
class GenerationStep:
    text: str
    tool_results: List[ToolOutcome] = field(default_factory=list)


@dataclass
class GenerationResult:
    """
    Outcome of a generation run.

    `text` is the final model text (empty when the step cap was reached
    mid tool use); `tool_results` are the results of the final step.
    """
    text: str
    tool_results: List[ToolOutcome]
    steps: List[GenerationStep]

    @classmethod
    def from_steps(cls, steps: List[GenerationStep]) -> "GenerationResult":
        if not steps:
            return cls(text="", tool_results=[], steps=[])
        last = steps[-1]
        text = "" if last.tool_results else last.text
        return cls(text=text, tool_results=list(last.tool_results), steps=steps)


@dataclass
class StreamEvent:
    """One event of a streamed reply ("text-delta", "tool-call", "tool-result" or "done")."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> Dict[str, Any]:
        return {"type": self.type, **self.data}


def build_messages(
    system: str,
    history: Sequence[ConversationTurn],
    user_message: str,
    replay_limit: int = config.CHAT_REPLAY_LIMIT,
) -> List[Dict[str, Any]]:
    """System message, the last `replay_limit` turns (oldest first), then the new message."""
    replayed = list(history)[-replay_limit:] if replay_limit > 0 else []
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
    messages.extend(turn.as_llm_message() for turn in replayed)
    messages.append({"role": "user", "content": user_message})
    return messages


def _parse_arguments(call: ToolCall) -> Dict[str, Any]:
    """
    Raises:
        ToolArgumentsError: If the arguments are not a JSON object
    """
    try:
        args = json.loads(call.arguments or "{}")
    except json.JSONDecodeError as e:
        raise ToolArgumentsError(call.name, f"arguments are not valid JSON ({e.msg})") from e
    if args is None:
        return {}
    if not isinstance(args, dict):
        raise ToolArgumentsError(call.name, "arguments must be a JSON object")
    return args


async def run_model_tool_call(
    ctx: ExecutionContext,
    tools: Mapping[str, ToolDefinition],
    call: ToolCall,
) -> ToolOutcome:
    """Execute one requested tool call; unknown tools and bad arguments become error results."""
    tool_def = tools.get(call.name)
    if tool_def is None:
        logger.warning(
            f"Model requested unavailable tool {call.name}",
            extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id, "tool_name": call.name},
        )
        return ToolOutcome(call.name, call.id, f"❌ Unknown tool: {call.name}", ok=False)

    try:
        args = _parse_arguments(call)
        result = await execute_tool_call(ctx, tool_def, args)
    except ToolArgumentsError as e:
        logger.warning(
            e.message,
            extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id, "tool_name": call.name},
        )
        return ToolOutcome(call.name, call.id, f"❌ {e.message}", ok=False)
    return ToolOutcome(call.name, call.id, result.as_model_content())


async def _run_step_tools(
    ctx: ExecutionContext,
    tools: Mapping[str, ToolDefinition],
    completion: ChatCompletionResult,
    messages: List[Dict[str, Any]],
) -> List[ToolOutcome]:
    messages.append(completion.assistant_message())
    outcomes = []
    for call in completion.tool_calls:
        outcome = await run_model_tool_call(ctx, tools, call)
        messages.append(outcome.as_message())
        outcomes.append(outcome)
    return outcomes


async def run_generation(
    ctx: ExecutionContext,
    messages: List[Dict[str, Any]],
    tools: Mapping[str, ToolDefinition],
    max_steps: int = config.MAX_TOOL_STEPS,
) -> GenerationResult:
    """
    Alternate model calls and tool executions for at most `max_steps` model calls.

    Raises:
        AssistantError: If a model call fails after retries
    """
    messages = list(messages)
    openai_tools = build_openai_tools(tools.values()) or None
    steps: List[GenerationStep] = []

    for _ in range(max_steps):
        completion = await call_openai_chat(messages, tools=openai_tools, purpose="dispatch")
        if not completion.tool_calls:
            steps.append(GenerationStep(text=completion.content))
            break
        outcomes = await _run_step_tools(ctx, tools, completion, messages)
        steps.append(GenerationStep(text=completion.content, tool_results=outcomes))
    else:
        logger.info(
            f"Step cap of {max_steps} reached",
            extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id},
        )

    return GenerationResult.from_steps(steps)


def final_text(result: GenerationResult) -> str:
    return result.text.strip()


def last_top_level_tool_result(result: GenerationResult) -> str:
    if result.tool_results:
        return result.tool_results[-1].text.strip()
    return ""


def last_step_tool_result(result: GenerationResult) -> str:
    """Most recent tool result of any step."""
    for step in reversed(result.steps):
        if step.tool_results:
            return step.tool_results[-1].text.strip()
    return ""


EXTRACTION_STRATEGIES: List[Callable[[GenerationResult], str]] = [
    final_text,
    last_top_level_tool_result,
    last_step_tool_result,
]


def extract_response_text(result: GenerationResult) -> str:
    """First non-empty answer among the extraction strategies, else ""."""
    for strategy in EXTRACTION_STRATEGIES:
        text = strategy(result)
        if text:
            return text
    return ""


def _prepare(agent_name: str, ctx: ExecutionContext, history, user_message: str, working_memory: Optional[str]):
    tools = tools_for_agent(agent_name)
    messages = build_messages(system_prompt(agent_name, ctx, working_memory), history, user_message)
    return tools, messages


def _log_generation_failure(e: Exception, agent_name: str, ctx: ExecutionContext) -> None:
    failure = GenerationFailure(str(e) or type(e).__name__)
    logger.error(
        f"Generation failed: {failure.message}",
        extra={
            "tenant_id": ctx.tenant_id,
            "conversation_id": ctx.conversation_id,
            "agent": str(getattr(agent_name, "value", agent_name)),
            "error_category": failure.category.value,
        },
        exc_info=True,
    )


async def respond(
    agent_name: str,
    ctx: ExecutionContext,
    history: Sequence[ConversationTurn],
    user_message: str,
    working_memory: Optional[str] = None,
) -> str:
    """
    Produce the specialist's reply. Never raises and never returns "".

    Generation failures yield the localized apology; a run that produced
    nothing usable yields the localized "no answer" message.
    """
    start_time = time.time()
    try:
        tools, messages = _prepare(agent_name, ctx, history, user_message, working_memory)
        result = await run_generation(ctx, messages, tools)
    except Exception as e:
        _log_generation_failure(e, agent_name, ctx)
        return get_message("generation_failed", ctx.language)

    text = extract_response_text(result)
    logger.info(
        "Generated reply",
        extra={
            "tenant_id": ctx.tenant_id,
            "conversation_id": ctx.conversation_id,
            "agent": str(getattr(agent_name, "value", agent_name)),
            "steps": len(result.steps),
            "latency_ms": int((time.time() - start_time) * 1000),
        },
    )
    return text or get_message("empty_response", ctx.language)


async def stream_respond(
    agent_name: str,
    ctx: ExecutionContext,
    history: Sequence[ConversationTurn],
    user_message: str,
    working_memory: Optional[str] = None,
) -> AsyncIterator[StreamEvent]:
    """
    Streamed variant of `respond`.

    Yields text deltas and tool progress; always ends with a "done" event
    whose `text` is the extracted answer (or the localized fallback).
    """
    steps: List[GenerationStep] = []
    try:
        tools, messages = _prepare(agent_name, ctx, history, user_message, working_memory)
        openai_tools = build_openai_tools(tools.values()) or None

        for _ in range(config.MAX_TOOL_STEPS):
            completion = ChatCompletionResult()
            async for chunk in stream_openai_chat(messages, tools=openai_tools):
                if chunk["type"] == "text-delta":
                    yield StreamEvent("text-delta", {"delta": chunk["delta"]})
                elif chunk["type"] == "completion":
                    completion = chunk["result"]

            if not completion.tool_calls:
                steps.append(GenerationStep(text=completion.content))
                break

            messages.append(completion.assistant_message())
            outcomes = []
            for call in completion.tool_calls:
                yield StreamEvent("tool-call", {"toolCallId": call.id, "toolName": call.name})
                outcome = await run_model_tool_call(ctx, tools, call)
                messages.append(outcome.as_message())
                outcomes.append(outcome)
                yield StreamEvent(
                    "tool-result",
                    {"toolCallId": call.id, "toolName": call.name, "success": outcome.ok},
                )
            steps.append(GenerationStep(text=completion.content, tool_results=outcomes))
    except Exception as e:
        _log_generation_failure(e, agent_name, ctx)
        yield StreamEvent("done", {"text": get_message("generation_failed", ctx.language)})
        return

    text = extract_response_text(GenerationResult.from_steps(steps))
    yield StreamEvent("done", {"text": text or get_message("empty_response", ctx.language)})
