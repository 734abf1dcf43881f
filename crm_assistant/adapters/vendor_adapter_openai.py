"""OpenAI vendor adapter for Chat Completions with function tools."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from openai import AsyncOpenAI

from crm_assistant.infra.circuit_breaker import openai_circuit_breaker
from crm_assistant.infra.config import config
from crm_assistant.infra.error_handler import ConfigurationError, retry_with_backoff, wrap_llm_error
from crm_assistant.infra.metrics import llm_call_duration, llm_calls_total
from crm_assistant.infra.timeout import LLM_CALL_TIMEOUT
from crm_assistant.models.tool import ToolDefinition

logger = logging.getLogger(__name__)

PROVIDER = "openai"

_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """Lazy initialization of the shared OpenAI client."""
    global _client
    if _client is None:
        if not config.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY not configured")
        _client = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
    return _client


async def close_openai_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None


@dataclass
class ToolCall:
    """A function call requested by the model."""
    id: str
    name: str
    arguments: str  # raw JSON text as sent by the model


@dataclass
class ChatCompletionResult:
    """Provider-neutral view of one completion."""
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None

    def assistant_message(self) -> Dict[str, Any]:
        """The assistant message to append before the tool results (required by OpenAI)."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ]
        return message


def build_openai_tools(tools: Iterable[ToolDefinition]) -> List[Dict[str, Any]]:
    """
    Convert ToolDefinition objects to OpenAI tool schema.

    Args:
        tools: ToolDefinition objects

    Returns:
        List of OpenAI tool dicts in OpenAI format
    """
    openai_tools = []
    for tool in tools:
        openai_tool = {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema or {},
            }
        }
        openai_tools.append(openai_tool)
    return openai_tools


def _parse_completion(response: Any) -> ChatCompletionResult:
    if not response.choices:
        return ChatCompletionResult()
    choice = response.choices[0]
    message = choice.message
    tool_calls = [
        ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
        for tc in (message.tool_calls or [])
    ]
    return ChatCompletionResult(
        content=message.content or "",
        tool_calls=tool_calls,
        finish_reason=choice.finish_reason,
    )


async def call_openai_chat(
    messages: List[Dict[str, Any]],
    tools: Optional[List[Dict[str, Any]]] = None,
    model: Optional[str] = None,
    purpose: str = "dispatch",
    response_format: Optional[Dict[str, Any]] = None,
    temperature: Optional[float] = None,
    timeout: float = LLM_CALL_TIMEOUT,
    max_retries: int = 2,
) -> ChatCompletionResult:
    """
    One chat completion guarded by circuit breaker, retry and timeout.

    Args:
        messages: OpenAI chat messages
        tools: OpenAI tool dicts (see build_openai_tools)
        model: Model name, defaults to OPENAI_MODEL
        purpose: Metric label ("triage" or "dispatch")
        response_format: e.g. {"type": "json_object"}
        temperature: Sampling temperature
        timeout: Seconds allowed for one attempt
        max_retries: Retries for retryable provider errors

    Raises:
        ConfigurationError: API key missing
        AssistantError: wrapped provider error after retries
    """
    client = get_openai_client()
    model = model or config.OPENAI_MODEL

    kwargs: Dict[str, Any] = {"model": model, "messages": messages}
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"
    if response_format:
        kwargs["response_format"] = response_format
    if temperature is not None:
        kwargs["temperature"] = temperature

    async def call_llm():
        # A timed-out attempt is a breaker failure
        try:
            return await asyncio.wait_for(client.chat.completions.create(**kwargs), timeout=timeout)
        except Exception as e:
            raise wrap_llm_error(e, PROVIDER) from e

    async def call_llm_with_circuit_breaker():
        return await openai_circuit_breaker.call_async(call_llm)

    def on_retry(e: Exception, attempt: int) -> None:
        logger.warning(
            "Retrying LLM call",
            extra={"purpose": purpose, "model": model, "attempt": attempt, "error": str(e)},
        )

    start_time = time.time()
    try:
        response = await retry_with_backoff(
            call_llm_with_circuit_breaker,
            max_retries=max_retries,
            initial_delay=1.0,
            max_delay=10.0,
            on_retry=on_retry,
        )
    except Exception:
        llm_calls_total.labels(purpose=purpose, model=model, status="failure").inc()
        raise

    llm_calls_total.labels(purpose=purpose, model=model, status="success").inc()
    llm_call_duration.labels(purpose=purpose, model=model).observe(time.time() - start_time)
    return _parse_completion(response)


async def stream_openai_chat(
    messages: List[Dict[str, Any]],
    tools: Optional[List[Dict[str, Any]]] = None,
    model: Optional[str] = None,
    timeout: float = LLM_CALL_TIMEOUT,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Stream one chat completion.

    Yields {"type": "text-delta", "delta": str} for each content chunk and a
    final {"type": "completion", "result": ChatCompletionResult} carrying the
    aggregated text and tool calls. Only opening the stream is retried.
    """
    client = get_openai_client()
    model = model or config.OPENAI_MODEL

    kwargs: Dict[str, Any] = {"model": model, "messages": messages, "stream": True}
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"

    async def open_stream():
        try:
            return await asyncio.wait_for(client.chat.completions.create(**kwargs), timeout=timeout)
        except Exception as e:
            raise wrap_llm_error(e, PROVIDER) from e

    async def open_with_circuit_breaker():
        return await openai_circuit_breaker.call_async(open_stream)

    start_time = time.time()
    try:
        stream = await retry_with_backoff(open_with_circuit_breaker, max_retries=2, initial_delay=1.0, max_delay=10.0)
    except Exception:
        llm_calls_total.labels(purpose="stream", model=model, status="failure").inc()
        raise

    content_parts: List[str] = []
    partial_calls: Dict[int, Dict[str, str]] = {}
    finish_reason = None

    async for chunk in stream:
        if not chunk.choices:
            continue
        choice = chunk.choices[0]
        delta = choice.delta
        if delta.content:
            content_parts.append(delta.content)
            yield {"type": "text-delta", "delta": delta.content}
        for tc in delta.tool_calls or []:
            # Tool call fragments arrive keyed by index
            entry = partial_calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
            if tc.id:
                entry["id"] = tc.id
            if tc.function and tc.function.name:
                entry["name"] += tc.function.name
            if tc.function and tc.function.arguments:
                entry["arguments"] += tc.function.arguments
        if choice.finish_reason:
            finish_reason = choice.finish_reason

    llm_calls_total.labels(purpose="stream", model=model, status="success").inc()
    llm_call_duration.labels(purpose="stream", model=model).observe(time.time() - start_time)

    tool_calls = [
        ToolCall(id=entry["id"], name=entry["name"], arguments=entry["arguments"] or "{}")
        for _, entry in sorted(partial_calls.items())
    ]
    yield {
        "type": "completion",
        "result": ChatCompletionResult(
            content="".join(content_parts),
            tool_calls=tool_calls,
            finish_reason=finish_reason,
        ),
    }
