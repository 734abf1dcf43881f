"""Tests for the dispatch loop."""

import pytest
from unittest.mock import AsyncMock, patch

from crm_assistant.adapters.vendor_adapter_openai import ChatCompletionResult, ToolCall
from crm_assistant.infra.config import config
from crm_assistant.models.conversation import ConversationTurn
from crm_assistant.services.agent_dispatcher import (
    GenerationResult,
    GenerationStep,
    ToolOutcome,
    build_messages,
    extract_response_text,
    respond,
    run_generation,
    stream_respond,
)
from crm_assistant.services.messages import get_message
from crm_assistant.services.tool_registry import tools_for_agent

DISPATCH_CALL = "crm_assistant.services.agent_dispatcher.call_openai_chat"
OVERDUE_QUERY = "crm_assistant.data.invoices.overdue_invoices"


def tool_call(name: str, arguments: str = "{}", call_id: str = "call-1") -> ChatCompletionResult:
    return ChatCompletionResult(content="", tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


def text_reply(content: str) -> ChatCompletionResult:
    return ChatCompletionResult(content=content, finish_reason="stop")


class TestBuildMessages:
    """Test message assembly and history replay."""

    def test_order_and_replay_limit(self):
        """Test system first, then the last turns oldest first, then the user message."""
        history = [ConversationTurn(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}") for i in range(14)]

        messages = build_messages("SYSTEM", history, "new question", replay_limit=10)

        assert messages[0] == {"role": "system", "content": "SYSTEM"}
        assert [m["content"] for m in messages[1:-1]] == [f"turn {i}" for i in range(4, 14)]
        assert messages[-1] == {"role": "user", "content": "new question"}

    def test_empty_history(self):
        """Test a first message in a conversation."""
        messages = build_messages("SYSTEM", [], "hello")
        assert [m["role"] for m in messages] == ["system", "user"]


class TestExtractResponseText:
    """Test the ordered extraction strategies."""

    def test_final_text_wins(self):
        """Test that model text is preferred."""
        result = GenerationResult(text="The answer", tool_results=[ToolOutcome("t", "1", "tool text")], steps=[])
        assert extract_response_text(result) == "The answer"

    def test_falls_back_to_last_top_level_tool_result(self):
        """Test that the final step's last tool result is used when there is no text."""
        result = GenerationResult(
            text="  ",
            tool_results=[ToolOutcome("a", "1", "first"), ToolOutcome("b", "2", "second")],
            steps=[],
        )
        assert extract_response_text(result) == "second"

    def test_falls_back_to_earlier_step_tool_result(self):
        """Test that an earlier step's tool result is used as a last resort."""
        steps = [
            GenerationStep(text="", tool_results=[ToolOutcome("a", "1", "from step one")]),
            GenerationStep(text=""),
        ]
        result = GenerationResult(text="", tool_results=[], steps=steps)
        assert extract_response_text(result) == "from step one"

    def test_nothing_to_extract(self):
        """Test that an empty run extracts nothing."""
        assert extract_response_text(GenerationResult.from_steps([])) == ""


class TestRunGeneration:
    """Test the bounded model/tool loop."""

    @pytest.mark.asyncio
    async def test_text_reply_ends_loop(self, ctx):
        """Test that a reply without tool calls ends generation."""
        mock_call = AsyncMock(return_value=text_reply("Hello!"))
        with patch(DISPATCH_CALL, mock_call):
            result = await run_generation(ctx, [{"role": "user", "content": "hi"}], tools_for_agent("general"))

        assert result.text == "Hello!"
        assert len(result.steps) == 1
        assert mock_call.await_count == 1

    @pytest.mark.asyncio
    async def test_tool_results_are_fed_back(self, ctx):
        """Test that tool output is appended as a tool message for the next call."""
        mock_call = AsyncMock(side_effect=[tool_call("getOverdueInvoices"), text_reply("You have no overdue invoices.")])
        with patch(DISPATCH_CALL, mock_call), patch(OVERDUE_QUERY, AsyncMock(return_value=[])):
            result = await run_generation(ctx, [{"role": "user", "content": "overdue?"}], tools_for_agent("invoices"))

        second_messages = mock_call.call_args_list[1].args[0]
        assert second_messages[-2]["role"] == "assistant"
        assert second_messages[-2]["tool_calls"][0]["function"]["name"] == "getOverdueInvoices"
        assert second_messages[-1] == {
            "role": "tool",
            "tool_call_id": "call-1",
            "content": "Great news! No overdue invoices found.",
        }
        assert result.text == "You have no overdue invoices."
        assert result.tool_results == []

    @pytest.mark.asyncio
    async def test_unknown_tool_becomes_error_message(self, ctx):
        """Test that a tool outside the allow-list is reported back, not executed."""
        mock_call = AsyncMock(side_effect=[tool_call("getTransactions"), text_reply("Sorry.")])
        with patch(DISPATCH_CALL, mock_call):
            result = await run_generation(ctx, [{"role": "user", "content": "x"}], tools_for_agent("invoices"))

        outcome = result.steps[0].tool_results[0]
        assert outcome.ok is False
        assert outcome.text == "❌ Unknown tool: getTransactions"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("arguments", ['{"pageSize": 500}', "not json", "[1, 2]"])
    async def test_bad_arguments_become_error_message(self, ctx, arguments):
        """Test that invalid arguments are reported back to the model."""
        mock_call = AsyncMock(side_effect=[tool_call("getInvoices", arguments), text_reply("Retrying.")])
        list_invoices = AsyncMock()
        with patch(DISPATCH_CALL, mock_call), patch("crm_assistant.data.invoices.list_invoices", list_invoices):
            result = await run_generation(ctx, [{"role": "user", "content": "x"}], tools_for_agent("invoices"))

        outcome = result.steps[0].tool_results[0]
        assert outcome.ok is False
        assert outcome.text.startswith("❌ Invalid arguments for getInvoices")
        list_invoices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_step_cap_holds(self, ctx):
        """Test that a model that always calls tools is stopped after the step cap."""
        mock_call = AsyncMock(return_value=tool_call("getOverdueInvoices"))
        with patch(DISPATCH_CALL, mock_call), patch(OVERDUE_QUERY, AsyncMock(return_value=[])):
            result = await run_generation(ctx, [{"role": "user", "content": "x"}], tools_for_agent("invoices"))

        assert mock_call.await_count == config.MAX_TOOL_STEPS
        assert len(result.steps) == config.MAX_TOOL_STEPS
        assert result.text == ""
        assert result.tool_results[0].text == "Great news! No overdue invoices found."


class TestRespond:
    """Test that respond always produces a reply."""

    @pytest.mark.asyncio
    async def test_step_cap_answer_is_last_tool_result(self, ctx):
        """Test that hitting the step cap still answers with the last tool result."""
        mock_call = AsyncMock(return_value=tool_call("getOverdueInvoices"))
        with patch(DISPATCH_CALL, mock_call), patch(OVERDUE_QUERY, AsyncMock(return_value=[])):
            reply = await respond("invoices", ctx, [], "Show overdue invoices")

        assert reply == "Great news! No overdue invoices found."

    @pytest.mark.asyncio
    async def test_model_failure_yields_apology(self, ctx):
        """Test that a raising model produces the localized apology."""
        with patch(DISPATCH_CALL, AsyncMock(side_effect=RuntimeError("provider down"))):
            reply = await respond("general", ctx, [], "hi")

        assert reply == get_message("generation_failed", "en")

    @pytest.mark.asyncio
    async def test_apology_is_localized(self, ctx):
        """Test that the apology follows the context language."""
        from dataclasses import replace

        serbian_ctx = replace(ctx, locale="sr-RS")
        with patch(DISPATCH_CALL, AsyncMock(side_effect=RuntimeError("provider down"))):
            reply = await respond("general", serbian_ctx, [], "zdravo")

        assert reply == get_message("generation_failed", "sr")

    @pytest.mark.asyncio
    async def test_empty_model_output_yields_fallback(self, ctx):
        """Test that an empty answer is replaced by the no-answer message."""
        with patch(DISPATCH_CALL, AsyncMock(return_value=text_reply(""))):
            reply = await respond("general", ctx, [], "hi")

        assert reply == get_message("empty_response", "en")

    @pytest.mark.asyncio
    async def test_history_and_memory_reach_the_model(self, ctx):
        """Test that replayed turns and working memory are sent."""
        mock_call = AsyncMock(return_value=text_reply("ok"))
        history = [ConversationTurn(role="user", content="earlier question")]
        with patch(DISPATCH_CALL, mock_call):
            await respond("customers", ctx, history, "follow up", working_memory="Likes short answers")

        messages = mock_call.call_args.args[0]
        assert "Likes short answers" in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": "earlier question"}
        assert messages[-1] == {"role": "user", "content": "follow up"}


class TestStreamRespond:
    """Test the streamed variant."""

    @pytest.mark.asyncio
    async def test_stream_emits_deltas_tools_and_done(self, ctx):
        """Test text deltas, tool progress and the final done event."""
        completions = [
            [{"type": "completion", "result": tool_call("getOverdueInvoices")}],
            [
                {"type": "text-delta", "delta": "All "},
                {"type": "text-delta", "delta": "paid."},
                {"type": "completion", "result": text_reply("All paid.")},
            ],
        ]

        def fake_stream(messages, tools=None, model=None, timeout=None):
            chunks = completions.pop(0)

            async def generator():
                for chunk in chunks:
                    yield chunk
            return generator()

        with patch("crm_assistant.services.agent_dispatcher.stream_openai_chat", fake_stream), \
                patch(OVERDUE_QUERY, AsyncMock(return_value=[])):
            events = [event async for event in stream_respond("invoices", ctx, [], "overdue?")]

        assert [e.type for e in events] == ["tool-call", "tool-result", "text-delta", "text-delta", "done"]
        assert events[1].data["success"] is True
        assert events[-1].data == {"text": "All paid."}

    @pytest.mark.asyncio
    async def test_stream_failure_ends_with_apology(self, ctx):
        """Test that a failing stream still ends with a done event."""
        def failing_stream(messages, tools=None, model=None, timeout=None):
            async def generator():
                raise RuntimeError("stream broke")
                yield  # pragma: no cover
            return generator()

        with patch("crm_assistant.services.agent_dispatcher.stream_openai_chat", failing_stream):
            events = [event async for event in stream_respond("general", ctx, [], "hi")]

        assert events[-1].type == "done"
        assert events[-1].data["text"] == get_message("generation_failed", "en")
