"""Tests for podium/agents/llm_executor.py: tool-calling loop over a stubbed client."""

import json
from unittest.mock import MagicMock

from podium.agents.executor import ToolAccess, ToolExecution
from podium.agents.llm_executor import MAX_TOOL_RESULT_CHARS, LLMAgentExecutor
from podium.core.config import AgentsConfig
from podium.core.exceptions import LLMError
from podium.core.models import ReplayConfig
from podium.llm.client import LLMResponse, LLMToolCall


class _Calculator(ToolAccess):
    def __init__(self, data=None):
        self.data = {"result": 4} if data is None else data

    def names(self):
        return ["calculator"]

    def prompt_section(self):
        return "calculator: evaluate arithmetic"

    def openai_tools(self):
        return [{"type": "function", "function": {"name": "calculator"}}]

    def execute(self, name, args, context):
        return ToolExecution(success=True, summary="calculator returned 4", data=self.data)


def _client(*responses):
    client = MagicMock()
    client.complete_with_fallback.side_effect = list(responses)
    return client


class TestLLMAgentExecutor:
    def test_tool_loop(self, model_router):
        client = _client(
            LLMResponse(
                content="I will compute this with the calculator first.",
                model="m",
                input_tokens=10,
                output_tokens=5,
                tool_calls=[LLMToolCall("call-1", "calculator", '{"expression": "2+2"}')],
            ),
            LLMResponse(content="The answer is 4 because the calculator confirmed it.", model="m",
                        input_tokens=20, output_tokens=8),
        )
        executor = LLMAgentExecutor(client, model_router)

        result = executor.execute("agent-1", "What is 2+2?", tools=_Calculator())

        assert result.success is True
        assert result.response == (
            "I will compute this with the calculator first.\n"
            "The answer is 4 because the calculator confirmed it."
        )
        assert result.tokens_used == 43
        assert [step.thought for step in result.reasoning] == [
            "I will compute this with the calculator first.",
            "[Tool calculator] calculator returned 4",
            "The answer is 4 because the calculator confirmed it.",
        ]
        [usage] = result.tool_usage
        assert usage.input == {"expression": "2+2"}
        assert usage.turn_index == 1

        second_messages = client.complete_with_fallback.call_args_list[1].kwargs["messages"]
        tool_message = second_messages[-1]
        assert tool_message.role == "tool"
        assert tool_message.tool_call_id == "call-1"
        assert json.loads(tool_message.content) == {"result": 4}
        assert second_messages[-2].tool_calls[0]["function"]["name"] == "calculator"

    def test_system_prompt_has_persona_tools_and_replay(self, model_router):
        client = _client(LLMResponse(content="Done with the analysis of the task.", model="m"))
        replay = ReplayConfig(source_task_id="t-9", source_agent_id="agent-2")
        LLMAgentExecutor(client, model_router).execute("agent-2", "p", tools=_Calculator(), replay=replay)

        system = client.complete_with_fallback.call_args.kwargs["messages"][0]
        assert system.role == "system"
        assert "lateral thinker" in system.content
        assert "calculator: evaluate arithmetic" in system.content
        assert "Reference race: t-9" in system.content

    def test_turn_budget(self, model_router):
        looping = LLMResponse(content="", model="m", tool_calls=[LLMToolCall("c", "calculator", "{}")])
        client = _client(*[looping] * 5)
        result = LLMAgentExecutor(client, model_router, AgentsConfig(max_turns=2)).execute(
            "agent-1", "p", tools=_Calculator()
        )
        assert client.complete_with_fallback.call_count == 2
        assert result.response == "No final text response was produced."
        assert len(result.tool_usage) == 2

    def test_large_tool_output_truncated(self, model_router):
        client = _client(
            LLMResponse(content="", model="m", tool_calls=[LLMToolCall("c", "calculator", "{}")]),
            LLMResponse(content="Final answer after reading the output.", model="m"),
        )
        LLMAgentExecutor(client, model_router).execute("agent-1", "p", tools=_Calculator(data="x" * 20000))

        tool_message = client.complete_with_fallback.call_args_list[1].kwargs["messages"][-1]
        assert tool_message.content.endswith("...[truncated]")
        assert len(tool_message.content) == MAX_TOOL_RESULT_CHARS + len("...[truncated]")

    def test_llm_error_is_failed_result(self, model_router):
        client = _client(LLMError("All models failed."))
        result = LLMAgentExecutor(client, model_router).execute("agent-1", "p")
        assert result.success is False
        assert "All models failed" in result.error

    def test_preflight_uses_client_and_router(self, model_router):
        client = MagicMock()
        LLMAgentExecutor(client, model_router).preflight()
        client.require_api_key.assert_called_once()

    def test_nameless_tool_call_still_gets_a_reply(self, model_router):
        client = _client(
            LLMResponse(content="", model="m", tool_calls=[
                LLMToolCall("call-blank", "  ", "{}"),
                LLMToolCall("call-2", "calculator", '{"expression": "2+2"}'),
            ]),
            LLMResponse(content="Final answer is 4 from the calculator.", model="m"),
        )
        result = LLMAgentExecutor(client, model_router).execute("agent-1", "p", tools=_Calculator())

        messages = client.complete_with_fallback.call_args_list[1].kwargs["messages"]
        replies = {m.tool_call_id: json.loads(m.content) for m in messages if m.role == "tool"}
        assert set(replies) == {"call-blank", "call-2"}
        assert "missing a function name" in replies["call-blank"]["error"]
        assert replies["call-2"] == {"result": 4}
        assert [usage.name for usage in result.tool_usage] == ["calculator"]
