"""Agent executor backed by an OpenAI-compatible chat endpoint (OpenRouter).

Runs a bounded tool-calling loop: each turn the model may answer, call
tools, or both. Tool results are fed back as `tool` messages until the model
stops calling tools or the turn budget is spent.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from podium.agents.executor import AgentExecutor, AgentSession, extract_reasoning_candidates, replay_guidance_block
from podium.core.config import AgentsConfig
from podium.llm.client import LLMMessage, OpenRouterClient
from podium.llm.router import ModelRouter

MAX_TOOL_RESULT_CHARS = 12000
THOUGHTS_PER_TURN = 2


class LLMAgentExecutor(AgentExecutor):
    """Answers a task as one persona using the `agent` model role."""

    def __init__(
        self,
        client: OpenRouterClient,
        router: ModelRouter,
        config: Optional[AgentsConfig] = None,
    ):
        super().__init__(name="LLMExecutor")
        self.client = client
        self.router = router
        self.config = config or AgentsConfig()

    def preflight(self) -> None:
        self.client.require_api_key()
        self.router.get_model_chain("agent")

    def build_system_prompt(self, session: AgentSession) -> str:
        return "\n".join([
            session.persona.system_prompt,
            replay_guidance_block(session.replay),
            "",
            session.tools.prompt_section(),
            "",
            "When you use a tool, explain briefly why it helps and how you used its output.",
        ])

    def process(self, session: AgentSession) -> str:
        models = self.router.get_model_chain("agent")
        tools = session.tools.openai_tools() or None
        system = LLMMessage(role="system", content=self.build_system_prompt(session))
        messages: list[LLMMessage] = [LLMMessage(role="user", content=session.prompt)]
        final_response = ""

        for turn in range(self.config.max_turns):
            session.check_deadline()
            response = self.client.complete_with_fallback(
                messages=[system, *messages],
                models=models,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                tools=tools,
            )
            session.tokens_used += response.input_tokens + response.output_tokens

            if response.content:
                final_response += f"{response.content}\n"
                for thought in extract_reasoning_candidates(response.content)[:THOUGHTS_PER_TURN]:
                    session.push_reasoning(thought)

            messages.append(LLMMessage(
                role="assistant",
                content=response.content or None,
                tool_calls=[call.to_dict() for call in response.tool_calls] or None,
            ))
            if not response.tool_calls:
                break

            for call in response.tool_calls:
                # every tool_call_id needs a tool reply or the next turn is rejected
                if not call.name.strip():
                    payload: Any = {"error": "Tool call is missing a function name", "data": None}
                    messages.append(LLMMessage(
                        role="tool",
                        content=json.dumps(payload),
                        tool_call_id=call.id,
                    ))
                    continue
                session.check_deadline()
                execution = session.call_tool(call.name, call.parsed_arguments(), turn_index=turn + 1)
                payload = execution.data if execution.success else {
                    "error": execution.error or execution.summary,
                    "data": execution.data,
                }
                messages.append(LLMMessage(
                    role="tool",
                    content=_truncate(json.dumps(payload, default=str)),
                    tool_call_id=call.id,
                ))

        return final_response


def _truncate(text: str) -> str:
    if len(text) <= MAX_TOOL_RESULT_CHARS:
        return text
    return f"{text[:MAX_TOOL_RESULT_CHARS]}...[truncated]"
