"""Agent executor contract and shared reasoning/telemetry helpers.

Every executor follows the same lifecycle:
1. execute() opens an AgentSession for one agent slot and one task.
2. process() produces the final answer, pushing reasoning steps and
   recording tool calls on the session as it goes.
3. execute() turns the session into an immutable AgentRunResult.

execute() never raises for recoverable errors. A failure inside process()
becomes a failure-flagged result carrying whatever reasoning and tool calls
were captured before it.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from podium.agents.personas import AgentPersona, persona_for
from podium.core.exceptions import AgentExecutionError
from podium.core.models import (
    AgentRunResult,
    AgentTelemetry,
    ReasoningStep,
    ReplayConfig,
    ToolCallRecord,
)

StepCallback = Callable[[ReasoningStep], None]

VERIFICATION_TOOLS = frozenset({"web-search", "calculator", "code-executor", "file-reader"})

_CONFIDENCE_KEYWORDS = re.compile(
    r"\b(because|therefore|however|assume|constraint|tradeoff|evidence|risk|verify|edge case)\b",
    re.IGNORECASE,
)
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
MIN_THOUGHT_CHARS = 20


# ---------------------------------------------------------------------------
# Reasoning & telemetry helpers
# ---------------------------------------------------------------------------

def estimate_confidence(thought: str, step: int) -> float:
    """Heuristic confidence for a reasoning step, in [0.55, 0.95]."""
    score = 0.62
    if len(thought) > 80:
        score += 0.08
    if len(thought) > 140:
        score += 0.05
    if any(ch.isdigit() for ch in thought):
        score += 0.03
    if _CONFIDENCE_KEYWORDS.search(thought):
        score += 0.12
    if "?" in thought:
        score -= 0.04
    if step <= 2:
        score += 0.03
    return max(0.55, min(0.95, round(score, 2)))


def extract_reasoning_candidates(text: str) -> list[str]:
    """Split text into sentence-sized chunks worth recording as thoughts."""
    chunks = []
    for line in text.split("\n"):
        for chunk in _SENTENCE_BREAK.split(line):
            chunk = chunk.strip()
            if len(chunk) >= MIN_THOUGHT_CHARS:
                chunks.append(chunk)
    return chunks


def build_telemetry(tool_usage: Sequence[ToolCallRecord]) -> AgentTelemetry:
    first = tool_usage[0] if tool_usage else None
    return AgentTelemetry(
        tool_call_count=len(tool_usage),
        successful_tool_calls=sum(1 for record in tool_usage if record.success),
        verification_steps=sum(1 for record in tool_usage if record.name in VERIFICATION_TOOLS),
        first_tool_name=first.name if first else None,
        first_tool_turn=first.turn_index if first else None,
        used_search_first=bool(first and first.name == "web-search"),
        tool_sequence=[record.name for record in tool_usage],
    )


def replay_guidance_block(replay: Optional[ReplayConfig]) -> str:
    """System-prompt block steering an agent from a prior winning strategy."""
    if replay is None:
        return ""
    steps = "\n".join(f"{i}. {step}" for i, step in enumerate(replay.reasoning_path[:6], start=1))
    tool_sequence = " -> ".join(replay.tool_sequence) if replay.tool_sequence else "no-tools"
    return "\n".join([
        "Replay guidance mode is enabled for this run.",
        f"Reference race: {replay.source_task_id}",
        f"Reference strategy: {replay.source_strategy_id or 'n/a'}",
        f"Reference persona: {replay.source_persona or replay.source_agent_id}",
        f"Reference tool sequence: {tool_sequence}",
        "Reference reasoning path (adapt to current prompt, do not copy blindly):",
        steps or "1. no reasoning path provided",
        "Instruction: start from this prior strategy, then adapt based on current task details and tool outputs.",
    ])


def failed_result(
    agent_id: str,
    error: str,
    time_ms: int = 0,
    persona: Optional[AgentPersona] = None,
) -> AgentRunResult:
    """A failure-flagged result with no output."""
    persona = persona or persona_for(agent_id)
    return AgentRunResult(
        agent_id=agent_id,
        persona=persona.name,
        time_ms=time_ms,
        success=False,
        error=error,
    )


# ---------------------------------------------------------------------------
# Tool access contract
# ---------------------------------------------------------------------------

@dataclass
class ToolContext:
    agent_id: str
    task_prompt: str


@dataclass
class ToolExecution:
    success: bool
    summary: str
    data: Any = None
    error: Optional[str] = None


class ToolAccess(ABC):
    """Sandboxed tools an agent may call. Implementations live outside Podium."""

    @abstractmethod
    def names(self) -> list[str]:
        """Names of the tools this access grants."""

    @abstractmethod
    def prompt_section(self) -> str:
        """System-prompt text describing the available tools."""

    @abstractmethod
    def openai_tools(self) -> list[dict[str, Any]]:
        """OpenAI-style function definitions for the available tools."""

    @abstractmethod
    def execute(self, name: str, args: dict[str, Any], context: ToolContext) -> ToolExecution:
        """Run one tool call. Must report failures in the ToolExecution, not raise."""

    def restrict(self, names: Sequence[str]) -> "ToolAccess":
        """Access limited to the given tool names."""
        return _RestrictedTools(self, names)


class NoTools(ToolAccess):
    """Grants nothing."""

    def names(self) -> list[str]:
        return []

    def prompt_section(self) -> str:
        return "No tools are available for this task. Answer from your own reasoning."

    def openai_tools(self) -> list[dict[str, Any]]:
        return []

    def execute(self, name: str, args: dict[str, Any], context: ToolContext) -> ToolExecution:
        return ToolExecution(success=False, summary=f"Tool {name} is not available", error="unavailable")

    def restrict(self, names: Sequence[str]) -> ToolAccess:
        return self


class _RestrictedTools(ToolAccess):
    def __init__(self, inner: ToolAccess, names: Sequence[str]):
        self.inner = inner
        self.allowed = [name for name in inner.names() if name in set(names)]

    def names(self) -> list[str]:
        return list(self.allowed)

    def prompt_section(self) -> str:
        if not self.allowed:
            return NoTools().prompt_section()
        return self.inner.prompt_section()

    def openai_tools(self) -> list[dict[str, Any]]:
        return [
            tool for tool in self.inner.openai_tools()
            if tool.get("function", {}).get("name") in self.allowed
        ]

    def execute(self, name: str, args: dict[str, Any], context: ToolContext) -> ToolExecution:
        if name not in self.allowed:
            return ToolExecution(success=False, summary=f"Tool {name} is not enabled for this task", error="disabled")
        return self.inner.execute(name, args, context)


# ---------------------------------------------------------------------------
# Executor contract
# ---------------------------------------------------------------------------

class AgentSession:
    """Mutable per-agent state while one agent works on one task."""

    def __init__(
        self,
        agent_id: str,
        prompt: str,
        tools: ToolAccess,
        timeout_seconds: float,
        on_step: Optional[StepCallback] = None,
        replay: Optional[ReplayConfig] = None,
        cancelled: Optional[threading.Event] = None,
    ):
        self.agent_id = agent_id
        self.persona = persona_for(agent_id)
        self.prompt = prompt
        self.tools = tools
        self.replay = replay
        self.on_step = on_step
        self.cancelled = cancelled or threading.Event()
        self.started = time.monotonic()
        self.deadline = self.started + timeout_seconds
        self.timeout_seconds = timeout_seconds
        self.reasoning: list[ReasoningStep] = []
        self.tool_usage: list[ToolCallRecord] = []
        self.tokens_used = 0

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def remaining_seconds(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def check_deadline(self) -> None:
        if self.cancelled.is_set() or time.monotonic() >= self.deadline:
            raise AgentExecutionError(
                self.agent_id, f"timeout after {self.timeout_seconds:g}s"
            )

    def push_reasoning(self, thought: str) -> ReasoningStep:
        step_number = len(self.reasoning) + 1
        step = ReasoningStep(
            step=step_number,
            thought=thought,
            confidence=estimate_confidence(thought, step_number),
        )
        self.reasoning.append(step)
        if self.on_step is not None:
            self.on_step(step)
        return step

    def call_tool(self, name: str, args: dict[str, Any], turn_index: int) -> ToolExecution:
        started = time.monotonic()
        execution = self.tools.execute(name, args, ToolContext(self.agent_id, self.prompt))
        self.tool_usage.append(ToolCallRecord(
            name=name,
            input=args,
            success=execution.success,
            summary=execution.summary,
            duration_ms=int((time.monotonic() - started) * 1000),
            turn_index=turn_index,
            call_index=len(self.tool_usage) + 1,
        ))
        self.push_reasoning(f"[Tool {name}] {execution.summary}")
        return execution

    def to_result(self, response: str) -> AgentRunResult:
        return AgentRunResult(
            agent_id=self.agent_id,
            persona=self.persona.name,
            response=response,
            reasoning=list(self.reasoning),
            tokens_used=self.tokens_used,
            time_ms=self.elapsed_ms,
            success=True,
            tool_usage=list(self.tool_usage),
            telemetry=build_telemetry(self.tool_usage),
        )

    def to_failure(self, error: str) -> AgentRunResult:
        return AgentRunResult(
            agent_id=self.agent_id,
            persona=self.persona.name,
            reasoning=list(self.reasoning),
            tokens_used=self.tokens_used,
            time_ms=self.elapsed_ms,
            success=False,
            error=error,
            tool_usage=list(self.tool_usage),
            telemetry=build_telemetry(self.tool_usage),
        )


class AgentExecutor(ABC):
    """Base class for everything that can answer a task as one agent slot.

    Subclasses implement process(). They receive their dependencies via
    __init__ injection.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"podium.agent.{name.lower()}")
        self._metrics_lock = threading.Lock()
        self._metrics: dict[str, Any] = {
            "total_processed": 0,
            "total_errors": 0,
            "last_duration_seconds": 0.0,
        }

    def preflight(self) -> None:
        """Raise ConfigError when the executor is misconfigured."""

    @abstractmethod
    def process(self, session: AgentSession) -> str:
        """Produce the agent's final answer for session.prompt."""

    def execute(
        self,
        agent_id: str,
        prompt: str,
        tools: Optional[ToolAccess] = None,
        timeout_seconds: float = 120.0,
        on_step: Optional[StepCallback] = None,
        replay: Optional[ReplayConfig] = None,
        cancelled: Optional[threading.Event] = None,
    ) -> AgentRunResult:
        """Run one agent with lifecycle logging. Never raises for agent failures."""
        session = AgentSession(
            agent_id, prompt, tools or NoTools(), timeout_seconds, on_step, replay, cancelled
        )
        self.logger.debug("[%s] Starting %s (%s)", self.name, agent_id, session.persona.name)

        try:
            response = self.process(session).strip()
            if not response:
                response = "No final text response was produced."
            if not session.reasoning:
                for thought in extract_reasoning_candidates(response)[:3]:
                    session.push_reasoning(thought)
            result = session.to_result(response)
            self._record(session, failed=False)
            self.logger.info(
                "[%s] %s complete (%d tokens, %d reasoning steps, %d tool calls)",
                self.name, agent_id, result.tokens_used, len(result.reasoning), len(result.tool_usage),
            )
            return result
        except AgentExecutionError as e:
            self._record(session, failed=True)
            self.logger.warning("[%s] %s", self.name, e)
            return session.to_failure(str(e))
        except Exception as e:
            self._record(session, failed=True)
            self.logger.error("[%s] %s error: %s", self.name, agent_id, e, exc_info=True)
            return session.to_failure(str(e))

    def _record(self, session: AgentSession, failed: bool) -> None:
        with self._metrics_lock:
            key = "total_errors" if failed else "total_processed"
            self._metrics[key] += 1
            self._metrics["last_duration_seconds"] = session.elapsed_ms / 1000

    def get_metrics(self) -> dict[str, Any]:
        with self._metrics_lock:
            return self._metrics.copy()
