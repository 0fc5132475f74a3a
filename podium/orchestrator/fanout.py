"""Concurrent fan-out/join over the agents of one race.

All agents are submitted at once. The join waits at most the per-agent
deadline; agents still running after it become failed results and their
late reasoning steps are dropped. One slow or crashing agent never blocks
or cancels its siblings.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Optional, Sequence

from podium.agents.executor import AgentExecutor, NoTools, ToolAccess, failed_result
from podium.core.models import AgentRunResult, ReasoningStep, ReplayConfig
from podium.orchestrator.progress import ProgressBus

logger = logging.getLogger("podium.orchestrator.fanout")


class _AgentSlot:
    """Settlement state for one agent. Settles exactly once."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        self.lock = threading.Lock()
        self.cancelled = threading.Event()
        self.settled = False
        self.result: Optional[AgentRunResult] = None

    def settle(self, result: AgentRunResult) -> bool:
        with self.lock:
            if self.settled:
                return False
            self.settled = True
            self.result = result
            return True


class FanOutRunner:
    """Runs N agents in a thread pool with a shared deadline."""

    def __init__(self, executor: AgentExecutor, bus: ProgressBus, timeout_seconds: float = 120.0):
        self.executor = executor
        self.bus = bus
        self.timeout_seconds = timeout_seconds

    def run(
        self,
        task_id: str,
        agent_ids: Sequence[str],
        prompt: str,
        tools: Optional[ToolAccess] = None,
        replay: Optional[ReplayConfig] = None,
    ) -> list[AgentRunResult]:
        """Return one result per agent id, in agent id order."""
        tools = tools or NoTools()
        slots = {agent_id: _AgentSlot(agent_id) for agent_id in agent_ids}
        started = time.monotonic()

        pool = ThreadPoolExecutor(max_workers=max(1, len(slots)), thread_name_prefix="podium-agent")
        try:
            futures = [
                pool.submit(
                    self._run_one,
                    task_id,
                    slot,
                    prompt,
                    tools,
                    replay if replay and replay.source_agent_id == slot.agent_id else None,
                )
                for slot in slots.values()
            ]
            wait(futures, timeout=self.timeout_seconds)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        for slot in slots.values():
            timeout_result = failed_result(
                slot.agent_id,
                f"Agent {slot.agent_id} timeout after {self.timeout_seconds:g}s",
                time_ms=int((time.monotonic() - started) * 1000),
            )
            if slot.settle(timeout_result):
                slot.cancelled.set()
                logger.warning("Agent %s timed out after %gs", slot.agent_id, self.timeout_seconds)
                self._emit_complete(task_id, timeout_result)

        return [slots[agent_id].result for agent_id in agent_ids]

    def _run_one(
        self,
        task_id: str,
        slot: _AgentSlot,
        prompt: str,
        tools: ToolAccess,
        replay: Optional[ReplayConfig],
    ) -> None:
        def on_step(step: ReasoningStep) -> None:
            # holding the slot lock keeps steps from racing agent_complete
            with slot.lock:
                if slot.settled:
                    return
                self.bus.emit(
                    task_id,
                    "reasoning_step",
                    agent_id=slot.agent_id,
                    step=step.step,
                    thought=step.thought,
                    confidence=step.confidence,
                )

        try:
            result = self.executor.execute(
                slot.agent_id,
                prompt,
                tools=tools,
                timeout_seconds=self.timeout_seconds,
                on_step=on_step,
                replay=replay,
                cancelled=slot.cancelled,
            )
        except Exception as e:
            logger.error("Agent %s raised: %s", slot.agent_id, e, exc_info=True)
            result = failed_result(slot.agent_id, str(e))

        if not slot.settle(result):
            logger.debug("Dropping late result from %s", slot.agent_id)
            return

        if result.success:
            logger.info(
                "Agent %s (%s) completed (%d tokens, %d reasoning steps)",
                result.agent_id, result.persona, result.tokens_used, len(result.reasoning),
            )
        else:
            logger.warning("Agent %s failed: %s", result.agent_id, result.error)
        self._emit_complete(task_id, result)

    def _emit_complete(self, task_id: str, result: AgentRunResult) -> None:
        self.bus.emit(
            task_id,
            "agent_complete",
            agent_id=result.agent_id,
            persona=result.persona,
            success=result.success,
            error=result.error,
            tokens_used=result.tokens_used,
            time_ms=result.time_ms,
            response=result.response,
            telemetry=result.telemetry.model_dump(),
        )
