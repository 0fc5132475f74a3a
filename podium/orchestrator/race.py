"""Race orchestrator: one task through agents, judge, gate, learning and storage.

Phases:
1. Resolve the domain plan and enrich the prompt with hints.
2. Fan out to all agents concurrently with a shared deadline.
3. Judge (or award a default win when only one agent succeeded).
4. Confidence gate and trust signals.
5. Baseline and lift, best-effort persistence, gated learning.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Sequence

from podium.agents.executor import AgentExecutor, NoTools, ToolAccess
from podium.agents.personas import agent_ids as slot_ids
from podium.core.config import AppConfig
from podium.core.exceptions import ConfigError, OrchestrationError
from podium.core.models import (
    AgentRunResult,
    JudgeMode,
    JudgeResult,
    JudgeWeights,
    OrchestrationResult,
    ReplayConfig,
    ResolvedDomainPlan,
    Task,
    TaskStatus,
    WinnerSummary,
)
from podium.db.store import RaceStore
from podium.domains.classifier import Classifier, categorize_prompt
from podium.domains.profiles import resolve_domain_plan
from podium.judge.engine import JudgeEngine
from podium.memory.learning import LearningEngine
from podium.memory.observations import build_observations, build_strategy
from podium.orchestrator.fanout import FanOutRunner
from podium.orchestrator.gate import ConfidenceGate, apply_trust, derive_trust
from podium.orchestrator.progress import ProgressBus

logger = logging.getLogger("podium.orchestrator")


def build_enriched_prompt(prompt: str, hints: Sequence[str]) -> str:
    if not hints:
        return prompt
    lines = "\n".join(f"- {hint}" for hint in hints)
    return f"{prompt}\n\nPrior learned hints:\n{lines}"


class Orchestrator:
    """Runs races. Collaborators are injected; see podium.core.factory."""

    def __init__(
        self,
        config: AppConfig,
        executor: AgentExecutor,
        judge: JudgeEngine,
        store: RaceStore,
        bus: Optional[ProgressBus] = None,
        tools: Optional[ToolAccess] = None,
        classify: Classifier = categorize_prompt,
    ):
        self.config = config
        self.executor = executor
        self.judge = judge
        self.store = store
        self.bus = bus or ProgressBus()
        self.tools = tools or NoTools()
        self.classify = classify
        self.gate = ConfidenceGate(config.confidence_gate)
        self.learning = LearningEngine(store, config.learning)

    def run(
        self,
        task: Task,
        *,
        agent_count: Optional[int] = None,
        tools: Optional[Sequence[str]] = None,
        judge_mode: Optional[str] = None,
        weights: Optional[JudgeWeights | Mapping[str, Any]] = None,
        replay: Optional[ReplayConfig] = None,
    ) -> OrchestrationResult:
        plan = resolve_domain_plan(
            task.prompt,
            category=task.category,
            tools=tools,
            judge_mode=judge_mode,
            weights=weights,
            classify=self.classify,
            default_weights=self.config.judge.default_weights.model_dump(),
        )
        task.category = plan.category
        agents = slot_ids(agent_count or self.config.agents.count)
        logger.info(
            "Starting race %s with %d agents (domain: %s, judge: %s)",
            task.id, len(agents), plan.category.value, plan.judge_mode.value,
        )
        self._persist("task", self.store.save_task, task)

        try:
            self.executor.preflight()
            self.judge.preflight()
        except ConfigError as e:
            logger.error("Race %s cannot start: %s", task.id, e)
            self._mark(task, TaskStatus.FAILED)
            self.bus.emit(task.id, "failed", error=str(e))
            raise

        self.bus.emit(
            task.id,
            "started",
            category=plan.category.value,
            agents=agents,
            judge_mode=plan.judge_mode.value,
            weights=plan.weights.model_dump(),
            tools=plan.active_tools,
            objective_mode=plan.profile.objective_mode.value,
            replay=replay.model_dump() if replay else None,
        )
        self._mark(task, TaskStatus.RUNNING)

        hints = [*plan.prompt_hints, *self._learned_hints(plan, agents)]
        prompt = build_enriched_prompt(task.prompt, hints)

        runner = FanOutRunner(self.executor, self.bus, self.config.agents.timeout_seconds)
        results = runner.run(task.id, agents, prompt, self.tools.restrict(plan.active_tools), replay)

        try:
            return self._conclude(task, plan, results, replay)
        except Exception as e:
            logger.error("Race %s failed: %s", task.id, e, exc_info=True)
            self._persist_failure_observations(task, plan, results, str(e))
            self._mark(task, TaskStatus.FAILED)
            self.bus.emit(task.id, "failed", error=str(e))
            raise

    # -- phases ----------------------------------------------------------

    def _conclude(
        self,
        task: Task,
        plan: ResolvedDomainPlan,
        results: list[AgentRunResult],
        replay: Optional[ReplayConfig],
    ) -> OrchestrationResult:
        successful = [r for r in results if r.succeeded_with_output]
        if not successful:
            errors = "; ".join(f"{r.agent_id}: {r.error or 'empty response'}" for r in results)
            raise OrchestrationError(task.id, f"No agent produced a successful response ({errors})")

        self.bus.emit(task.id, "judging_started", successful=[r.agent_id for r in successful])
        verdict = self._judge(task, plan, successful)

        decision = self.gate.evaluate(verdict)
        trust = derive_trust(decision, verdict)
        verdict = apply_trust(verdict, decision, trust)
        if decision.passed:
            logger.info("Race %s verdict: %s (%s confidence)", task.id, verdict.winner, trust.level.value)
        else:
            logger.warning("Confidence gate failed for race %s: %s", task.id, decision.reason)

        winner = next((r for r in results if r.agent_id == verdict.winner), None)
        if winner is None:
            raise OrchestrationError(task.id, f"Judge winner {verdict.winner} not found in agent results")
        winner_score = verdict.score_for(winner.agent_id)
        winner_total = winner_score.total if winner_score else 20

        baseline = self._baseline(task, plan)
        lift = round(winner_total - baseline, 2)

        self._mark(task, TaskStatus.COMPLETED)
        self._persist("agent results", self.store.save_agent_results, task.id, results)
        self._persist("tool usage", self.store.save_tool_usage, task.id, results)
        self._persist(
            "strategy",
            self.store.save_strategy,
            build_strategy(task.id, winner, verdict, decision, plan.category, baseline, lift, replay),
        )
        self._persist("judge result", self.store.upsert_judge_result, task.id, verdict)
        self._persist(
            "observations",
            self.store.save_observations,
            build_observations(
                task.id, verdict, results, plan.category, plan.judge_mode,
                self.judge.config.prompt_version, self.config.learning.quality_threshold,
            ),
        )

        learning_applied = False
        if self.config.learning.enabled and decision.passed:
            learning_applied = self.learning.learn(winner, verdict, results, plan.category, lift) > 0
        elif self.config.learning.enabled:
            logger.info("Skipping learning update for race %s because confidence gate failed: %s", task.id, decision.reason)
        else:
            logger.info("Skipping learning update for race %s because learning is disabled", task.id)

        outcome = OrchestrationResult(
            task_id=task.id,
            category=plan.category,
            winner=WinnerSummary(
                agent_id=winner.agent_id,
                persona=winner.persona,
                tokens_used=winner.tokens_used,
                time_ms=winner.time_ms,
                judge_score=winner_score.total if winner_score else None,
            ),
            judge_result=verdict,
            confidence_gate=decision,
            results=results,
            baseline=baseline,
            lift=lift,
            learning_applied=learning_applied,
        )
        self.bus.emit(
            task.id,
            "complete",
            winner=winner.agent_id,
            total=outcome.winner.judge_score,
            confidence_level=trust.level.value,
            gate_passed=decision.passed,
            baseline=baseline,
            lift=lift,
        )
        return outcome

    def _judge(self, task: Task, plan: ResolvedDomainPlan, successful: list[AgentRunResult]) -> JudgeResult:
        if len(successful) == 1:
            logger.info("Race %s: %s is the only successful agent, winning by default", task.id, successful[0].agent_id)
            return self.judge.default_verdict(successful[0], plan.weights)
        return self.judge.judge(
            task.prompt,
            successful,
            plan.weights,
            mode=plan.judge_mode if len(successful) >= 2 else JudgeMode.SINGLE,
            objective_mode=plan.profile.objective_mode,
        )

    # -- best-effort helpers --------------------------------------------

    def _learned_hints(self, plan: ResolvedDomainPlan, agents: list[str]) -> list[str]:
        try:
            return self.learning.learned_hints(plan.category, agents)
        except Exception as e:
            logger.warning("Could not load learned hints (non-critical): %s", e)
            return []

    def _baseline(self, task: Task, plan: ResolvedDomainPlan) -> float:
        try:
            return self.learning.baseline(plan.category, exclude_task_id=task.id)
        except Exception as e:
            logger.warning("Could not compute baseline for %s (non-critical): %s", plan.category.value, e)
            return self.config.learning.baseline_default

    def _mark(self, task: Task, status: TaskStatus) -> None:
        task.status = status
        self._persist(f"task status {status.value}", self.store.update_task_status, task.id, status, task.category)

    def _persist(self, label: str, write: Callable[..., Any], *args: Any) -> bool:
        try:
            write(*args)
            return True
        except Exception as e:
            logger.warning("Persistence of %s failed (non-critical): %s", label, e)
            return False

    def _persist_failure_observations(
        self,
        task: Task,
        plan: ResolvedDomainPlan,
        results: list[AgentRunResult],
        reason: str,
    ) -> None:
        if not self.config.learning.enabled or not results:
            return
        try:
            rows = build_observations(
                task.id, None, results, plan.category, plan.judge_mode,
                self.judge.config.prompt_version, self.config.learning.quality_threshold,
                failure_reason=reason,
            )
        except Exception as e:
            logger.warning("Could not build failure observations (non-critical): %s", e)
            return
        self._persist("failure observations", self.store.save_observations, rows)
