"""Pattern, strategy and observation builders for the learning layer."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from podium.core.models import (
    AgentRunResult,
    ConfidenceGateDecision,
    JudgeMode,
    JudgeResult,
    JudgeScore,
    LearningObservation,
    OutcomeType,
    ReplayConfig,
    StrategyRecord,
    TaskCategory,
)

MAX_TOOL_PATH = 6
MAX_PATTERN_THOUGHTS = 3
OBSERVATION_MAX_RESPONSE_CHARS = 1500
OBSERVATION_MAX_REASONING_STEPS = 6
NO_REASONING_MARKER = "no-reasoning-captured"


def select_pattern_thoughts(result: AgentRunResult, floors: Sequence[float] = (0.8, 0.7)) -> list[str]:
    """Up to 3 high-confidence thoughts, relaxing the floor, then the first 2."""
    for floor in floors:
        thoughts = [step.thought for step in result.reasoning if step.confidence >= floor]
        if thoughts:
            return thoughts[:MAX_PATTERN_THOUGHTS]
    return [step.thought for step in result.reasoning[:2]]


def build_tool_path(result: AgentRunResult) -> str:
    sequence = result.telemetry.tool_sequence[:MAX_TOOL_PATH]
    return " -> ".join(sequence) if sequence else "no-tools"


def build_pattern(result: AgentRunResult, category: TaskCategory, floors: Sequence[float] = (0.8, 0.7)) -> str:
    thoughts = select_pattern_thoughts(result, floors)
    if thoughts:
        thought_text = " -> ".join(thoughts)
    elif result.error:
        thought_text = f"failure:{result.error}"
    else:
        thought_text = NO_REASONING_MARKER
    return f"[{result.persona}][{category.value}][tools:{build_tool_path(result)}] {thought_text}"


def _observation_payload(
    result: AgentRunResult,
    score: Optional[JudgeScore],
    failure_reason: Optional[str],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": result.success,
        "error": result.error,
        "response_snippet": result.response[:OBSERVATION_MAX_RESPONSE_CHARS],
        "reasoning": [
            {"step": step.step, "confidence": step.confidence, "thought": step.thought}
            for step in result.reasoning[:OBSERVATION_MAX_REASONING_STEPS]
        ],
        "telemetry": result.telemetry.model_dump(),
        "tool_usage": [
            {
                "name": usage.name,
                "success": usage.success,
                "duration_ms": usage.duration_ms,
                "turn_index": usage.turn_index,
                "call_index": usage.call_index,
                "summary": usage.summary,
            }
            for usage in result.tool_usage
        ],
        "score": score.model_dump(
            include={
                "total", "base_total", "accuracy", "completeness", "clarity",
                "insight", "diversity_penalty_applied", "max_similarity",
            }
        ) if score else None,
    }
    if failure_reason:
        payload["failure_reason"] = failure_reason
    return payload


def build_observations(
    task_id: str,
    judge_result: Optional[JudgeResult],
    results: Sequence[AgentRunResult],
    category: TaskCategory,
    judge_mode: JudgeMode,
    prompt_version: str,
    quality_threshold: int = 25,
    failure_reason: Optional[str] = None,
) -> list[LearningObservation]:
    """One observation row per agent. Only a high-scoring winner is a win_pattern."""
    rows = []
    for result in results:
        score = judge_result.score_for(result.agent_id) if judge_result else None
        is_high_winner = (
            judge_result is not None
            and result.agent_id == judge_result.winner
            and (score.total if score else 0) >= quality_threshold
        )
        rows.append(LearningObservation(
            task_id=task_id,
            agent_id=result.agent_id,
            persona=result.persona,
            outcome_type=OutcomeType.WIN_PATTERN if is_high_winner else OutcomeType.LOSS_PATTERN,
            category=category,
            score_total=score.total if score else 0,
            score_base_total=score.base_total if score else 0,
            score_accuracy=score.accuracy if score else 0.0,
            score_completeness=score.completeness if score else 0.0,
            score_clarity=score.clarity if score else 0.0,
            score_insight=score.insight if score else 0.0,
            judge_mode=judge_result.mode if judge_result else judge_mode,
            judge_prompt_version=judge_result.prompt_version if judge_result else prompt_version,
            tool_path=build_tool_path(result),
            tool_count=len(result.tool_usage),
            verification_steps=result.telemetry.verification_steps,
            used_search_first=result.telemetry.used_search_first,
            pattern=build_pattern(result, category, floors=(0.7,)),
            payload=_observation_payload(result, score, failure_reason),
        ))
    return rows


def build_strategy(
    task_id: str,
    winner: AgentRunResult,
    judge_result: JudgeResult,
    gate: ConfidenceGateDecision,
    category: TaskCategory,
    baseline: float,
    lift: float,
    replay: Optional[ReplayConfig] = None,
) -> StrategyRecord:
    """Winner's approach for this task with key:value context tags."""
    score = judge_result.score_for(winner.agent_id)
    total = score.total if score else 20
    context = [
        f"domain:{category.value}",
        f"task_category:{category.value}",
        f"judge_mode:{judge_result.mode.value}",
        f"judge_winner:{judge_result.winner}",
        f"judge_total:{score.total if score else 0}",
        f"confidence_gate:{'pass' if gate.passed else 'fail'}",
        f"confidence_level:{judge_result.confidence_level.value if judge_result.confidence_level else 'medium'}",
        f"confidence_reason:{gate.reason}",
        f"evidence_coverage:{judge_result.evidence_coverage}",
        f"disagreement_index:{judge_result.disagreement_index}",
        f"winner_margin:{gate.margin_to_second}",
        f"baseline:{baseline}",
        f"lift:{lift}",
    ]
    if replay is not None:
        context += [
            f"replay_source_task:{replay.source_task_id}",
            f"replay_source_strategy:{replay.source_strategy_id or 'none'}",
            f"replay_source_agent:{replay.source_agent_id}",
        ]
    return StrategyRecord(
        task_id=task_id,
        agent_id=winner.agent_id,
        approach=f"{winner.persona}: {judge_result.summary}",
        success_rate=total / 40,
        context=context,
    )
