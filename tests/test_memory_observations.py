"""Tests for podium/memory/observations.py."""

from podium.core.models import (
    ConfidenceGateDecision,
    ConfidenceLevel,
    JudgeMode,
    JudgeResult,
    JudgeScore,
    OutcomeType,
    ReplayConfig,
    TaskCategory,
    ToolCallRecord,
)
from podium.judge.scoring import placeholder_evidence
from podium.memory.observations import (
    build_observations,
    build_pattern,
    build_strategy,
    build_tool_path,
    select_pattern_thoughts,
)

from tests.conftest import make_result


def _score(agent_id, total):
    return JudgeScore(
        agent_id=agent_id, accuracy=7, completeness=7, clarity=7, insight=7,
        base_total=total, total=total, metric_evidence=placeholder_evidence("q", "{metric}"),
    )


def _gate(passed=True):
    return ConfidenceGateDecision(
        enabled=True, passed=passed, winner_total=30, winner_accuracy=7.0, margin_to_second=4.0,
        min_total=26, min_margin=2, min_accuracy=6.5, reason="Gate passed.",
    )


class TestPatterns:
    def test_select_relaxes_floor(self):
        result = make_result("agent-1", thoughts=("a" * 25, "b" * 25), confidences=(0.72, 0.6))
        assert select_pattern_thoughts(result) == ["a" * 25]

    def test_select_falls_back_to_first_two(self):
        result = make_result("agent-1", thoughts=("one", "two", "three"), confidences=(0.6, 0.6, 0.6))
        assert select_pattern_thoughts(result) == ["one", "two"]

    def test_tool_path_capped(self):
        usage = [ToolCallRecord(name=f"tool-{i}") for i in range(8)]
        result = make_result("agent-1", tool_usage=usage)
        assert build_tool_path(result) == " -> ".join(f"tool-{i}" for i in range(6))
        assert build_tool_path(make_result("agent-1")) == "no-tools"

    def test_failure_pattern(self):
        result = make_result("agent-3", success=False, error="timeout")
        assert build_pattern(result, TaskCategory.RESEARCH) == (
            "[The Devil's Advocate][research][tools:no-tools] failure:timeout"
        )


class TestObservations:
    def test_win_and_loss_rows(self):
        results = [
            make_result("agent-1", "A" * 2000, thoughts=("t",) * 8, confidences=(0.9,) * 8),
            make_result("agent-2", "B"),
        ]
        verdict = JudgeResult(winner="agent-1", scores=[_score("agent-1", 30), _score("agent-2", 22)], summary="s")

        rows = build_observations("task-1", verdict, results, TaskCategory.GENERAL, JudgeMode.SINGLE, "judge-v2")

        assert [r.outcome_type for r in rows] == [OutcomeType.WIN_PATTERN, OutcomeType.LOSS_PATTERN]
        assert rows[0].score_total == 30
        assert len(rows[0].payload["response_snippet"]) == 1500
        assert len(rows[0].payload["reasoning"]) == 6
        assert rows[1].payload["score"]["total"] == 22

    def test_low_scoring_winner_is_loss(self):
        results = [make_result("agent-1", "A")]
        verdict = JudgeResult(winner="agent-1", scores=[_score("agent-1", 20)], summary="s")
        [row] = build_observations("t", verdict, results, TaskCategory.GENERAL, JudgeMode.SINGLE, "judge-v2")
        assert row.outcome_type == OutcomeType.LOSS_PATTERN

    def test_failure_rows_without_verdict(self):
        results = [make_result("agent-1", success=False, error="boom")]
        [row] = build_observations(
            "t", None, results, TaskCategory.CODING, JudgeMode.CONSENSUS, "judge-v2", failure_reason="all failed"
        )
        assert row.score_total == 0
        assert row.judge_mode == JudgeMode.CONSENSUS
        assert row.payload["failure_reason"] == "all failed"
        assert row.payload["score"] is None


class TestStrategy:
    def test_context_tags(self):
        winner = make_result("agent-1", "A")
        verdict = JudgeResult(
            winner="agent-1", scores=[_score("agent-1", 30)], summary="Clear.",
            confidence_level=ConfidenceLevel.HIGH,
        )
        replay = ReplayConfig(source_task_id="old-task", source_agent_id="agent-1")

        strategy = build_strategy("t", winner, verdict, _gate(), TaskCategory.FINANCE, 24.0, 6.0, replay)

        assert strategy.approach == "The Analyst: Clear."
        assert strategy.success_rate == 0.75
        assert "domain:finance" in strategy.context
        assert "confidence_gate:pass" in strategy.context
        assert "confidence_level:high" in strategy.context
        assert "baseline:24.0" in strategy.context
        assert "replay_source_task:old-task" in strategy.context
        assert "replay_source_strategy:none" in strategy.context
