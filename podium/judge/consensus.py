"""Consensus aggregation over independent judge panels."""

from __future__ import annotations

from typing import Sequence

from podium.core.models import (
    AgentRunResult,
    JudgeMode,
    JudgePanelRun,
    JudgeResult,
    JudgeScore,
    JudgeWeights,
)
from podium.judge.scoring import (
    CONSENSUS_PLACEHOLDER,
    apply_diversity_penalty,
    placeholder_evidence,
    resolve_winner,
    weighted_total,
)


def median(values: Sequence[float]) -> float:
    """Median; an even count averages the two middle values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2


def disagreement_index(runs: Sequence[JudgeResult], agent_ids: Sequence[str]) -> float:
    """Mean over agents of (max - min panel total) / 40."""
    if len(runs) <= 1 or not agent_ids:
        return 0.0

    spreads = []
    for agent_id in agent_ids:
        totals = [score.total for run in runs if (score := run.score_for(agent_id)) is not None]
        spreads.append((max(totals) - min(totals)) / 40 if len(totals) > 1 else 0.0)
    return round(sum(spreads) / len(spreads), 4)


def _aggregate_agent(agent_id: str, runs: Sequence[JudgeResult], weights: JudgeWeights) -> JudgeScore:
    per_run = [score for run in runs if (score := run.score_for(agent_id)) is not None]

    metrics = {
        metric: round(median([getattr(score, metric) for score in per_run]), 2)
        for metric in ("accuracy", "completeness", "clarity", "insight")
    }
    base_total = weighted_total(weights, **metrics)

    # max() keeps the first panel on ties
    best_run = max(per_run, key=lambda score: score.total) if per_run else None
    if best_run is not None:
        reasoning = best_run.reasoning
        evidence = best_run.metric_evidence
    else:
        reasoning = "Consensus median score from multiple judge panels."
        evidence = placeholder_evidence(CONSENSUS_PLACEHOLDER, "Consensus used run-level evidence.")

    return JudgeScore(
        agent_id=agent_id,
        base_total=base_total,
        total=base_total,
        reasoning=reasoning,
        metric_evidence=evidence,
        **metrics,
    )


def aggregate_panels(
    runs: Sequence[JudgeResult],
    results: Sequence[AgentRunResult],
    weights: JudgeWeights,
    prompt_version: str,
    similarity_threshold: float = 0.72,
    penalty_factor: float = 0.8,
) -> JudgeResult:
    """Median-aggregate panel verdicts, then apply the diversity penalty once."""
    agent_ids = [result.agent_id for result in results]
    scores = [_aggregate_agent(agent_id, runs, weights) for agent_id in agent_ids]
    scores = apply_diversity_penalty(scores, results, similarity_threshold, penalty_factor)

    winner = resolve_winner(scores)
    votes = sum(1 for run in runs if run.winner == winner)
    panel_agreement = round(votes / max(1, len(runs)), 4)

    return JudgeResult(
        winner=winner,
        scores=scores,
        summary=(
            f"{winner} won consensus judging ({votes}/{len(runs)} panel votes) "
            "with median metric aggregation."
        ),
        prompt_version=prompt_version,
        criteria_weights=weights,
        mode=JudgeMode.CONSENSUS,
        runs=[
            JudgePanelRun(panel_id=run.panel_id, winner=run.winner, summary=run.summary, scores=run.scores)
            for run in runs
        ],
        disagreement_index=disagreement_index(runs, agent_ids),
        panel_agreement=panel_agreement,
    )
