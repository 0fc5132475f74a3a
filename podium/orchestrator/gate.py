"""Confidence gate and derived trust signals.

evaluate() is a pure function of the verdict and the configured thresholds.
derive_trust() turns the decision plus evidence and panel structure into a
high/medium/low confidence level.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from podium.core.config import ConfidenceGateConfig
from podium.core.models import (
    ConfidenceGateDecision,
    ConfidenceLevel,
    JudgeResult,
    JudgeScore,
)
from podium.judge.scoring import is_supported_evidence

HIGH_TRUST_MIN_COVERAGE = 0.75
HIGH_TRUST_MAX_DISAGREEMENT = 0.12


@dataclass(frozen=True)
class TrustSignals:
    level: ConfidenceLevel
    reason: str
    evidence_coverage: float
    disagreement_index: float


class ConfidenceGate:
    """Pass/fail decision over a verdict's winner total, margin and accuracy."""

    def __init__(self, config: Optional[ConfidenceGateConfig] = None):
        self.config = config or ConfidenceGateConfig()

    def evaluate(self, judge_result: JudgeResult) -> ConfidenceGateDecision:
        cfg = self.config
        ordered = sorted(judge_result.scores, key=lambda s: s.total, reverse=True)
        winner = judge_result.score_for(judge_result.winner) or (ordered[0] if ordered else None)
        runner_up = next((s for s in ordered if winner is None or s.agent_id != winner.agent_id), None)

        winner_total = winner.total if winner else 0
        winner_accuracy = winner.accuracy if winner else 0.0
        margin = float(winner_total - runner_up.total) if runner_up else float(winner_total)

        decision = dict(
            enabled=cfg.enabled,
            winner_total=winner_total,
            winner_accuracy=winner_accuracy,
            margin_to_second=round(margin, 2),
            min_total=cfg.min_total,
            min_margin=cfg.min_margin,
            min_accuracy=cfg.min_accuracy,
        )
        if not cfg.enabled:
            return ConfidenceGateDecision(passed=True, reason="Confidence gate disabled.", **decision)

        violations = []
        if winner_total < cfg.min_total:
            violations.append(f"winner total {winner_total}/40 below {cfg.min_total:g}/40")
        if margin < cfg.min_margin:
            violations.append(f"winner margin {margin:.2f} below {cfg.min_margin:.2f}")
        if winner_accuracy < cfg.min_accuracy:
            violations.append(f"winner accuracy {winner_accuracy:.2f} below {cfg.min_accuracy:.2f}")

        if violations:
            return ConfidenceGateDecision(passed=False, reason="; ".join(violations), **decision)
        return ConfidenceGateDecision(
            passed=True,
            reason=(
                f"Gate passed (total {winner_total}/40, margin {margin:.2f}, "
                f"accuracy {winner_accuracy:.2f})."
            ),
            **decision,
        )


def evidence_coverage(score: Optional[JudgeScore]) -> float:
    """Fraction of the score's metrics carrying a real quote and a reason."""
    if score is None:
        return 0.0
    evidences = [evidence for _, evidence in score.metric_evidence.items()]
    supported = sum(1 for evidence in evidences if is_supported_evidence(evidence))
    return round(supported / len(evidences), 4)


def derive_trust(decision: ConfidenceGateDecision, judge_result: JudgeResult) -> TrustSignals:
    coverage = evidence_coverage(judge_result.score_for(judge_result.winner))
    disagreement = round(judge_result.disagreement_index or 0.0, 4)

    if not decision.passed:
        return TrustSignals(ConfidenceLevel.LOW, f"Gate failed: {decision.reason}", coverage, disagreement)

    coverage_pct = int(coverage * 100 + 0.5)
    disagreement_pct = int(disagreement * 100 + 0.5)
    if coverage >= HIGH_TRUST_MIN_COVERAGE and disagreement <= HIGH_TRUST_MAX_DISAGREEMENT:
        return TrustSignals(
            ConfidenceLevel.HIGH,
            f"Gate passed with strong evidence ({coverage_pct}%) and low judge disagreement ({disagreement_pct}%).",
            coverage,
            disagreement,
        )
    return TrustSignals(
        ConfidenceLevel.MEDIUM,
        f"Gate passed but trust is mixed (evidence {coverage_pct}%, disagreement {disagreement_pct}%).",
        coverage,
        disagreement,
    )


def apply_trust(
    judge_result: JudgeResult,
    decision: ConfidenceGateDecision,
    trust: TrustSignals,
) -> JudgeResult:
    """Copy of the verdict with trust signals attached and a low-confidence summary if the gate failed."""
    summary = judge_result.summary
    if not decision.passed:
        summary = f"[Low confidence] {summary} ({decision.reason})"
    return judge_result.model_copy(update={
        "summary": summary,
        "confidence_level": trust.level,
        "confidence_reason": trust.reason,
        "confidence_passed": decision.passed,
        "winner_margin": decision.margin_to_second,
        "evidence_coverage": trust.evidence_coverage,
        "disagreement_index": trust.disagreement_index,
    })
