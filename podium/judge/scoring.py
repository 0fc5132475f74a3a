"""Deterministic scoring primitives for the judge.

Weighted totals, evidence localisation, the diversity penalty, fallback
scores and winner resolution. Nothing here talks to an LLM.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, Optional, Sequence

from podium.core.models import (
    METRICS,
    AgentRunResult,
    JudgeScore,
    JudgeWeights,
    MetricEvidence,
    MetricEvidenceSet,
)

MAX_QUOTE_CHARS = 240
NO_QUOTE_PLACEHOLDER = "[no direct quote provided]"
CONSENSUS_PLACEHOLDER = "[consensus-median]"
DEFAULT_WIN_PLACEHOLDER = "[won by default]"
PLACEHOLDER_QUOTES = frozenset({NO_QUOTE_PLACEHOLDER, CONSENSUS_PLACEHOLDER, DEFAULT_WIN_PLACEHOLDER})

STOP_WORDS = frozenset({
    "the", "and", "for", "that", "with", "this", "from", "into", "your", "their", "have",
    "will", "would", "could", "there", "what", "when", "where", "which", "about", "because",
    "while", "should", "after", "before", "than", "then", "they", "them", "were", "been",
    "being", "also", "over", "under", "such", "only", "very", "much", "more", "most",
})

_NON_TOKEN = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def round_half_up(value: float) -> int:
    """Round to the nearest int, halves away from zero for non-negative input."""
    # Absorb float noise such as 29.999999999999996 before flooring.
    return int(math.floor(round(value, 9) + 0.5))


def clamp_metric(value: float) -> float:
    return round(max(0.0, min(10.0, value)), 2)


def weighted_total(
    weights: JudgeWeights,
    accuracy: float,
    completeness: float,
    clarity: float,
    insight: float,
) -> int:
    """Weighted 0-10 average scaled to 0-40, rounded once."""
    weighted10 = (
        accuracy * weights.accuracy
        + completeness * weights.completeness
        + clarity * weights.clarity
        + insight * weights.insight
    )
    return max(0, min(40, round_half_up(weighted10 * 4)))


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

def normalize_quote(value: str) -> str:
    trimmed = (value or "").strip()
    if len(trimmed) <= MAX_QUOTE_CHARS:
        return trimmed
    return f"{trimmed[:MAX_QUOTE_CHARS]}..."


def locate_evidence_range(response: str, quote: str) -> tuple[Optional[int], Optional[int]]:
    """Find the quote in the response, retrying with collapsed whitespace.

    Returns (None, None) when the quote cannot be located.
    """
    candidate = normalize_quote(quote)
    if not candidate:
        return None, None

    index = response.find(candidate)
    if index >= 0:
        return index, index + len(candidate)

    compact_quote = _WHITESPACE.sub(" ", candidate).strip()
    if not compact_quote:
        return None, None
    compact_response = _WHITESPACE.sub(" ", response)
    index = compact_response.find(compact_quote)
    if index < 0:
        return None, None
    return index, index + len(compact_quote)


def build_evidence(response: str, quote: str, reason: str) -> MetricEvidence:
    start, end = locate_evidence_range(response, quote)
    return MetricEvidence(quote=normalize_quote(quote), reason=reason, start_char=start, end_char=end)


def placeholder_evidence(quote: str, reason: str) -> MetricEvidenceSet:
    return MetricEvidenceSet(**{
        metric: MetricEvidence(quote=quote, reason=reason.format(metric=metric))
        for metric in METRICS
    })


def is_supported_evidence(evidence: MetricEvidence) -> bool:
    quote = evidence.quote.strip().lower()
    return bool(evidence.reason.strip()) and bool(quote) and quote not in PLACEHOLDER_QUOTES


# ---------------------------------------------------------------------------
# Fallback scores
# ---------------------------------------------------------------------------

def fallback_score(
    agent_id: str,
    reason: str,
    weights: JudgeWeights,
    quote: str = NO_QUOTE_PLACEHOLDER,
    evidence_reason: str = "Judge did not return {metric} evidence; fallback applied.",
) -> JudgeScore:
    """Flat 5/10 score with placeholder evidence for every metric."""
    base = weighted_total(weights, 5, 5, 5, 5)
    return JudgeScore(
        agent_id=agent_id,
        accuracy=5,
        completeness=5,
        clarity=5,
        insight=5,
        base_total=base,
        total=base,
        reasoning=reason,
        metric_evidence=placeholder_evidence(quote, evidence_reason),
    )


# ---------------------------------------------------------------------------
# Diversity penalty
# ---------------------------------------------------------------------------

def token_set(text: str) -> set[str]:
    cleaned = _NON_TOKEN.sub(" ", text.lower())
    return {token for token in cleaned.split() if len(token) > 2 and token not in STOP_WORDS}


def jaccard_similarity(left: set[str], right: set[str]) -> float:
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    intersection = len(left & right)
    union = len(left) + len(right) - intersection
    return intersection / union if union else 0.0


def _signal_text(result: AgentRunResult) -> str:
    return "\n".join([result.response, *(step.thought for step in result.reasoning)])


def max_similarities(results: Sequence[AgentRunResult]) -> dict[str, float]:
    """Per agent, the highest Jaccard similarity against any other agent."""
    tokens = {result.agent_id: token_set(_signal_text(result)) for result in results}
    best: dict[str, float] = {}
    for i, left in enumerate(results):
        for right in results[i + 1:]:
            similarity = jaccard_similarity(tokens[left.agent_id], tokens[right.agent_id])
            best[left.agent_id] = max(best.get(left.agent_id, 0.0), similarity)
            best[right.agent_id] = max(best.get(right.agent_id, 0.0), similarity)
    return best


def apply_diversity_penalty(
    scores: Iterable[JudgeScore],
    results: Sequence[AgentRunResult],
    threshold: float = 0.72,
    factor: float = 0.8,
) -> list[JudgeScore]:
    """Scale base_total by factor for agents too similar to another agent."""
    similarity_by_agent = max_similarities(results)
    penalized: list[JudgeScore] = []
    for score in scores:
        max_similarity = round(similarity_by_agent.get(score.agent_id, 0.0), 4)
        applies = max_similarity >= threshold
        total = max(0, round_half_up(score.base_total * factor)) if applies else score.base_total
        penalized.append(score.model_copy(update={
            "total": total,
            "diversity_penalty_applied": applies,
            "max_similarity": max_similarity,
        }))
    return penalized


# ---------------------------------------------------------------------------
# Winner resolution
# ---------------------------------------------------------------------------

def ranking_key(score: JudgeScore) -> tuple[float, float, float, float, str]:
    # total, accuracy, completeness, insight all descending; agent id ascending
    return (-score.total, -score.accuracy, -score.completeness, -score.insight, score.agent_id)


def rank_scores(scores: Iterable[JudgeScore]) -> list[JudgeScore]:
    return sorted(scores, key=ranking_key)


def resolve_winner(scores: Sequence[JudgeScore]) -> str:
    ranked = rank_scores(scores)
    if not ranked:
        raise ValueError("resolve_winner received no scores")
    return ranked[0].agent_id
