"""Domain profiles and the per-task plan resolver.

Each TaskCategory carries default tools, judge weights, judge mode, an
objective correction mode and prompt hints. resolve_domain_plan merges those
defaults with explicit caller overrides.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Sequence

from podium.core.models import (
    METRICS,
    DomainProfile,
    JudgeMode,
    JudgeWeights,
    ObjectiveMode,
    ResolvedDomainPlan,
    TaskCategory,
)
from podium.domains.classifier import Classifier, categorize_prompt


DOMAIN_PROFILES: dict[TaskCategory, DomainProfile] = {
    TaskCategory.CODING: DomainProfile(
        id=TaskCategory.CODING,
        label="Coding",
        description="Code changes with executable verification and repo-aware reasoning.",
        default_tools=["workspace-shell", "code-executor", "file-reader", "calculator"],
        default_weights=JudgeWeights.normalize(
            {"accuracy": 0.45, "completeness": 0.25, "clarity": 0.1, "insight": 0.2}
        ),
        objective_mode=ObjectiveMode.CODING_V1,
        prompt_hints=[
            "Treat this as a coding task. Prefer concrete, patchable implementation details.",
            "Run verification commands when tools are available and report actual outcomes.",
            "Do not claim tests/lint pass unless you executed verification.",
        ],
    ),
    TaskCategory.FINANCE: DomainProfile(
        id=TaskCategory.FINANCE,
        label="Finance",
        description="Financial analysis with exact math, risk framing, and source recency.",
        default_tools=["calculator", "web-search", "file-reader"],
        default_weights=JudgeWeights.normalize(
            {"accuracy": 0.4, "completeness": 0.25, "clarity": 0.1, "insight": 0.25}
        ),
        prompt_hints=[
            "Treat this as a finance task. Use exact computation for any numeric claims.",
            "When market/current facts are needed, verify with recent sources.",
            "Include risk assumptions and uncertainty explicitly.",
        ],
    ),
    TaskCategory.RESEARCH: DomainProfile(
        id=TaskCategory.RESEARCH,
        label="Research",
        description="Source-backed synthesis with credibility and contradiction checks.",
        default_tools=["web-search", "file-reader"],
        default_weights=JudgeWeights.normalize(
            {"accuracy": 0.35, "completeness": 0.25, "clarity": 0.2, "insight": 0.2}
        ),
        prompt_hints=[
            "Prioritize source quality, recency, and contradiction checks.",
            "State evidence boundaries and unresolved uncertainty.",
        ],
    ),
    TaskCategory.ANALYSIS: DomainProfile(
        id=TaskCategory.ANALYSIS,
        label="Analysis",
        description="Document and tradeoff analysis with clear recommendation framing.",
        default_tools=["file-reader", "calculator"],
        prompt_hints=[
            "Structure output as findings, tradeoffs, and recommended next action.",
        ],
    ),
    TaskCategory.MATH: DomainProfile(
        id=TaskCategory.MATH,
        label="Math",
        description="Precise calculation with verification over approximated reasoning.",
        default_tools=["calculator", "code-executor"],
        default_weights=JudgeWeights.normalize(
            {"accuracy": 0.45, "completeness": 0.25, "clarity": 0.15, "insight": 0.15}
        ),
        prompt_hints=[
            "Use deterministic computation for exact numeric answers.",
            "Show intermediate assumptions only when they affect final correctness.",
        ],
    ),
    TaskCategory.CREATIVE: DomainProfile(
        id=TaskCategory.CREATIVE,
        label="Creative",
        description="Creative ideation with originality and coherence.",
        default_tools=[],
        default_weights=JudgeWeights.normalize(
            {"accuracy": 0.2, "completeness": 0.2, "clarity": 0.3, "insight": 0.3}
        ),
        prompt_hints=[
            "Prioritize originality and internal consistency over literal factuality.",
        ],
    ),
    TaskCategory.GENERAL: DomainProfile(
        id=TaskCategory.GENERAL,
        label="General",
        description="Balanced reasoning profile for broad tasks.",
        default_tools=["calculator", "file-reader", "web-search"],
    ),
}


def list_domain_profiles() -> list[DomainProfile]:
    """Return copies of every profile, in category order."""
    return [profile.model_copy(deep=True) for profile in DOMAIN_PROFILES.values()]


def get_domain_profile(category: TaskCategory) -> DomainProfile:
    return DOMAIN_PROFILES.get(category, DOMAIN_PROFILES[TaskCategory.GENERAL])


def _dedupe_names(names: Optional[Sequence[str]]) -> Optional[list[str]]:
    if names is None:
        return None
    cleaned: list[str] = []
    for name in names:
        name = name.strip()
        if name and name not in cleaned:
            cleaned.append(name)
    return cleaned


def _resolve_judge_mode(value: Optional[str], fallback: JudgeMode) -> JudgeMode:
    if not value:
        return fallback
    raw = value.value if isinstance(value, JudgeMode) else str(value)
    return JudgeMode.CONSENSUS if raw.lower() == "consensus" else JudgeMode.SINGLE


def has_explicit_weights(
    weights: Optional[JudgeWeights | Mapping[str, Any]],
    default_weights: Optional[JudgeWeights] = None,
) -> bool:
    """True when weights carry a finite metric and differ from the global default."""
    if weights is None:
        return False
    if isinstance(weights, JudgeWeights):
        weights = weights.model_dump()

    has_metric = any(
        isinstance(weights.get(metric), (int, float))
        and not isinstance(weights.get(metric), bool)
        and math.isfinite(weights[metric])
        for metric in METRICS
    )
    if not has_metric:
        return False
    baseline = JudgeWeights.normalize(default_weights)
    return not JudgeWeights.normalize(weights, baseline).approx_equals(baseline)


def profile_weights(profile: DomainProfile, default_weights: Optional[JudgeWeights] = None) -> JudgeWeights:
    """Profile weights, or the global default for profiles that set none."""
    if "default_weights" in profile.model_fields_set:
        return profile.default_weights.model_copy()
    return JudgeWeights.normalize(default_weights)


def resolve_domain_plan(
    prompt: str,
    category: Optional[TaskCategory] = None,
    tools: Optional[Sequence[str]] = None,
    judge_mode: Optional[str] = None,
    weights: Optional[JudgeWeights | Mapping[str, Any]] = None,
    classify: Classifier = categorize_prompt,
    default_weights: Optional[JudgeWeights | Mapping[str, Any]] = None,
) -> ResolvedDomainPlan:
    """Merge profile defaults with explicit overrides. Pure function.

    default_weights is the configured global vector. It backs the analysis
    and general profiles and is the reference for deciding whether explicit
    weights were provided.
    """
    resolved_category = category or classify(prompt)
    profile = get_domain_profile(resolved_category)
    global_weights = JudgeWeights.normalize(default_weights)

    requested_tools = _dedupe_names(tools)
    plan_weights = (
        JudgeWeights.normalize(weights, global_weights)
        if has_explicit_weights(weights, global_weights)
        else profile_weights(profile, global_weights)
    )

    return ResolvedDomainPlan(
        profile=profile,
        category=profile.id,
        active_tools=requested_tools if requested_tools is not None else list(profile.default_tools),
        judge_mode=_resolve_judge_mode(judge_mode, profile.default_judge_mode),
        weights=plan_weights,
        prompt_hints=list(profile.prompt_hints),
    )
