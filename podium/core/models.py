"""All Pydantic data models for Podium.

Defines the data contracts used across the race: agent results, judge
verdicts, gate decisions, domain profiles, learning records and the rows
handed to the persistence sink.
"""

from __future__ import annotations

import enum
import math
import uuid
from datetime import UTC, datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskCategory(str, enum.Enum):
    CODING = "coding"
    FINANCE = "finance"
    MATH = "math"
    RESEARCH = "research"
    ANALYSIS = "analysis"
    CREATIVE = "creative"
    GENERAL = "general"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JudgeMode(str, enum.Enum):
    SINGLE = "single"
    CONSENSUS = "consensus"


class ObjectiveMode(str, enum.Enum):
    NONE = "none"
    CODING_V1 = "coding-v1"


class ConfidenceLevel(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OutcomeType(str, enum.Enum):
    WIN_PATTERN = "win_pattern"
    LOSS_PATTERN = "loss_pattern"


METRICS = ("accuracy", "completeness", "clarity", "insight")

# A vector within this distance of sum 1 is already normalized.
NORMALIZED_SUM_TOLERANCE = 1e-5


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

class Task(BaseModel):
    id: str = Field(default_factory=_new_id)
    prompt: str = Field(frozen=True)
    category: Optional[TaskCategory] = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Agent execution
# ---------------------------------------------------------------------------

class ReasoningStep(BaseModel):
    step: int
    thought: str
    confidence: float = Field(ge=0.55, le=0.95)
    timestamp: datetime = Field(default_factory=_now)


class ToolCallRecord(BaseModel):
    """One tool invocation made by an agent (tool-usage ledger entry)."""
    name: str
    input: Any = None
    success: bool = False
    summary: str = ""
    duration_ms: int = 0
    turn_index: int = 0
    call_index: int = 0
    timestamp: datetime = Field(default_factory=_now)


class AgentTelemetry(BaseModel):
    tool_call_count: int = 0
    successful_tool_calls: int = 0
    verification_steps: int = 0
    first_tool_name: Optional[str] = None
    first_tool_turn: Optional[int] = None
    used_search_first: bool = False
    tool_sequence: list[str] = Field(default_factory=list)


class AgentRunResult(BaseModel):
    """Output of one agent for one task. Immutable after creation."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    persona: str
    response: str = ""
    reasoning: list[ReasoningStep] = Field(default_factory=list)
    tokens_used: int = 0
    time_ms: int = 0
    success: bool = False
    error: Optional[str] = None
    tool_usage: list[ToolCallRecord] = Field(default_factory=list)
    telemetry: AgentTelemetry = Field(default_factory=AgentTelemetry)

    @property
    def succeeded_with_output(self) -> bool:
        return self.success and bool(self.response.strip())


class ReplayConfig(BaseModel):
    """Prior winning strategy handed to one agent slot as a starting point."""
    source_task_id: str
    source_agent_id: str
    source_strategy_id: Optional[str] = None
    source_persona: Optional[str] = None
    tool_sequence: list[str] = Field(default_factory=list)
    reasoning_path: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Judging
# ---------------------------------------------------------------------------

class JudgeWeights(BaseModel):
    accuracy: float = 0.3
    completeness: float = 0.3
    clarity: float = 0.2
    insight: float = 0.2

    @classmethod
    def normalize(
        cls,
        raw: "JudgeWeights | Mapping[str, Any] | None" = None,
        default: "Optional[JudgeWeights]" = None,
    ) -> "JudgeWeights":
        """Fill gaps from the default vector and scale components to sum to 1.

        Negative or non-finite components count as 0. A vector whose sum is
        not positive falls back to the default. A vector that already sums
        to 1 is returned unchanged, so normalizing twice equals normalizing
        once.
        """
        default = default.model_copy() if default is not None else cls()
        if isinstance(raw, JudgeWeights):
            raw = raw.model_dump()
        raw = raw or {}

        safe: dict[str, float] = {}
        for metric in METRICS:
            value = raw.get(metric)
            if value is None:
                value = getattr(default, metric)
            try:
                number = float(value)
            except (TypeError, ValueError):
                number = 0.0
            safe[metric] = number if math.isfinite(number) and number >= 0 else 0.0

        total = sum(safe.values())
        if total <= 0:
            return default
        if abs(total - 1.0) <= NORMALIZED_SUM_TOLERANCE:
            return cls(**safe)
        return cls(**{metric: round(safe[metric] / total, 6) for metric in METRICS})

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.accuracy, self.completeness, self.clarity, self.insight)

    def approx_equals(self, other: "JudgeWeights", tolerance: float = 1e-6) -> bool:
        return all(abs(a - b) < tolerance for a, b in zip(self.as_tuple(), other.as_tuple()))


class MetricEvidence(BaseModel):
    quote: str
    reason: str
    start_char: Optional[int] = None
    end_char: Optional[int] = None


class MetricEvidenceSet(BaseModel):
    accuracy: MetricEvidence
    completeness: MetricEvidence
    clarity: MetricEvidence
    insight: MetricEvidence

    def items(self) -> list[tuple[str, MetricEvidence]]:
        return [(metric, getattr(self, metric)) for metric in METRICS]


class ObjectiveAdjustment(BaseModel):
    mode: ObjectiveMode = ObjectiveMode.CODING_V1
    objective_score: float
    accuracy_delta: float
    completeness_delta: float
    verification_runs: int = 0
    successful_verification_runs: int = 0
    failed_verification_runs: int = 0
    test_runs: int = 0
    passed_test_runs: int = 0
    failed_test_runs: int = 0
    lint_runs: int = 0
    failed_lint_runs: int = 0
    notes: list[str] = Field(default_factory=list)


class JudgeScore(BaseModel):
    agent_id: str
    accuracy: float = Field(ge=0, le=10)
    completeness: float = Field(ge=0, le=10)
    clarity: float = Field(ge=0, le=10)
    insight: float = Field(ge=0, le=10)
    base_total: int = Field(ge=0, le=40)
    total: int = Field(ge=0, le=40)
    diversity_penalty_applied: bool = False
    max_similarity: float = 0.0
    reasoning: str = ""
    metric_evidence: MetricEvidenceSet
    objective_adjustment: Optional[ObjectiveAdjustment] = None


class JudgePanelRun(BaseModel):
    panel_id: Optional[int] = None
    winner: str
    summary: str
    scores: list[JudgeScore]


class JudgeResult(BaseModel):
    winner: str
    scores: list[JudgeScore]
    summary: str
    judged_at: datetime = Field(default_factory=_now)
    prompt_version: str = "judge-v2"
    criteria_weights: JudgeWeights = Field(default_factory=JudgeWeights)
    mode: JudgeMode = JudgeMode.SINGLE
    panel_id: Optional[int] = None
    runs: list[JudgePanelRun] = Field(default_factory=list)
    # Trust signals (filled in after the confidence gate)
    confidence_level: Optional[ConfidenceLevel] = None
    confidence_reason: Optional[str] = None
    confidence_passed: Optional[bool] = None
    winner_margin: Optional[float] = None
    evidence_coverage: float = 0.0
    disagreement_index: float = 0.0
    panel_agreement: Optional[float] = None

    def score_for(self, agent_id: str) -> Optional[JudgeScore]:
        for score in self.scores:
            if score.agent_id == agent_id:
                return score
        return None


class ConfidenceGateDecision(BaseModel):
    enabled: bool
    passed: bool
    winner_total: int
    winner_accuracy: float
    margin_to_second: float
    min_total: float
    min_margin: float
    min_accuracy: float
    reason: str


# ---------------------------------------------------------------------------
# Domain profiles
# ---------------------------------------------------------------------------

class DomainProfile(BaseModel):
    id: TaskCategory
    label: str
    description: str
    default_tools: list[str] = Field(default_factory=list)
    default_judge_mode: JudgeMode = JudgeMode.SINGLE
    default_weights: JudgeWeights = Field(default_factory=JudgeWeights)
    objective_mode: ObjectiveMode = ObjectiveMode.NONE
    prompt_hints: list[str] = Field(default_factory=list)


class ResolvedDomainPlan(BaseModel):
    profile: DomainProfile
    category: TaskCategory
    active_tools: list[str]
    judge_mode: JudgeMode
    weights: JudgeWeights
    prompt_hints: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Learning & persistence rows
# ---------------------------------------------------------------------------

class LearningRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    target_agent: str
    source_agent: str
    category: TaskCategory
    persona: str
    pattern: str
    applied_count: int = 0
    success_count: int = 0
    success_rate: float = 0.0
    avg_lift: float = 0.0
    lift_samples: int = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class LearningObservation(BaseModel):
    id: str = Field(default_factory=_new_id)
    task_id: str
    agent_id: str
    persona: str
    outcome_type: OutcomeType = OutcomeType.LOSS_PATTERN
    category: TaskCategory = TaskCategory.GENERAL
    score_total: int = 0
    score_base_total: int = 0
    score_accuracy: float = 0.0
    score_completeness: float = 0.0
    score_clarity: float = 0.0
    score_insight: float = 0.0
    judge_mode: JudgeMode = JudgeMode.SINGLE
    judge_prompt_version: str = "judge-v2"
    tool_path: str = "no-tools"
    tool_count: int = 0
    verification_steps: int = 0
    used_search_first: bool = False
    pattern: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)


class StrategyRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    task_id: str
    agent_id: str
    approach: str
    times_used: int = 1
    success_rate: float = 0.0
    context: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Progress & results
# ---------------------------------------------------------------------------

class ProgressEvent(BaseModel):
    task_id: str
    type: str  # started, reasoning_step, agent_complete, judging_started, complete, failed
    agent_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)


class WinnerSummary(BaseModel):
    agent_id: str
    persona: str
    tokens_used: int = 0
    time_ms: int = 0
    judge_score: Optional[int] = None


class OrchestrationResult(BaseModel):
    task_id: str
    category: TaskCategory
    winner: WinnerSummary
    judge_result: JudgeResult
    confidence_gate: ConfidenceGateDecision
    results: list[AgentRunResult]
    baseline: float
    lift: float
    learning_applied: bool = False
    completed_at: datetime = Field(default_factory=_now)
