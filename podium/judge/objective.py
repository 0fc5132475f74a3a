"""Objective domain correction for judge scores.

The coding-v1 scheme derives a deterministic 0-10 score from an agent's
tool-call ledger (verification runs, test runs, lint runs, unsupported
"tests pass" claims) and blends it into the judge's accuracy and
completeness.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from podium.core.models import (
    AgentRunResult,
    JudgeScore,
    JudgeWeights,
    ObjectiveAdjustment,
    ObjectiveMode,
)
from podium.judge.scoring import clamp_metric, weighted_total

logger = logging.getLogger("podium.judge.objective")

VERIFICATION_TOOLS = ("workspace-shell", "code-executor")
PACKAGE_MANAGERS = ("npm", "pnpm", "yarn")
RUN_VERBS = ("run", "run-script")
LINT_SCRIPTS = ("lint", "typecheck", "check")
PYTHON_LINTERS = ("ruff", "flake8", "mypy")

ACCURACY_JUDGE_SHARE = 0.72
COMPLETENESS_JUDGE_SHARE = 0.82

_PASSING_CLAIM = re.compile(r"\b(all tests? pass(ed)?|tests? pass(ed)?|no failing tests?)\b", re.IGNORECASE)
_TEST_CODE = re.compile(r"\b(assert|expect\(|pytest|unittest|describe\(|it\(|test\(|cargo test)\b", re.IGNORECASE)


@dataclass
class CodingSignals:
    verification_runs: int = 0
    successful_verification_runs: int = 0
    failed_verification_runs: int = 0
    test_runs: int = 0
    passed_test_runs: int = 0
    failed_test_runs: int = 0
    lint_runs: int = 0
    failed_lint_runs: int = 0
    claimed_passing_tests_without_evidence: bool = False


@dataclass
class ObjectiveOutcome:
    score: float
    notes: list[str] = field(default_factory=list)


def _shell_invocation(tool_input: Any) -> Optional[tuple[str, list[str]]]:
    if not isinstance(tool_input, dict):
        return None
    command = tool_input.get("command")
    if not isinstance(command, str) or not command.strip():
        return None

    args = [a.strip().lower() for a in tool_input.get("args") or [] if isinstance(a, str) and a.strip()]
    # "npm test" may arrive as one command string with no args
    parts = command.strip().lower().split()
    return parts[0], [*parts[1:], *args]


def is_test_invocation(command: str, args: list[str]) -> bool:
    first = args[0] if args else ""
    second = args[1] if len(args) > 1 else ""
    if command in PACKAGE_MANAGERS:
        return first == "test" or (first in RUN_VERBS and second == "test")
    if command in ("pytest", "tox"):
        return True
    if command.startswith("python"):
        return first == "-m" and second == "pytest"
    return False


def is_lint_invocation(command: str, args: list[str]) -> bool:
    first = args[0] if args else ""
    second = args[1] if len(args) > 1 else ""
    if command in PACKAGE_MANAGERS:
        return first in LINT_SCRIPTS or (first in RUN_VERBS and second in LINT_SCRIPTS)
    if command in PYTHON_LINTERS:
        return True
    if command.startswith("python"):
        return first == "-m" and second in PYTHON_LINTERS
    return False


def _is_code_executor_test(tool_input: Any) -> bool:
    if not isinstance(tool_input, dict):
        return False
    code = tool_input.get("code")
    return isinstance(code, str) and bool(_TEST_CODE.search(code))


def extract_coding_signals(result: AgentRunResult) -> CodingSignals:
    signals = CodingSignals()

    for usage in result.tool_usage:
        if usage.name in VERIFICATION_TOOLS:
            signals.verification_runs += 1
            if usage.success:
                signals.successful_verification_runs += 1
            else:
                signals.failed_verification_runs += 1

        is_test = False
        if usage.name == "workspace-shell":
            invocation = _shell_invocation(usage.input)
            if invocation is None:
                continue
            command, args = invocation
            is_test = is_test_invocation(command, args)
            if is_lint_invocation(command, args):
                signals.lint_runs += 1
                if not usage.success:
                    signals.failed_lint_runs += 1
        elif usage.name == "code-executor":
            is_test = _is_code_executor_test(usage.input)

        if is_test:
            signals.test_runs += 1
            if usage.success:
                signals.passed_test_runs += 1
            else:
                signals.failed_test_runs += 1

    signals.claimed_passing_tests_without_evidence = (
        bool(_PASSING_CLAIM.search(result.response)) and signals.test_runs == 0
    )
    return signals


def compute_coding_score(signals: CodingSignals) -> ObjectiveOutcome:
    score = 4.2
    notes: list[str] = []

    if signals.verification_runs > 0:
        score += 1.2
        score += min(2.2, signals.successful_verification_runs * 0.45)
        score -= min(1.8, signals.failed_verification_runs * 0.55)
    else:
        score -= 1.2
        notes.append("No executable verification steps detected.")

    if signals.test_runs > 0:
        pass_rate = signals.passed_test_runs / max(1, signals.test_runs)
        score += 0.8 + pass_rate * 2.1
        if signals.failed_test_runs > 0:
            notes.append(f"{signals.failed_test_runs} test run(s) failed.")
    else:
        score -= 0.4
        notes.append("No explicit test execution observed.")

    if signals.lint_runs > 0:
        score += 0.4 if signals.failed_lint_runs == 0 else -min(1.0, signals.failed_lint_runs * 0.35)

    if signals.claimed_passing_tests_without_evidence:
        score -= 1.5
        notes.append("Claimed tests passed without observed execution evidence.")

    return ObjectiveOutcome(score=clamp_metric(score), notes=notes)


def apply_coding_objective(
    score: JudgeScore,
    result: AgentRunResult,
    weights: JudgeWeights,
) -> JudgeScore:
    """Blend the coding-v1 objective score into one judge score."""
    signals = extract_coding_signals(result)
    outcome = compute_coding_score(signals)

    accuracy = clamp_metric(score.accuracy * ACCURACY_JUDGE_SHARE + outcome.score * (1 - ACCURACY_JUDGE_SHARE))
    completeness = clamp_metric(
        score.completeness * COMPLETENESS_JUDGE_SHARE + outcome.score * (1 - COMPLETENESS_JUDGE_SHARE)
    )
    base_total = weighted_total(weights, accuracy, completeness, score.clarity, score.insight)

    note = (
        f"Objective coding checks: verification {signals.successful_verification_runs}/{signals.verification_runs}, "
        f"tests {signals.passed_test_runs}/{signals.test_runs}."
    )
    adjustment = ObjectiveAdjustment(
        mode=ObjectiveMode.CODING_V1,
        objective_score=outcome.score,
        accuracy_delta=round(accuracy - score.accuracy, 2),
        completeness_delta=round(completeness - score.completeness, 2),
        verification_runs=signals.verification_runs,
        successful_verification_runs=signals.successful_verification_runs,
        failed_verification_runs=signals.failed_verification_runs,
        test_runs=signals.test_runs,
        passed_test_runs=signals.passed_test_runs,
        failed_test_runs=signals.failed_test_runs,
        lint_runs=signals.lint_runs,
        failed_lint_runs=signals.failed_lint_runs,
        notes=outcome.notes,
    )
    return score.model_copy(update={
        "accuracy": accuracy,
        "completeness": completeness,
        "base_total": base_total,
        "total": base_total,
        "reasoning": f"{score.reasoning} {note}".strip(),
        "objective_adjustment": adjustment,
    })


def apply_objective_correction(
    scores: Sequence[JudgeScore],
    results: Sequence[AgentRunResult],
    weights: JudgeWeights,
    mode: ObjectiveMode,
) -> list[JudgeScore]:
    """Apply the domain's objective correction. ObjectiveMode.NONE is a no-op."""
    if mode != ObjectiveMode.CODING_V1:
        return list(scores)

    by_agent = {result.agent_id: result for result in results}
    corrected = []
    for score in scores:
        result = by_agent.get(score.agent_id)
        if result is None:
            corrected.append(score)
            continue
        adjusted = apply_coding_objective(score, result, weights)
        logger.debug(
            "Objective correction for %s: accuracy %+.2f completeness %+.2f",
            score.agent_id,
            adjusted.objective_adjustment.accuracy_delta,
            adjusted.objective_adjustment.completeness_delta,
        )
        corrected.append(adjusted)
    return corrected
