"""LLM-backed judge: single-panel scoring and consensus panels.

The judge's raw text is validated against JudgeResponsePayload at the
boundary. An unusable response never aborts the race: affected agents get a
flat fallback score instead.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from string import Template
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from podium.core.config import JudgeConfig, PromptLoader
from podium.core.exceptions import JudgeParseError, LLMError
from podium.core.models import (
    METRICS,
    AgentRunResult,
    JudgeMode,
    JudgeResult,
    JudgeScore,
    JudgeWeights,
    MetricEvidenceSet,
    ObjectiveMode,
)
from podium.judge.consensus import aggregate_panels
from podium.judge.objective import apply_objective_correction
from podium.judge.scoring import (
    DEFAULT_WIN_PLACEHOLDER,
    apply_diversity_penalty,
    build_evidence,
    fallback_score,
    resolve_winner,
    weighted_total,
)
from podium.llm.client import LLMMessage, OpenRouterClient, strip_code_fences
from podium.llm.response_parser import extract_json_block
from podium.llm.router import ModelRouter

logger = logging.getLogger("podium.judge")

JUDGE_UNAVAILABLE = "Judge unavailable - fallback scoring used."
JUDGE_OMITTED = "Judge omitted this response; fallback score applied."

DEFAULT_SYSTEM_PROMPT = """You are an impartial expert judge evaluating AI agent responses.
Prompt version: $prompt_version

Score each response on:
- accuracy ($accuracy): factual correctness and validity
- completeness ($completeness): how fully it addresses the task
- clarity ($clarity): structure, readability, communication quality
- insight ($insight): depth and non-obvious value
$objective_instructions

You must provide evidence for every metric by quoting exact text from the agent response.
Do not invent evidence. If weak evidence exists, quote the weakest relevant snippet and explain why it is weak.

CRITICAL: Respond ONLY with valid JSON matching this exact shape:
{
  "scores": [
    {
      "agentId": "agent-1",
      "accuracy": 8,
      "completeness": 7,
      "clarity": 9,
      "insight": 6,
      "reasoning": "Short rationale",
      "metricEvidence": {
        "accuracy": {"quote": "exact snippet", "reason": "why this supports score"},
        "completeness": {"quote": "exact snippet", "reason": "why this supports score"},
        "clarity": {"quote": "exact snippet", "reason": "why this supports score"},
        "insight": {"quote": "exact snippet", "reason": "why this supports score"}
      }
    }
  ],
  "winner": "agent-1",
  "summary": "One sentence explaining winner."
}"""

CODING_INSTRUCTIONS = (
    "For coding tasks, prioritize verifiable execution evidence: test runs, lint/type checks, "
    "and concrete failure/success outputs. Penalize unsupported claims like \"tests pass\" without proof."
)


# ---------------------------------------------------------------------------
# Boundary schema for raw judge output
# ---------------------------------------------------------------------------

class EvidencePayload(BaseModel):
    quote: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class EvidenceSetPayload(BaseModel):
    accuracy: EvidencePayload
    completeness: EvidencePayload
    clarity: EvidencePayload
    insight: EvidencePayload


class ScorePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(alias="agentId", min_length=1)
    accuracy: float = Field(ge=0, le=10)
    completeness: float = Field(ge=0, le=10)
    clarity: float = Field(ge=0, le=10)
    insight: float = Field(ge=0, le=10)
    reasoning: str = Field(min_length=1)
    metric_evidence: EvidenceSetPayload = Field(alias="metricEvidence")


class JudgeResponsePayload(BaseModel):
    scores: list[ScorePayload] = Field(min_length=1)
    winner: str = Field(min_length=1)
    summary: str = Field(min_length=1)


def parse_judge_response(raw_text: str) -> JudgeResponsePayload:
    """Decode and validate raw judge text.

    Raises:
        JudgeParseError: when the text is not JSON or fails validation.
    """
    if not isinstance(raw_text, str):
        raise JudgeParseError(f"Judge returned {type(raw_text).__name__} content instead of text")
    cleaned = strip_code_fences(raw_text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = extract_json_block(raw_text)
        if data is None:
            raise JudgeParseError(f"Judge returned non-JSON output: {raw_text[:200]!r}")

    try:
        return JudgeResponsePayload.model_validate(data)
    except ValidationError as e:
        raise JudgeParseError(f"Judge output failed validation: {e.error_count()} error(s)") from e


def _percent(value: float) -> str:
    return f"{int(value * 100 + 0.5)}%"


class JudgeEngine:
    """Scores successful agent responses and picks a winner."""

    def __init__(
        self,
        client: OpenRouterClient,
        router: ModelRouter,
        config: Optional[JudgeConfig] = None,
        prompts: Optional[PromptLoader] = None,
    ):
        self.client = client
        self.router = router
        self.config = config or JudgeConfig()
        self.prompts = prompts or PromptLoader()

    def preflight(self) -> None:
        """Raise ConfigError when the judge cannot run."""
        self.client.require_api_key()
        self.router.get_model_chain("judge")

    # -- public API ------------------------------------------------------

    def judge(
        self,
        prompt: str,
        results: Sequence[AgentRunResult],
        weights: JudgeWeights,
        mode: JudgeMode = JudgeMode.SINGLE,
        objective_mode: ObjectiveMode = ObjectiveMode.NONE,
    ) -> JudgeResult:
        successful = [r for r in results if r.succeeded_with_output]
        if not successful:
            raise ValueError("No successful results to judge")
        if len(successful) == 1:
            return self.default_verdict(successful[0], weights)

        if mode == JudgeMode.CONSENSUS:
            return self._judge_consensus(prompt, successful, weights, objective_mode)
        return self.judge_panel(prompt, successful, weights, objective_mode)

    def default_verdict(self, result: AgentRunResult, weights: JudgeWeights) -> JudgeResult:
        """Verdict for a race with exactly one successful agent. No LLM call."""
        score = fallback_score(
            result.agent_id,
            "Only successful agent - won by default.",
            weights,
            quote=DEFAULT_WIN_PLACEHOLDER,
            evidence_reason="Only successful agent; {metric} was not judged.",
        )
        return JudgeResult(
            winner=result.agent_id,
            scores=[score],
            summary=f"{result.agent_id} won by default as the only successful agent.",
            prompt_version=self.config.prompt_version,
            criteria_weights=weights,
            mode=JudgeMode.SINGLE,
        )

    def judge_panel(
        self,
        prompt: str,
        successful: Sequence[AgentRunResult],
        weights: JudgeWeights,
        objective_mode: ObjectiveMode = ObjectiveMode.NONE,
        panel_id: Optional[int] = None,
    ) -> JudgeResult:
        """One complete single-judge pass over the successful results."""
        logger.info(
            "Judge evaluating %d responses%s",
            len(successful),
            f" (panel {panel_id})" if panel_id else "",
        )
        try:
            payload = self._request(prompt, successful, weights, objective_mode, panel_id)
        except (LLMError, JudgeParseError) as e:
            logger.error("Judge failed, using fallback scoring: %s", e)
            scores = [fallback_score(r.agent_id, JUDGE_UNAVAILABLE, weights) for r in successful]
            scores = self._finalize(scores, successful, weights, objective_mode)
            winner = resolve_winner(scores)
            return self._result(
                winner, scores, f"Judge unavailable - {winner} won by fallback scoring.", weights, panel_id
            )

        incoming = {score.agent_id: score for score in payload.scores}
        scores = []
        for result in successful:
            parsed = incoming.get(result.agent_id)
            if parsed is None:
                logger.warning("Judge omitted %s; applying fallback score", result.agent_id)
                scores.append(fallback_score(result.agent_id, JUDGE_OMITTED, weights))
            else:
                scores.append(self._to_score(parsed, result, weights))

        scores = self._finalize(scores, successful, weights, objective_mode)
        winner = resolve_winner(scores)
        logger.info("Judge verdict: %s wins", winner)
        summary = payload.summary or f"{winner} produced the strongest overall answer."
        return self._result(winner, scores, summary, weights, panel_id)

    # -- internals -------------------------------------------------------

    def _judge_consensus(
        self,
        prompt: str,
        successful: Sequence[AgentRunResult],
        weights: JudgeWeights,
        objective_mode: ObjectiveMode,
    ) -> JudgeResult:
        panel_count = max(1, self.config.panel_count)
        logger.info("Consensus judging with %d panels", panel_count)
        with ThreadPoolExecutor(max_workers=panel_count, thread_name_prefix="judge-panel") as pool:
            futures = [
                pool.submit(self.judge_panel, prompt, successful, weights, objective_mode, panel_id)
                for panel_id in range(1, panel_count + 1)
            ]
            runs = [future.result() for future in futures]

        return aggregate_panels(
            runs,
            successful,
            weights,
            self.config.prompt_version,
            self.config.diversity_similarity_threshold,
            self.config.diversity_penalty_factor,
        )

    def _finalize(
        self,
        scores: list[JudgeScore],
        successful: Sequence[AgentRunResult],
        weights: JudgeWeights,
        objective_mode: ObjectiveMode,
    ) -> list[JudgeScore]:
        # objective correction runs before the diversity penalty
        scores = apply_objective_correction(scores, successful, weights, objective_mode)
        return apply_diversity_penalty(
            scores,
            successful,
            self.config.diversity_similarity_threshold,
            self.config.diversity_penalty_factor,
        )

    def _to_score(self, parsed: ScorePayload, result: AgentRunResult, weights: JudgeWeights) -> JudgeScore:
        evidence = MetricEvidenceSet(**{
            metric: build_evidence(
                result.response,
                getattr(parsed.metric_evidence, metric).quote,
                getattr(parsed.metric_evidence, metric).reason,
            )
            for metric in METRICS
        })
        base_total = weighted_total(weights, parsed.accuracy, parsed.completeness, parsed.clarity, parsed.insight)
        return JudgeScore(
            agent_id=result.agent_id,
            accuracy=parsed.accuracy,
            completeness=parsed.completeness,
            clarity=parsed.clarity,
            insight=parsed.insight,
            base_total=base_total,
            total=base_total,
            reasoning=parsed.reasoning,
            metric_evidence=evidence,
        )

    def _result(
        self,
        winner: str,
        scores: list[JudgeScore],
        summary: str,
        weights: JudgeWeights,
        panel_id: Optional[int],
    ) -> JudgeResult:
        return JudgeResult(
            winner=winner,
            scores=scores,
            summary=summary,
            prompt_version=self.config.prompt_version,
            criteria_weights=weights,
            mode=JudgeMode.SINGLE,
            panel_id=panel_id,
        )

    def _request(
        self,
        prompt: str,
        successful: Sequence[AgentRunResult],
        weights: JudgeWeights,
        objective_mode: ObjectiveMode,
        panel_id: Optional[int],
    ) -> JudgeResponsePayload:
        messages = [
            LLMMessage(role="system", content=self.build_system_prompt(weights, objective_mode)),
            LLMMessage(role="user", content=self.build_user_prompt(prompt, successful, panel_id)),
        ]
        response = self.client.complete_with_fallback(
            messages=messages,
            models=self.router.get_model_chain("judge"),
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        return parse_judge_response(response.content)

    def build_system_prompt(self, weights: JudgeWeights, objective_mode: ObjectiveMode) -> str:
        template = Template(self.prompts.load("judge_system.txt", default=DEFAULT_SYSTEM_PROMPT))
        return template.safe_substitute(
            prompt_version=self.config.prompt_version,
            accuracy=_percent(weights.accuracy),
            completeness=_percent(weights.completeness),
            clarity=_percent(weights.clarity),
            insight=_percent(weights.insight),
            objective_instructions=CODING_INSTRUCTIONS if objective_mode == ObjectiveMode.CODING_V1 else "",
        )

    @staticmethod
    def build_user_prompt(
        prompt: str,
        successful: Sequence[AgentRunResult],
        panel_id: Optional[int] = None,
    ) -> str:
        responses = "\n\n".join(
            f"=== {r.agent_id} ({r.persona}) ===\n{r.response}" for r in successful
        )
        panel_suffix = f"\nPanelist: {panel_id}" if panel_id else ""
        return (
            f'TASK GIVEN TO AGENTS:\n"{prompt}"\n\n'
            f"AGENT RESPONSES TO EVALUATE:\n{responses}\n{panel_suffix}\n\n"
            "Score each response and identify the winner."
        )
