"""Cross-agent learning catalogue.

A trusted, high-quality win is turned into a tagged pattern and propagated
to every other agent slot as a learning record. Records keep an EMA success
rate and a running mean of lift over the category baseline. All EMA logic
lives here; the store only reads and upserts.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Optional, Sequence

from podium.core.config import LearningConfig
from podium.core.models import (
    AgentRunResult,
    JudgeResult,
    LearningRecord,
    TaskCategory,
)
from podium.db.store import RaceStore
from podium.memory.observations import build_pattern

logger = logging.getLogger("podium.memory.learning")


class LearningEngine:
    """Updates and serves the learning catalogue through a RaceStore."""

    def __init__(self, store: RaceStore, config: Optional[LearningConfig] = None):
        self.store = store
        self.config = config or LearningConfig()

    def learn(
        self,
        winner: AgentRunResult,
        judge_result: JudgeResult,
        all_results: Sequence[AgentRunResult],
        category: TaskCategory,
        lift: float,
    ) -> int:
        """Propagate the winner's pattern to the other agents.

        The caller only invokes this when the confidence gate passed.
        Returns the number of records written; store failures are logged.
        """
        if not winner.success:
            return 0
        score = judge_result.score_for(winner.agent_id)
        if score is None or score.total < self.config.quality_threshold:
            return 0

        pattern = build_pattern(winner, category)
        quality = score.total / 40
        targets = [r.agent_id for r in all_results if r.agent_id != winner.agent_id]

        written = 0
        try:
            for target in targets:
                self._upsert(target, winner, category, pattern, quality, lift)
                written += 1
        except Exception as e:
            logger.warning("Failed to save learnings (non-critical): %s", e)
            return written

        logger.info(
            "Learning saved from %s to %d agents (category=%s, lift=%s)",
            winner.agent_id, written, category.value, lift,
        )
        return written

    def _upsert(
        self,
        target: str,
        winner: AgentRunResult,
        category: TaskCategory,
        pattern: str,
        quality: float,
        lift: float,
    ) -> None:
        succeeded = 1 if lift > 0 else 0
        existing = self.store.find_learning(target, winner.agent_id, category, winner.persona)

        if existing is None:
            record = LearningRecord(
                target_agent=target,
                source_agent=winner.agent_id,
                category=category,
                persona=winner.persona,
                pattern=pattern,
                applied_count=1,
                success_count=succeeded,
                success_rate=quality,
                avg_lift=lift,
                lift_samples=1,
            )
        else:
            ema = self.config.ema_weight
            samples = existing.lift_samples + 1
            record = existing.model_copy(update={
                "pattern": pattern,
                "applied_count": existing.applied_count + 1,
                "success_count": existing.success_count + succeeded,
                "success_rate": existing.success_rate * (1 - ema) + quality * ema,
                "avg_lift": round((existing.avg_lift * existing.lift_samples + lift) / samples, 4),
                "lift_samples": samples,
                "updated_at": datetime.now(UTC),
            })
        self.store.save_learning(record)

    def learned_hints(self, category: TaskCategory, agent_ids: Sequence[str]) -> list[str]:
        """Patterns worth prepending to a new prompt in this category."""
        records = self.store.top_learnings(
            category,
            agent_ids,
            min_success_rate=self.config.min_hint_success_rate,
            limit=self.config.max_hints,
        )
        return [record.pattern for record in records]

    def baseline(self, category: TaskCategory, exclude_task_id: Optional[str] = None) -> float:
        """Mean historical winner total for the category."""
        totals = self.store.category_winner_totals(
            category, exclude_task_id=exclude_task_id, limit=self.config.baseline_window
        )
        if not totals:
            return self.config.baseline_default
        return round(sum(totals) / len(totals), 2)
