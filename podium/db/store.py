"""Persistence sink contract and the in-memory implementation.

The orchestrator and the learning engine only touch storage through
RaceStore. Every write is independent so a failed write cannot corrupt
earlier ones.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import UTC, datetime
from typing import Optional, Sequence

from podium.core.models import (
    AgentRunResult,
    JudgeResult,
    LearningObservation,
    LearningRecord,
    StrategyRecord,
    Task,
    TaskCategory,
    TaskStatus,
    ToolCallRecord,
)


class RaceStore(ABC):
    """Storage contract for races, verdicts and the learning catalogue."""

    # -- tasks & race output --------------------------------------------

    @abstractmethod
    def save_task(self, task: Task) -> None:
        """Insert or replace a task row."""

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]:
        """Fetch a task by id."""

    @abstractmethod
    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        category: Optional[TaskCategory] = None,
    ) -> None:
        """Set a task's status (and category). Completed tasks get completed_at."""

    @abstractmethod
    def save_agent_results(self, task_id: str, results: Sequence[AgentRunResult]) -> None:
        """Store one row per agent result."""

    @abstractmethod
    def save_tool_usage(self, task_id: str, results: Sequence[AgentRunResult]) -> None:
        """Store the tool-call ledger of every agent."""

    @abstractmethod
    def upsert_judge_result(self, task_id: str, judge_result: JudgeResult) -> None:
        """Insert or replace the verdict for a task. Idempotent by task id."""

    @abstractmethod
    def get_judge_result(self, task_id: str) -> Optional[JudgeResult]:
        """Fetch the verdict for a task."""

    @abstractmethod
    def save_strategy(self, strategy: StrategyRecord) -> None:
        """Store a winner strategy row."""

    @abstractmethod
    def save_observations(self, observations: Sequence[LearningObservation]) -> None:
        """Store learning observation rows."""

    @abstractmethod
    def category_winner_totals(
        self,
        category: TaskCategory,
        exclude_task_id: Optional[str] = None,
        limit: int = 200,
    ) -> list[int]:
        """Winner totals of past verdicts in a category, most recent first."""

    # -- learning catalogue ---------------------------------------------

    @abstractmethod
    def find_learning(
        self,
        target_agent: str,
        source_agent: str,
        category: TaskCategory,
        persona: str,
    ) -> Optional[LearningRecord]:
        """Record keyed by target, source, category and persona substring of the pattern."""

    @abstractmethod
    def save_learning(self, record: LearningRecord) -> None:
        """Insert or replace a learning record by id."""

    @abstractmethod
    def top_learnings(
        self,
        category: TaskCategory,
        agent_ids: Sequence[str],
        min_success_rate: float = 0.7,
        limit: int = 5,
    ) -> list[LearningRecord]:
        """Best records for the category, by avg_lift desc then success_rate desc."""

    @abstractmethod
    def list_learnings(self, category: Optional[TaskCategory] = None) -> list[LearningRecord]:
        """All learning records, optionally for one category."""


def learning_sort_key(record: LearningRecord) -> tuple[float, float]:
    return (-record.avg_lift, -record.success_rate)


class InMemoryRaceStore(RaceStore):
    """Thread-safe dict-backed store. Default backend and test double."""

    def __init__(self):
        self._lock = threading.RLock()
        self.tasks: dict[str, Task] = {}
        self.agent_results: dict[str, list[AgentRunResult]] = {}
        self.tool_usage: dict[str, list[tuple[str, ToolCallRecord]]] = {}
        self.judge_results: OrderedDict[str, JudgeResult] = OrderedDict()
        self.strategies: list[StrategyRecord] = []
        self.observations: list[LearningObservation] = []
        self.learnings: dict[str, LearningRecord] = {}

    def save_task(self, task: Task) -> None:
        with self._lock:
            self.tasks[task.id] = task.model_copy(deep=True)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self.tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        category: Optional[TaskCategory] = None,
    ) -> None:
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                raise KeyError(f"Unknown task: {task_id}")
            update: dict = {"status": status}
            if category is not None:
                update["category"] = category
            if status == TaskStatus.COMPLETED:
                update["completed_at"] = datetime.now(UTC)
            self.tasks[task_id] = task.model_copy(update=update)

    def save_agent_results(self, task_id: str, results: Sequence[AgentRunResult]) -> None:
        with self._lock:
            self.agent_results.setdefault(task_id, []).extend(results)

    def save_tool_usage(self, task_id: str, results: Sequence[AgentRunResult]) -> None:
        with self._lock:
            rows = self.tool_usage.setdefault(task_id, [])
            for result in results:
                rows.extend((result.agent_id, usage) for usage in result.tool_usage)

    def upsert_judge_result(self, task_id: str, judge_result: JudgeResult) -> None:
        with self._lock:
            self.judge_results.pop(task_id, None)
            self.judge_results[task_id] = judge_result.model_copy(deep=True)

    def get_judge_result(self, task_id: str) -> Optional[JudgeResult]:
        with self._lock:
            result = self.judge_results.get(task_id)
            return result.model_copy(deep=True) if result else None

    def save_strategy(self, strategy: StrategyRecord) -> None:
        with self._lock:
            self.strategies.append(strategy)

    def save_observations(self, observations: Sequence[LearningObservation]) -> None:
        with self._lock:
            self.observations.extend(observations)

    def category_winner_totals(
        self,
        category: TaskCategory,
        exclude_task_id: Optional[str] = None,
        limit: int = 200,
    ) -> list[int]:
        with self._lock:
            totals = []
            for task_id in reversed(self.judge_results):
                if task_id == exclude_task_id:
                    continue
                task = self.tasks.get(task_id)
                if task is None or task.category != category:
                    continue
                verdict = self.judge_results[task_id]
                score = verdict.score_for(verdict.winner)
                if score is not None:
                    totals.append(score.total)
                if len(totals) >= limit:
                    break
            return totals

    def find_learning(
        self,
        target_agent: str,
        source_agent: str,
        category: TaskCategory,
        persona: str,
    ) -> Optional[LearningRecord]:
        with self._lock:
            for record in self.learnings.values():
                if (
                    record.target_agent == target_agent
                    and record.source_agent == source_agent
                    and record.category == category
                    and persona in record.pattern
                ):
                    return record.model_copy()
            return None

    def save_learning(self, record: LearningRecord) -> None:
        with self._lock:
            self.learnings[record.id] = record.model_copy()

    def top_learnings(
        self,
        category: TaskCategory,
        agent_ids: Sequence[str],
        min_success_rate: float = 0.7,
        limit: int = 5,
    ) -> list[LearningRecord]:
        with self._lock:
            eligible = [
                record.model_copy() for record in self.learnings.values()
                if record.category == category
                and record.target_agent in agent_ids
                and record.success_rate >= min_success_rate
            ]
        return sorted(eligible, key=learning_sort_key)[:limit]

    def list_learnings(self, category: Optional[TaskCategory] = None) -> list[LearningRecord]:
        with self._lock:
            records = [
                record.model_copy() for record in self.learnings.values()
                if category is None or record.category == category
            ]
        return sorted(records, key=learning_sort_key)
