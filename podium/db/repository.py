"""PostgreSQL implementation of the race store.

All SQL lives here. The orchestrator and the learning engine never write
raw SQL; they call RaceStore methods that take and return Pydantic models.
Query failures surface as PersistenceError.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Optional, Sequence

from podium.core.exceptions import DatabaseError, PersistenceError
from podium.core.models import (
    AgentRunResult,
    JudgeResult,
    LearningObservation,
    LearningRecord,
    StrategyRecord,
    Task,
    TaskCategory,
    TaskStatus,
)
from podium.db.engine import DatabaseEngine
from podium.db.store import RaceStore


class PostgresRaceStore(RaceStore):
    """RaceStore backed by DatabaseEngine."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    def _execute(self, what: str, query: str, params: Sequence[Any]) -> None:
        try:
            self.engine.execute(query, params)
        except DatabaseError as e:
            raise PersistenceError(f"Failed to save {what}: {e}") from e

    def _execute_many(self, what: str, query: str, rows: Sequence[Sequence[Any]]) -> None:
        if not rows:
            return
        try:
            with self.engine.transaction() as cur:
                cur.executemany(query, rows)
        except DatabaseError as e:
            raise PersistenceError(f"Failed to save {what}: {e}") from e

    # -------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------

    def save_task(self, task: Task) -> None:
        self._execute(
            "task",
            """INSERT INTO tasks (id, prompt, category, status, created_at, completed_at)
               VALUES (%s, %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE SET
                   category = EXCLUDED.category,
                   status = EXCLUDED.status,
                   completed_at = EXCLUDED.completed_at""",
            [
                task.id,
                task.prompt,
                task.category.value if task.category else None,
                task.status.value,
                task.created_at,
                task.completed_at,
            ],
        )

    def get_task(self, task_id: str) -> Optional[Task]:
        row = self.engine.fetch_one("SELECT * FROM tasks WHERE id = %s", [task_id])
        if row is None:
            return None
        return _row_to_task(row)

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        category: Optional[TaskCategory] = None,
    ) -> None:
        completed_at = datetime.now(UTC) if status == TaskStatus.COMPLETED else None
        self._execute(
            "task status",
            """UPDATE tasks SET status = %s,
                   category = COALESCE(%s, category),
                   completed_at = COALESCE(%s, completed_at)
               WHERE id = %s""",
            [status.value, category.value if category else None, completed_at, task_id],
        )

    # -------------------------------------------------------------------
    # Race output
    # -------------------------------------------------------------------

    def save_agent_results(self, task_id: str, results: Sequence[AgentRunResult]) -> None:
        self._execute_many(
            "agent results",
            """INSERT INTO agent_results
                   (task_id, agent_id, persona, response, reasoning, tokens_used,
                    time_ms, success, error, telemetry)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                [
                    task_id,
                    r.agent_id,
                    r.persona,
                    r.response,
                    json.dumps([step.model_dump(mode="json") for step in r.reasoning]),
                    r.tokens_used,
                    r.time_ms,
                    r.success,
                    r.error,
                    r.telemetry.model_dump_json(),
                ]
                for r in results
            ],
        )

    def save_tool_usage(self, task_id: str, results: Sequence[AgentRunResult]) -> None:
        self._execute_many(
            "tool usage",
            """INSERT INTO tool_usage
                   (task_id, agent_id, tool_name, input, success, summary,
                    duration_ms, turn_index, call_index, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                [
                    task_id,
                    r.agent_id,
                    usage.name,
                    json.dumps(usage.input, default=str),
                    usage.success,
                    usage.summary,
                    usage.duration_ms,
                    usage.turn_index,
                    usage.call_index,
                    usage.timestamp,
                ]
                for r in results
                for usage in r.tool_usage
            ],
        )

    def upsert_judge_result(self, task_id: str, judge_result: JudgeResult) -> None:
        winner = judge_result.score_for(judge_result.winner)
        self._execute(
            "judge result",
            """INSERT INTO judge_results (task_id, winner, winner_total, mode, prompt_version, verdict, judged_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (task_id) DO UPDATE SET
                   winner = EXCLUDED.winner,
                   winner_total = EXCLUDED.winner_total,
                   mode = EXCLUDED.mode,
                   prompt_version = EXCLUDED.prompt_version,
                   verdict = EXCLUDED.verdict,
                   judged_at = EXCLUDED.judged_at""",
            [
                task_id,
                judge_result.winner,
                winner.total if winner else None,
                judge_result.mode.value,
                judge_result.prompt_version,
                judge_result.model_dump_json(),
                judge_result.judged_at,
            ],
        )

    def get_judge_result(self, task_id: str) -> Optional[JudgeResult]:
        row = self.engine.fetch_one("SELECT verdict FROM judge_results WHERE task_id = %s", [task_id])
        if row is None:
            return None
        return _load_verdict(row["verdict"])

    def save_strategy(self, strategy: StrategyRecord) -> None:
        self._execute(
            "strategy",
            """INSERT INTO strategies (id, task_id, agent_id, approach, times_used, success_rate, context, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                strategy.id,
                strategy.task_id,
                strategy.agent_id,
                strategy.approach,
                strategy.times_used,
                strategy.success_rate,
                strategy.context,
                strategy.created_at,
            ],
        )

    def save_observations(self, observations: Sequence[LearningObservation]) -> None:
        self._execute_many(
            "learning observations",
            """INSERT INTO learning_observations
                   (id, task_id, agent_id, persona, outcome_type, category,
                    score_total, score_base_total, score_accuracy, score_completeness,
                    score_clarity, score_insight, judge_mode, judge_prompt_version,
                    tool_path, tool_count, verification_steps, used_search_first,
                    pattern, payload, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                       %s, %s, %s, %s, %s, %s, %s)""",
            [
                [
                    o.id, o.task_id, o.agent_id, o.persona, o.outcome_type.value, o.category.value,
                    o.score_total, o.score_base_total, o.score_accuracy, o.score_completeness,
                    o.score_clarity, o.score_insight, o.judge_mode.value, o.judge_prompt_version,
                    o.tool_path, o.tool_count, o.verification_steps, o.used_search_first,
                    o.pattern, json.dumps(o.payload, default=str), o.created_at,
                ]
                for o in observations
            ],
        )

    def category_winner_totals(
        self,
        category: TaskCategory,
        exclude_task_id: Optional[str] = None,
        limit: int = 200,
    ) -> list[int]:
        rows = self.engine.fetch_all(
            """SELECT j.winner_total FROM judge_results j
               JOIN tasks t ON t.id = j.task_id
               WHERE t.category = %s AND j.winner_total IS NOT NULL
                 AND (%s::text IS NULL OR j.task_id <> %s)
               ORDER BY j.judged_at DESC
               LIMIT %s""",
            [category.value, exclude_task_id, exclude_task_id, limit],
        )
        return [int(r["winner_total"]) for r in rows]

    # -------------------------------------------------------------------
    # Learning catalogue
    # -------------------------------------------------------------------

    def find_learning(
        self,
        target_agent: str,
        source_agent: str,
        category: TaskCategory,
        persona: str,
    ) -> Optional[LearningRecord]:
        row = self.engine.fetch_one(
            """SELECT * FROM agent_learnings
               WHERE target_agent = %s AND source_agent = %s AND category = %s
                 AND strpos(pattern, %s) > 0
               ORDER BY updated_at DESC
               LIMIT 1""",
            [target_agent, source_agent, category.value, persona],
        )
        if row is None:
            return None
        return _row_to_learning(row)

    def save_learning(self, record: LearningRecord) -> None:
        self._execute(
            "learning",
            """INSERT INTO agent_learnings
                   (id, target_agent, source_agent, category, persona, pattern, applied_count,
                    success_count, success_rate, avg_lift, lift_samples, created_at, updated_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE SET
                   pattern = EXCLUDED.pattern,
                   applied_count = EXCLUDED.applied_count,
                   success_count = EXCLUDED.success_count,
                   success_rate = EXCLUDED.success_rate,
                   avg_lift = EXCLUDED.avg_lift,
                   lift_samples = EXCLUDED.lift_samples,
                   updated_at = EXCLUDED.updated_at""",
            [
                record.id,
                record.target_agent,
                record.source_agent,
                record.category.value,
                record.persona,
                record.pattern,
                record.applied_count,
                record.success_count,
                record.success_rate,
                record.avg_lift,
                record.lift_samples,
                record.created_at,
                record.updated_at,
            ],
        )

    def top_learnings(
        self,
        category: TaskCategory,
        agent_ids: Sequence[str],
        min_success_rate: float = 0.7,
        limit: int = 5,
    ) -> list[LearningRecord]:
        rows = self.engine.fetch_all(
            """SELECT * FROM agent_learnings
               WHERE category = %s AND target_agent = ANY(%s) AND success_rate >= %s
               ORDER BY avg_lift DESC, success_rate DESC
               LIMIT %s""",
            [category.value, list(agent_ids), min_success_rate, limit],
        )
        return [_row_to_learning(r) for r in rows]

    def list_learnings(self, category: Optional[TaskCategory] = None) -> list[LearningRecord]:
        if category is None:
            rows = self.engine.fetch_all(
                "SELECT * FROM agent_learnings ORDER BY avg_lift DESC, success_rate DESC"
            )
        else:
            rows = self.engine.fetch_all(
                """SELECT * FROM agent_learnings WHERE category = %s
                   ORDER BY avg_lift DESC, success_rate DESC""",
                [category.value],
            )
        return [_row_to_learning(r) for r in rows]


# ---------------------------------------------------------------------------
# Row converters
# ---------------------------------------------------------------------------

def _row_to_task(row: dict) -> Task:
    return Task(
        id=str(row["id"]),
        prompt=row["prompt"],
        category=TaskCategory(row["category"]) if row.get("category") else None,
        status=TaskStatus(row["status"]),
        created_at=row.get("created_at", datetime.now(UTC)),
        completed_at=row.get("completed_at"),
    )


def _row_to_learning(row: dict) -> LearningRecord:
    return LearningRecord(
        id=str(row["id"]),
        target_agent=row["target_agent"],
        source_agent=row["source_agent"],
        category=TaskCategory(row["category"]),
        persona=row["persona"],
        pattern=row["pattern"],
        applied_count=row.get("applied_count", 0),
        success_count=row.get("success_count", 0),
        success_rate=float(row.get("success_rate", 0.0)),
        avg_lift=float(row.get("avg_lift", 0.0)),
        lift_samples=row.get("lift_samples", 0),
        created_at=row.get("created_at", datetime.now(UTC)),
        updated_at=row.get("updated_at", datetime.now(UTC)),
    )


def _load_verdict(raw: Any) -> JudgeResult:
    if isinstance(raw, str):
        return JudgeResult.model_validate_json(raw)
    return JudgeResult.model_validate(raw)
