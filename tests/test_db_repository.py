"""Tests for podium/db/repository.py: PostgresRaceStore against a real database.

Requires a running PostgreSQL instance. Skipped if unavailable.
"""

import uuid

import pytest

from podium.core.models import (
    JudgeMode,
    JudgeResult,
    JudgeScore,
    LearningObservation,
    LearningRecord,
    StrategyRecord,
    Task,
    TaskCategory,
    TaskStatus,
    ToolCallRecord,
)
from podium.judge.scoring import placeholder_evidence

from tests.conftest import make_result, requires_postgres


def _verdict(total=30):
    return JudgeResult(
        winner="agent-1",
        scores=[JudgeScore(
            agent_id="agent-1", accuracy=7.5, completeness=7, clarity=7, insight=7,
            base_total=total, total=total, metric_evidence=placeholder_evidence("q", "{metric}"),
        )],
        summary="agent-1 wins",
        mode=JudgeMode.CONSENSUS,
    )


@pytest.fixture
def saved_task(pg_store, db_engine):
    task = Task(prompt="Repository test prompt", category=TaskCategory.ANALYSIS)
    pg_store.save_task(task)
    yield task
    db_engine.execute("DELETE FROM tasks WHERE id = %s", [task.id])


@pytest.fixture
def agent_prefix(db_engine):
    prefix = f"test-{uuid.uuid4().hex[:8]}"
    yield prefix
    db_engine.execute("DELETE FROM agent_learnings WHERE target_agent LIKE %s", [f"{prefix}%"])


@requires_postgres
class TestTasks:
    def test_round_trip_and_status(self, pg_store, saved_task):
        pg_store.update_task_status(saved_task.id, TaskStatus.COMPLETED, TaskCategory.CODING)

        stored = pg_store.get_task(saved_task.id)
        assert stored.prompt == "Repository test prompt"
        assert stored.status == TaskStatus.COMPLETED
        assert stored.category == TaskCategory.CODING
        assert stored.completed_at is not None

    def test_missing(self, pg_store):
        assert pg_store.get_task(str(uuid.uuid4())) is None


@requires_postgres
class TestRaceOutput:
    def test_agent_results_and_tool_usage(self, pg_store, db_engine, saved_task):
        results = [
            make_result("agent-1", "a", thoughts=("first thought here",), tool_usage=[
                ToolCallRecord(name="calculator", input={"expression": "1+1"}, success=True),
            ]),
            make_result("agent-2", "", success=False, error="timeout"),
        ]
        pg_store.save_agent_results(saved_task.id, results)
        pg_store.save_tool_usage(saved_task.id, results)

        rows = db_engine.fetch_all(
            "SELECT * FROM agent_results WHERE task_id = %s ORDER BY agent_id", [saved_task.id]
        )
        assert [r["success"] for r in rows] == [True, False]
        assert rows[0]["reasoning"][0]["thought"] == "first thought here"
        usage = db_engine.fetch_all("SELECT * FROM tool_usage WHERE task_id = %s", [saved_task.id])
        assert usage[0]["input"] == {"expression": "1+1"}

    def test_judge_result_upsert(self, pg_store, saved_task):
        pg_store.upsert_judge_result(saved_task.id, _verdict(total=22))
        pg_store.upsert_judge_result(saved_task.id, _verdict(total=31))

        verdict = pg_store.get_judge_result(saved_task.id)
        assert verdict.mode == JudgeMode.CONSENSUS
        assert verdict.score_for("agent-1").total == 31
        assert verdict.score_for("agent-1").accuracy == 7.5

    def test_category_winner_totals(self, pg_store, saved_task):
        pg_store.upsert_judge_result(saved_task.id, _verdict(total=27))

        totals = pg_store.category_winner_totals(TaskCategory.ANALYSIS)
        excluded = pg_store.category_winner_totals(TaskCategory.ANALYSIS, exclude_task_id=saved_task.id)
        assert totals[0] == 27
        assert len(excluded) == len(totals) - 1

    def test_strategy_and_observations(self, pg_store, db_engine, saved_task):
        pg_store.save_strategy(StrategyRecord(
            task_id=saved_task.id, agent_id="agent-1", approach="The Analyst: wins",
            success_rate=0.75, context=["domain:analysis", "lift:3.0"],
        ))
        pg_store.save_observations([
            LearningObservation(task_id=saved_task.id, agent_id="agent-1", persona="The Analyst",
                                payload={"reasoning": [{"step": 1}]}),
        ])

        strategy = db_engine.fetch_one("SELECT * FROM strategies WHERE task_id = %s", [saved_task.id])
        assert strategy["context"] == ["domain:analysis", "lift:3.0"]
        observation = db_engine.fetch_one("SELECT * FROM learning_observations WHERE task_id = %s", [saved_task.id])
        assert observation["payload"] == {"reasoning": [{"step": 1}]}
        assert observation["outcome_type"] == "loss_pattern"


@requires_postgres
class TestLearnings:
    def test_find_and_update(self, pg_store, agent_prefix):
        record = LearningRecord(
            target_agent=f"{agent_prefix}-agent-2", source_agent="agent-1", category=TaskCategory.MATH,
            persona="The Analyst", pattern="[The Analyst][math][tools:no-tools] idea",
            applied_count=1, success_rate=0.8, avg_lift=2.0, lift_samples=1,
        )
        pg_store.save_learning(record)

        found = pg_store.find_learning(record.target_agent, "agent-1", TaskCategory.MATH, "The Analyst")
        assert found.id == record.id
        assert pg_store.find_learning(record.target_agent, "agent-1", TaskCategory.MATH, "The Lateral Thinker") is None

        pg_store.save_learning(found.model_copy(update={"applied_count": 2, "success_rate": 0.84}))
        again = pg_store.find_learning(record.target_agent, "agent-1", TaskCategory.MATH, "The Analyst")
        assert again.applied_count == 2
        assert again.success_rate == pytest.approx(0.84)

    def test_top_learnings_order_and_filter(self, pg_store, agent_prefix):
        targets = [f"{agent_prefix}-agent-{i}" for i in range(1, 4)]
        for target, rate, lift in zip(targets, (0.75, 0.95, 0.5), (2.0, 2.0, 9.0)):
            pg_store.save_learning(LearningRecord(
                target_agent=target, source_agent="agent-9", category=TaskCategory.MATH,
                persona="The Analyst", pattern="[The Analyst] p", success_rate=rate, avg_lift=lift,
            ))

        top = pg_store.top_learnings(TaskCategory.MATH, targets)
        assert [r.target_agent for r in top] == [targets[1], targets[0]]
