"""Tests for podium/db/store.py: the in-memory RaceStore."""

import pytest

from podium.core.models import (
    JudgeResult,
    JudgeScore,
    LearningRecord,
    Task,
    TaskCategory,
    TaskStatus,
    ToolCallRecord,
)
from podium.judge.scoring import placeholder_evidence

from tests.conftest import make_result


def _verdict(winner="agent-1", total=30):
    return JudgeResult(
        winner=winner,
        scores=[JudgeScore(
            agent_id=winner, accuracy=7, completeness=7, clarity=7, insight=7,
            base_total=total, total=total, metric_evidence=placeholder_evidence("q", "{metric}"),
        )],
        summary="s",
    )


def _learning(target="agent-2", source="agent-1", persona="The Analyst", rate=0.8, lift=1.0, category=TaskCategory.MATH):
    return LearningRecord(
        target_agent=target, source_agent=source, category=category, persona=persona,
        pattern=f"[{persona}][{category.value}][tools:no-tools] idea", success_rate=rate, avg_lift=lift,
    )


class TestTasks:
    def test_save_get_update(self, memory_store):
        task = Task(prompt="p")
        memory_store.save_task(task)
        memory_store.update_task_status(task.id, TaskStatus.COMPLETED, TaskCategory.CODING)

        stored = memory_store.get_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.category == TaskCategory.CODING
        assert stored.completed_at is not None
        assert task.status == TaskStatus.PENDING

    def test_update_unknown_task(self, memory_store):
        with pytest.raises(KeyError):
            memory_store.update_task_status("missing", TaskStatus.RUNNING)

    def test_get_missing(self, memory_store):
        assert memory_store.get_task("missing") is None


class TestRaceOutput:
    def test_results_and_tool_usage(self, memory_store):
        results = [
            make_result("agent-1", "a", tool_usage=[ToolCallRecord(name="calculator"), ToolCallRecord(name="web-search")]),
            make_result("agent-2", "b"),
        ]
        memory_store.save_agent_results("t", results)
        memory_store.save_tool_usage("t", results)

        assert len(memory_store.agent_results["t"]) == 2
        assert [(agent, usage.name) for agent, usage in memory_store.tool_usage["t"]] == [
            ("agent-1", "calculator"),
            ("agent-1", "web-search"),
        ]

    def test_judge_result_upsert_is_idempotent(self, memory_store):
        memory_store.upsert_judge_result("t", _verdict(total=20))
        memory_store.upsert_judge_result("t", _verdict(total=33))

        assert len(memory_store.judge_results) == 1
        assert memory_store.get_judge_result("t").scores[0].total == 33

    def test_category_winner_totals_most_recent_first(self, memory_store):
        ids = []
        for total, category in ((21, TaskCategory.MATH), (35, TaskCategory.CODING), (28, TaskCategory.MATH)):
            task = Task(prompt="p", category=category)
            memory_store.save_task(task)
            memory_store.upsert_judge_result(task.id, _verdict(total=total))
            ids.append(task.id)

        assert memory_store.category_winner_totals(TaskCategory.MATH) == [28, 21]
        assert memory_store.category_winner_totals(TaskCategory.MATH, exclude_task_id=ids[2]) == [21]
        assert memory_store.category_winner_totals(TaskCategory.MATH, limit=1) == [28]


class TestLearnings:
    def test_find_by_persona_in_pattern(self, memory_store):
        record = _learning()
        memory_store.save_learning(record)

        assert memory_store.find_learning("agent-2", "agent-1", TaskCategory.MATH, "The Analyst").id == record.id
        assert memory_store.find_learning("agent-2", "agent-1", TaskCategory.MATH, "The Lateral Thinker") is None
        assert memory_store.find_learning("agent-3", "agent-1", TaskCategory.MATH, "The Analyst") is None

    def test_save_replaces_by_id(self, memory_store):
        record = _learning()
        memory_store.save_learning(record)
        memory_store.save_learning(record.model_copy(update={"applied_count": 5}))

        [stored] = memory_store.list_learnings()
        assert stored.applied_count == 5

    def test_top_learnings(self, memory_store):
        memory_store.save_learning(_learning(target="agent-1", lift=2.0, rate=0.75))
        memory_store.save_learning(_learning(target="agent-2", lift=2.0, rate=0.95))
        memory_store.save_learning(_learning(target="agent-3", lift=9.0, rate=0.5))
        memory_store.save_learning(_learning(target="agent-1", lift=5.0, category=TaskCategory.CODING))

        top = memory_store.top_learnings(TaskCategory.MATH, ["agent-1", "agent-2", "agent-3"])
        assert [(r.target_agent, r.success_rate) for r in top] == [("agent-2", 0.95), ("agent-1", 0.75)]
        assert len(memory_store.top_learnings(TaskCategory.MATH, ["agent-1", "agent-2"], limit=1)) == 1

    def test_list_by_category(self, memory_store):
        memory_store.save_learning(_learning(category=TaskCategory.MATH))
        memory_store.save_learning(_learning(category=TaskCategory.CODING))
        assert len(memory_store.list_learnings()) == 2
        assert [r.category for r in memory_store.list_learnings(TaskCategory.CODING)] == [TaskCategory.CODING]
