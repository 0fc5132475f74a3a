"""Tests for podium/orchestrator/progress.py."""

import pytest

from podium.core.models import ProgressEvent
from podium.orchestrator.progress import ProgressBus


class TestProgressBus:
    def test_delivers_in_order_to_task_observers(self):
        bus = ProgressBus()
        seen = []
        bus.subscribe("t1", seen.append)

        bus.emit("t1", "started", prompt="p")
        bus.emit("t1", "reasoning_step", agent_id="agent-1", step=1)
        bus.emit("t1", "complete")

        assert [e.type for e in seen] == ["started", "reasoning_step", "complete"]
        assert seen[1].agent_id == "agent-1"
        assert seen[1].data == {"step": 1}

    def test_other_task_events_not_delivered(self):
        bus = ProgressBus()
        seen = []
        bus.subscribe("t1", seen.append)
        bus.emit("t2", "started")
        assert seen == []

    def test_unsubscribe(self):
        bus = ProgressBus()
        seen = []
        unsubscribe = bus.subscribe("t1", seen.append)
        assert bus.observer_count("t1") == 1

        unsubscribe()
        bus.emit("t1", "started")

        assert seen == []
        assert bus.observer_count("t1") == 0

    def test_failing_observer_does_not_block_others(self):
        bus = ProgressBus()
        seen = []

        def broken(event):
            raise RuntimeError("observer down")

        bus.subscribe("t1", broken)
        bus.subscribe("t1", seen.append)
        bus.emit("t1", "started")

        assert len(seen) == 1

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError, match="Unknown progress event type"):
            ProgressBus().publish(ProgressEvent(task_id="t1", type="exploded"))

    def test_no_observers_is_fine(self):
        ProgressBus().emit("nobody", "failed", error="x")
