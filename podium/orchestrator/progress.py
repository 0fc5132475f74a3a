"""Per-task progress event bus."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Optional

from podium.core.models import ProgressEvent

logger = logging.getLogger("podium.orchestrator.progress")

Observer = Callable[[ProgressEvent], None]

EVENT_TYPES = ("started", "reasoning_step", "agent_complete", "judging_started", "complete", "failed")


class ProgressBus:
    """Dispatches progress events to the observers of one task id.

    Dispatch is serialized by a lock so each observer sees the events of a
    task in publication order. A failing observer is logged and skipped.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._observers: dict[str, list[Observer]] = defaultdict(list)

    def subscribe(self, task_id: str, observer: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers[task_id].append(observer)

        def unsubscribe() -> None:
            with self._lock:
                observers = self._observers.get(task_id)
                if observers and observer in observers:
                    observers.remove(observer)
                if not observers:
                    self._observers.pop(task_id, None)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        if event.type not in EVENT_TYPES:
            raise ValueError(f"Unknown progress event type: {event.type}")
        with self._lock:
            for observer in list(self._observers.get(event.task_id, ())):
                try:
                    observer(event)
                except Exception:
                    logger.exception("Progress observer failed for task %s (%s)", event.task_id, event.type)

    def emit(
        self,
        task_id: str,
        type: str,
        agent_id: Optional[str] = None,
        **data: Any,
    ) -> None:
        self.publish(ProgressEvent(task_id=task_id, type=type, agent_id=agent_id, data=data))

    def observer_count(self, task_id: str) -> int:
        with self._lock:
            return len(self._observers.get(task_id, ()))
