from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

from nightshift.models import Stage


@dataclass(slots=True, frozen=True)
class RunnerStateSnapshot:
    is_running: bool
    active_task_id: str | None = None
    active_stage: Stage | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"isRunning": self.is_running}
        if self.active_task_id is not None:
            payload["activeTaskId"] = self.active_task_id
        if self.active_stage is not None:
            payload["activeStage"] = self.active_stage
        return payload


StateListener = Callable[[RunnerStateSnapshot], None]


class RunnerStateChannel:
    """Holds the current runner snapshot and pushes every change to subscribers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = RunnerStateSnapshot(is_running=False)
        self._listeners: list[StateListener] = []

    def get(self) -> RunnerStateSnapshot:
        return self._state

    def set(self, snapshot: RunnerStateSnapshot) -> None:
        with self._lock:
            self._state = snapshot
            listeners = list(self._listeners)
        for listener in listeners:
            listener(snapshot)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe
