"""Push-based notification of pipeline and batch state transitions."""

import logging
import threading
from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    STEP_CHANGED = "step_changed"
    RESULT_SET = "result_set"
    PIPELINE_RESET = "pipeline_reset"
    ITEM_CHANGED = "item_changed"
    BATCH_CHANGED = "batch_changed"


class StateEvent(BaseModel):
    """A single state transition, delivered synchronously to listeners."""

    kind: EventKind
    pipeline_id: str | None = None
    batch_id: str | None = None
    step_index: int | None = None
    status: str | None = None
    data: dict = Field(default_factory=dict)


Listener = Callable[[StateEvent], None]


class EventBus:
    """Synchronous observer registry."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: StateEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                # A faulty listener must not leave the pipeline half-updated
                logger.exception(f"Listener {listener!r} failed on {event.kind}")
