"""Run state for one installer command.

Tracks per-component status (pending, running, completed, failed) for
progress reporting and the JSON summary. State lives in memory only and
is discarded when the command exits.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from manifest import Component


@dataclass
class ComponentState:
    """Per-component execution state.

    Attributes:
        id: Component id
        status: Current status (pending, running, completed, failed)
        started_at: Timestamp when the action started
        completed_at: Timestamp when the action ended
        error: Error message if failed
    """
    id: str
    status: str = 'pending'
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.status = 'running'
        self.started_at = time.time()

    def complete(self) -> None:
        self.status = 'completed'
        self.completed_at = time.time()

    def fail(self, error: str) -> None:
        self.status = 'failed'
        self.completed_at = time.time()
        self.error = error

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'id': self.id,
            'status': self.status,
        }
        if self.duration is not None:
            d['duration'] = round(self.duration, 1)
        if self.error is not None:
            d['error'] = self.error
        return d


class RunState:
    """State of all components touched by one command.

    Updated from walker threads, so every mutation takes the lock.
    """

    def __init__(self, verb: str, manifest_name: str, component_ids: list[str]):
        self.verb = verb
        self.manifest_name = manifest_name
        self._lock = threading.Lock()
        self._components = {cid: ComponentState(id=cid) for cid in component_ids}
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def mark_started(self, component_id: str) -> None:
        with self._lock:
            self._components[component_id].start()

    def mark_completed(self, component_id: str) -> None:
        with self._lock:
            self._components[component_id].complete()

    def mark_failed(self, component_id: str, error: str) -> None:
        with self._lock:
            self._components[component_id].fail(error)

    def to_dict(self) -> dict:
        with self._lock:
            components = [s.to_dict() for s in self._components.values()]
        d: dict[str, Any] = {
            'verb': self.verb,
            'manifest': self.manifest_name,
            'components': components,
        }
        if self.started_at is not None and self.completed_at is not None:
            d['duration'] = round(self.completed_at - self.started_at, 1)
        return d


class TrackedAction:
    """Wraps an action and records each component's outcome in a RunState."""

    def __init__(self, action, state: RunState):
        self.action = action
        self.state = state

    def apply(self, ctx, component: Component) -> None:
        self.state.mark_started(component.id)
        try:
            self.action.apply(ctx, component)
        except Exception as e:
            self.state.mark_failed(component.id, str(e))
            raise
        self.state.mark_completed(component.id)
