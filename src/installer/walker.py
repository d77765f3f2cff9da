"""Graph walkers driving an Action over a set of components.

Three policies:
- walk_serially(): plan order, one component at a time
- walk(): concurrent, a component starts once its predecessor is done
- reverse_walk(): concurrent, a component starts once every component
  that needs it is done (teardown order)

The concurrent walkers share one scheduler. Each component holds a count
of unmet prerequisites; when a task finishes it decrements the counts it
releases and enqueues any that reach zero. The dispatcher runs in the
calling thread, drains the queue and starts one thread per ready
component. All bookkeeping (done, running, counters, first error) sits
behind a single lock.

After the first failure nothing new is dispatched, tasks already running
finish, and the first failure is raised to the caller. Later failures are
logged only.
"""

import logging
import queue
import threading
from typing import Optional, Sequence

from manifest import Component, validate_components
from installer.context import RunContext
from installer.lifecycle import Action
from installer.plan import CycleError

logger = logging.getLogger(__name__)

# Posted by a task when it ends, whatever the outcome
_FINISHED = object()


def _predecessors(component: Component) -> tuple[str, ...]:
    """Ids that must be done before component may start in a forward walk."""
    if component.needs is None:
        return ()
    return (component.needs,)


def walk_serially(ctx: RunContext, plan: Sequence[Component], action: Action) -> None:
    """Apply action to each component in plan order, stopping at the first error."""
    for c in plan:
        try:
            action.apply(ctx, c)
        except Exception as e:
            logger.error(f"Error for '{c.id}': {e}")
            raise


def walk(ctx: RunContext, components: Sequence[Component], action: Action) -> None:
    """Apply action concurrently, each component after the one it needs.

    Raises:
        ManifestError: If ids are duplicated or a 'needs' is dangling
        CycleError: If some components can never become eligible
        Exception: The first exception raised by action.apply
    """
    _Scheduler(ctx, components, action, reverse=False).run()


def reverse_walk(ctx: RunContext, components: Sequence[Component], action: Action) -> None:
    """Apply action concurrently, each component after all components needing it.

    Failures are raised to the caller, as with walk().

    Raises:
        ManifestError: If ids are duplicated or a 'needs' is dangling
        CycleError: If some components can never become eligible
        Exception: The first exception raised by action.apply
    """
    _Scheduler(ctx, components, action, reverse=True).run()


class _Scheduler:
    """Dependency-counter scheduler for one concurrent walk.

    unmet[id] is the number of components that must be done before id may
    start. releases[id] lists the components whose count drops when id is
    done. Forward: prerequisites are predecessors. Reverse: prerequisites
    are dependents.
    """

    def __init__(
        self,
        ctx: RunContext,
        components: Sequence[Component],
        action: Action,
        reverse: bool,
    ):
        validate_components(list(components))
        self._ctx = ctx
        self._components = list(components)
        self._action = action
        self._label = 'reverse-walk' if reverse else 'walk'

        self._lock = threading.Lock()
        self._done = {c.id: False for c in self._components}
        self._running = {c.id: False for c in self._components}
        self._error: Optional[Exception] = None
        self._events: queue.Queue = queue.Queue()

        by_id = {c.id: c for c in self._components}
        self._unmet = {c.id: 0 for c in self._components}
        self._releases: dict[str, list[Component]] = {c.id: [] for c in self._components}
        for c in self._components:
            for pid in _predecessors(c):
                if reverse:
                    self._unmet[pid] += 1
                    self._releases[c.id].append(by_id[pid])
                else:
                    self._unmet[c.id] += 1
                    self._releases[pid].append(c)

    def run(self) -> None:
        for c in self._components:
            if self._unmet[c.id] == 0:
                self._events.put(c)

        threads: list[threading.Thread] = []
        in_flight = 0
        while True:
            with self._lock:
                stop = self._error is not None or all(self._done.values())
            # With nothing in flight no one else can enqueue, so empty() is exact
            if in_flight == 0 and (stop or self._events.empty()):
                break

            event = self._events.get()
            if event is _FINISHED:
                in_flight -= 1
                continue

            with self._lock:
                if self._error is not None:
                    continue
                if self._done[event.id] or self._running[event.id]:
                    continue
                self._running[event.id] = True

            logger.debug(f"[{self._label}] Dispatching '{event.id}'")
            thread = threading.Thread(
                target=self._task,
                args=(event,),
                name=f'{self._label}-{event.id}',
            )
            in_flight += 1
            threads.append(thread)
            thread.start()

        for thread in threads:
            thread.join()

        if self._error is not None:
            raise self._error

        pending = [cid for cid, done in self._done.items() if not done]
        if pending:
            raise CycleError(pending)

    def _task(self, component: Component) -> None:
        try:
            try:
                self._action.apply(self._ctx, component)
            except Exception as e:
                logger.error(f"Error for '{component.id}': {e}")
                with self._lock:
                    if self._error is None:
                        self._error = e
                return

            released: list[Component] = []
            with self._lock:
                self._done[component.id] = True
                for nxt in self._releases[component.id]:
                    self._unmet[nxt.id] -= 1
                    if self._unmet[nxt.id] == 0:
                        released.append(nxt)
            for nxt in released:
                self._events.put(nxt)
        finally:
            self._events.put(_FINISHED)
