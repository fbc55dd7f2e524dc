"""Synchronous publish/subscribe channel used by the solver.

Every event has a fixed payload shape (see ``SolverEvent``). Subscribers are
called in subscription order on the publishing thread. A subscriber that
raises is logged and skipped; the remaining subscribers still receive the
event.
"""

import logging
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class SolverEvent(str, Enum):
    """Events published by ``SolverController``, keyed by their wire names.

    Payloads:
      EQUATIONS_UPDATED          list[str]       ordered variable names
      INITIAL_CONDITIONS_CHANGED dict[str, float]
      RANGE_CHANGED              Range
      TOLERANCE_CHANGED          {"atol", "rtol"}
      STEP_LIMITS_CHANGED        {"min_step", "max_step"}
      ADAPTATION_CHANGED         {"safety_factor", "min_factor",
                                  "max_factor", "error_norm"}
      RUN_STARTED                Range
      PROGRESS                   Progress
      CANCELED                   (none)
      COMPLETED                  list[SolutionPoint]
    """

    EQUATIONS_UPDATED = "equationsUpdated"
    INITIAL_CONDITIONS_CHANGED = "initialConditionsChanged"
    RANGE_CHANGED = "rangeChanged"
    TOLERANCE_CHANGED = "toleranceChanged"
    STEP_LIMITS_CHANGED = "stepLimitsChanged"
    ADAPTATION_CHANGED = "adaptationChanged"
    RUN_STARTED = "runStarted"
    PROGRESS = "progress"
    CANCELED = "canceled"
    COMPLETED = "completed"


_NO_PAYLOAD = object()


class EventBus:
    """Per-event ordered subscriber lists.

    If *events* is given (an Enum class or any iterable of keys), only those
    keys may be subscribed to or published. For a ``str`` Enum the wire
    names are accepted too and normalised to the enum member.
    """

    def __init__(self, events=None):
        self._allowed = None
        self._enum = None
        if events is not None:
            if isinstance(events, type) and issubclass(events, Enum):
                self._enum = events
            self._allowed = frozenset(events)
        self._subscribers: dict[Any, list[Callable]] = {}

    def _key(self, event):
        if self._enum is not None and not isinstance(event, self._enum):
            try:
                event = self._enum(event)
            except ValueError:
                raise ValueError(f"Unknown event '{event}'.") from None
        if self._allowed is not None and event not in self._allowed:
            raise ValueError(f"Unknown event '{event}'.")
        return event

    def subscribe(self, event, callback: Callable) -> Callable[[], None]:
        """Register *callback* for *event*; returns a function that removes it."""
        key = self._key(event)
        listeners = self._subscribers.setdefault(key, [])
        if callback not in listeners:
            listeners.append(callback)
        return lambda: self.unsubscribe(key, callback)

    def unsubscribe(self, event, callback: Callable) -> None:
        listeners = self._subscribers.get(self._key(event), [])
        if callback in listeners:
            listeners.remove(callback)

    def clear(self, event=None) -> None:
        """Drop the subscribers of *event*, or of every event when omitted."""
        if event is None:
            self._subscribers.clear()
        else:
            self._subscribers.pop(self._key(event), None)

    def subscriber_count(self, event) -> int:
        return len(self._subscribers.get(self._key(event), []))

    def publish(self, event, payload: Any = _NO_PAYLOAD) -> int:
        """Deliver *payload* to every subscriber of *event*.

        Subscribers are called with the payload as their only argument, or
        with no argument when the event carries none. Returns the number of
        subscribers that raised.
        """
        key = self._key(event)
        failures = 0
        for callback in list(self._subscribers.get(key, ())):
            try:
                if payload is _NO_PAYLOAD:
                    callback()
                else:
                    callback(payload)
            except Exception:
                failures += 1
                logger.exception("Subscriber %r failed while handling '%s'",
                                 callback, _name(key))
        return failures


def _name(event) -> str:
    return event.value if isinstance(event, Enum) else str(event)


def make_solver_bus(bus: Optional[EventBus] = None) -> EventBus:
    """Return *bus*, or a new bus restricted to ``SolverEvent``."""
    return bus if bus is not None else EventBus(SolverEvent)
