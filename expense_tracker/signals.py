from __future__ import annotations

from enum import Enum
import logging
import threading
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[Any], None]


class Signal(Generic[T]):
    """Holds a current value and notifies subscribers whenever it is replaced.

    Values are treated as immutable snapshots: ``set`` swaps the reference and
    every subscriber observes the new value, in subscription order.
    """

    def __init__(self, initial: T, name: str = "signal") -> None:
        self.name = name
        self._value = initial
        self._subscribers: list[Subscriber] = []
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._notify()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self._value)
            except Exception:
                logger.exception("Subscriber failed signal=%s", self.name)
                raise


class ComputeState(str, Enum):
    STALE = "stale"
    RECOMPUTING = "recomputing"
    PUBLISHED = "published"


class Computed(Signal[T]):
    """A signal derived from upstream signals.

    The value is recomputed from scratch on every upstream emission. ``compute``
    receives the current value of each dependency, in declaration order, and
    must be free of side effects.
    """

    def __init__(self, compute: Callable[..., T], *dependencies: Signal[Any], name: str = "computed") -> None:
        self.name = name
        self._compute = compute
        self._dependencies = dependencies
        self.state = ComputeState.STALE
        self.recompute_count = 0
        super().__init__(self._evaluate(), name=name)
        self._unsubscribers = [dependency.subscribe(self._on_upstream) for dependency in dependencies]

    @property
    def dependencies(self) -> tuple[Signal[Any], ...]:
        return self._dependencies

    def dispose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.state = ComputeState.STALE

    def _on_upstream(self, _value: Any) -> None:
        # Evaluate under the lock so the last publish always sees the newest inputs.
        with self._lock:
            self.state = ComputeState.STALE
            self.set(self._evaluate())

    def _evaluate(self) -> T:
        self.state = ComputeState.RECOMPUTING
        value = self._compute(*(dependency.value for dependency in self._dependencies))
        self.recompute_count += 1
        self.state = ComputeState.PUBLISHED
        logger.debug("Recomputed signal=%s count=%d", self.name, self.recompute_count)
        return value
