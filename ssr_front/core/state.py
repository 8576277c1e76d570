import threading
from typing import Callable, Generic, TypeVar


T = TypeVar("T")


class Swappable(Generic[T]):
    """A shared reference that is only ever replaced whole.

    Writers build the complete new value and ``swap`` it in; readers call
    ``get`` and keep using the object they got for the rest of their work.
    The lock only serialises writers; a read is a single attribute load.
    """

    def __init__(self, initial: T):
        self._value = initial
        self._lock = threading.Lock()

    def get(self) -> T:
        return self._value

    def swap(self, value: T) -> T:
        with self._lock:
            previous = self._value
            self._value = value
        return previous

    def update(self, build: Callable[[T], T]) -> T:
        """Swap in ``build(current)``; ``build`` must return a new object."""
        with self._lock:
            self._value = build(self._value)
            return self._value
