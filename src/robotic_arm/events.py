import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventTopic(Generic[T]):
    """
    One notification kind. Listeners receive the published value, which is
    an immutable snapshot (tuples, enums, bools).
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._listeners: List[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """
        Registers a listener.
        :return: a disposer removing exactly this registration; calling it again does nothing
        """
        token = [listener]
        with self._lock:
            self._listeners.append(listener)

        def dispose() -> None:
            if not token:
                return
            self.unsubscribe(token.pop())

        return dispose

    def unsubscribe(self, listener: Callable[[T], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, value: T) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(value)
            except Exception:
                logger.exception(f"Listener for '{self.name}' failed")

    def __len__(self):
        with self._lock:
            return len(self._listeners)
