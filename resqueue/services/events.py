import logging
from typing import Any, Callable

from resqueue.domain.states import PerformDecision

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]

class EventBus:
    """
    Named listener registry with synchronous fan-out.

    Listeners run in registration order and exceptions propagate to the
    trigger call site. A listener returning `PerformDecision.SKIP` stops the
    fan-out and makes `trigger` return SKIP.
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    def listen(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def stop_listening(self, event: str, listener: Listener) -> bool:
        listeners = self._listeners.get(event)
        if not listeners:
            return False
        for i, registered in enumerate(listeners):
            if registered == listener:
                del listeners[i]
                return True
        return False

    def listeners(self, event: str) -> list[Listener]:
        return list(self._listeners.get(event, ()))

    def trigger(self, event: str, *args: Any) -> PerformDecision:
        for listener in self.listeners(event):
            if listener(*args) is PerformDecision.SKIP:
                logger.debug(f"Listener {listener!r} skipped event {event}")
                return PerformDecision.SKIP
        return PerformDecision.PROCEED

    def clear_listeners(self) -> None:
        self._listeners = {}
