from typing import Any, Callable, Optional, TYPE_CHECKING

from resqueue.domain.states import PerformDecision

if TYPE_CHECKING:
    from resqueue.job import Job

HandlerFactory = Callable[[], Any]

class JobHandler:
    """
    Optional base class for job handlers.

    The worker builds one instance per job and injects `job`, `args` and
    `queue` before calling `set_up`, `perform` and `tear_down`. Only
    `perform` is required; `set_up` may return `PerformDecision.SKIP`.
    """

    job: "Job"
    args: dict[str, Any]
    queue: str

    def set_up(self) -> Optional[PerformDecision]:
        return None

    def perform(self) -> Any:
        raise NotImplementedError

    def tear_down(self) -> None:
        pass

class HandlerRegistry:
    """Maps handler identifiers (the payload `class`) to factories."""

    def __init__(self):
        self._factories: dict[str, HandlerFactory] = {}

    def register(self, name: str, factory: HandlerFactory) -> None:
        self._factories[name] = factory

    def unregister(self, name: str) -> None:
        self._factories.pop(name, None)

    def get(self, name: str) -> Optional[HandlerFactory]:
        return self._factories.get(name)

    def handler(self, name: Optional[str] = None):
        """Decorator registering a class (or factory) under `name` or its own name."""
        def decorator(factory: HandlerFactory):
            self.register(name or factory.__name__, factory)
            return factory
        return decorator

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    @property
    def names(self) -> list[str]:
        return sorted(self._factories)
