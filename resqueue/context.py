import importlib
import logging
from typing import Any, Optional

from resqueue.handlers import HandlerRegistry
from resqueue.services.events import EventBus
from resqueue.services.failure import BACKENDS, FailureBackend
from resqueue.settings import Settings, settings as default_settings
from resqueue.store.base import QueueStore
from resqueue.store.session import StoreSession, make_store_factory

logger = logging.getLogger(__name__)

class QueueContext:
    """
    Everything a producer or worker needs to talk to the queues: the store
    session, the event bus, the handler registry and the failure backend.
    Built once by the process entry point and passed down explicitly.
    """

    def __init__(
        self,
        session: StoreSession,
        events: Optional[EventBus] = None,
        handlers: Optional[HandlerRegistry] = None,
        failure_backend: Optional[type[FailureBackend]] = None,
        config: Settings = default_settings,
    ):
        self.session = session
        self.events = events or EventBus()
        self.handlers = handlers or HandlerRegistry()
        self.failure_backend = failure_backend or BACKENDS[config.FAILURE_BACKEND]
        self.settings = config

    @classmethod
    def from_settings(cls, config: Settings = default_settings, **kwargs) -> "QueueContext":
        return cls(StoreSession(make_store_factory(config)), config=config, **kwargs)

    @property
    def store(self) -> QueueStore:
        return self.session.store

    # Producer-facing shortcuts

    def enqueue(self, queue: str, class_name: str, args: Optional[dict[str, Any]] = None, track_status: bool = False):
        from resqueue.commands.queues import enqueue
        return enqueue(self, queue, class_name, args, track_status)

    def reserve(self, queue: str):
        from resqueue.job import Job
        return Job.reserve(self, queue)

    def size(self, queue: str) -> int:
        from resqueue.commands.queues import size
        return size(self.store, queue)

    def queues(self) -> list[str]:
        from resqueue.commands.queues import queues
        return queues(self.store)

    def dequeue(self, queue: str, items: Optional[list] = None) -> int:
        from resqueue.commands.queues import dequeue
        return dequeue(self.store, queue, items)

def build_context(config: Settings = default_settings) -> QueueContext:
    """Context from settings, with APP_MODULE's setup(ctx) applied when configured."""
    ctx = QueueContext.from_settings(config)
    if config.APP_MODULE:
        module = importlib.import_module(config.APP_MODULE)
        setup = getattr(module, "setup", None)
        if callable(setup):
            setup(ctx)
        else:
            logger.warning(f"{config.APP_MODULE} has no setup(ctx); no handlers registered")
    return ctx
