import logging
from typing import Callable, Optional

from resqueue.settings import Settings, settings as default_settings
from resqueue.store.base import QueueStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], QueueStore]

class StoreSession:
    """
    Lazily opened store connection that can be dropped and reopened.

    A live connection must never be shared by a parent and a forked child:
    call `reset()` before forking, both sides reopen on next use.
    """

    def __init__(self, factory: StoreFactory):
        self._factory = factory
        self._store: Optional[QueueStore] = None

    @property
    def store(self) -> QueueStore:
        if self._store is None:
            self._store = self._factory()
        return self._store

    def reset(self):
        if self._store is not None:
            try:
                self._store.close()
            except Exception as e:
                logger.warning(f"Error closing store connection: {e}")
            self._store = None


def make_store_factory(config: Settings = default_settings) -> StoreFactory:
    if config.STORE_BACKEND == "memory":
        from resqueue.store.memory import InMemoryStore
        # One shared instance; reopening must not lose data
        shared = InMemoryStore()
        return lambda: shared

    from resqueue.store.redis_store import RedisStore
    return lambda: RedisStore.from_url(config.REDIS_URL, namespace=config.REDIS_NAMESPACE)
