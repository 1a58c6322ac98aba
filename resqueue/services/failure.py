import json
import logging
import traceback
from abc import ABC, abstractmethod
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from resqueue.domain.models import FailureRecord
from resqueue.store.base import QueueStore

logger = logging.getLogger(__name__)

FAILED_QUEUE = "failed"
TIME_FORMAT = "%a %b %d %H:%M:%S %Z %Y"

def build_record(payload: dict[str, Any], error: BaseException, worker: Any, queue: str) -> FailureRecord:
    return FailureRecord(
        failed_at=datetime.now().astimezone().strftime(TIME_FORMAT),
        payload=payload,
        exception=type(error).__name__,
        error=str(error),
        backtrace="".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ).splitlines(),
        worker=str(worker) if worker is not None else None,
        queue=queue,
    )

class FailureBackend(ABC):
    """
    Sink for one job failure. Instantiated per failure with the failed
    payload, the raised error, the worker and the queue name, then saved.
    """

    def __init__(self, store: QueueStore, payload: dict[str, Any], error: BaseException, worker: Any, queue: str):
        self.store = store
        self.record = build_record(payload, error, worker, queue)

    @abstractmethod
    def save(self) -> None:
        pass

class RedisFailureBackend(FailureBackend):
    """Appends the failure as JSON to the `failed` list."""

    def save(self):
        self.store.rpush(FAILED_QUEUE, json.dumps(asdict(self.record)))

    @staticmethod
    def count(store: QueueStore) -> int:
        return store.llen(FAILED_QUEUE)

    @staticmethod
    def all(store: QueueStore, start: int = 0, count: int = 100) -> list[dict[str, Any]]:
        if count <= 0:
            return []
        return [json.loads(item) for item in store.lrange(FAILED_QUEUE, start, start + count - 1)]

    @staticmethod
    def limit_queue_length(store: QueueStore, length: int) -> int:
        """Drops the oldest failures until at most `length` remain."""
        removed = 0
        while store.llen(FAILED_QUEUE) > length:
            store.lpop(FAILED_QUEUE)
            removed += 1
        return removed

class LogFailureBackend(FailureBackend):
    """Writes the failure to the log; nothing is persisted."""

    def save(self):
        record = self.record
        logger.error(
            f"Job failure [{record.queue}]: {record.exception}: {record.error}",
            extra={"payload": record.payload, "worker": record.worker},
        )

BACKENDS: dict[str, type[FailureBackend]] = {
    "redis": RedisFailureBackend,
    "log": LogFailureBackend,
}

def create_failure(
    backend: type[FailureBackend],
    store: QueueStore,
    payload: dict[str, Any],
    error: BaseException,
    worker: Any,
    queue: str,
    max_length: Optional[int] = None,
) -> FailureBackend:
    failure = backend(store, payload, error, worker, queue)
    failure.save()
    if max_length is not None and isinstance(failure, RedisFailureBackend):
        RedisFailureBackend.limit_queue_length(store, max_length)
    return failure
