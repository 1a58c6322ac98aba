import json
import logging
import time
from typing import Any, Optional

from resqueue.domain.states import JobStatus
from resqueue.store.base import QueueStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400

class JobStatusTracker:
    """
    Status record for one job, stored as JSON under job:<id>:status.

    A job is tracked only if the record was created at enqueue time. The
    existence check is cached; once it resolves to "not tracking" it is never
    repeated for this tracker.
    """

    def __init__(self, store: QueueStore, job_id: str, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.store = store
        self.job_id = job_id
        self.ttl_seconds = ttl_seconds
        self._is_tracking: Optional[bool] = None

    @property
    def key(self) -> str:
        return f"job:{self.job_id}:status"

    @classmethod
    def create(cls, store: QueueStore, job_id: str) -> "JobStatusTracker":
        now = int(time.time())
        packet = {
            "status": JobStatus.QUEUED.value,
            "updated": now,
            "started": now,
        }
        tracker = cls(store, job_id)
        store.set(tracker.key, json.dumps(packet))
        return tracker

    def is_tracking(self) -> bool:
        if self._is_tracking is False:
            return False

        if not self.store.exists(self.key):
            self._is_tracking = False
            return False

        self._is_tracking = True
        return True

    def update(self, status: JobStatus, result: Any = None) -> None:
        if not self.is_tracking():
            return

        status = JobStatus(status)
        packet = {
            "status": status.value,
            "updated": int(time.time()),
            "result": result,
        }
        self.store.set(self.key, json.dumps(packet))

        if status.is_terminal:
            self.store.expire(self.key, self.ttl_seconds)

    def get_all(self) -> Optional[dict[str, Any]]:
        if not self.is_tracking():
            return None

        raw = self.store.get(self.key)
        if not raw:
            return None
        try:
            packet = json.loads(raw)
        except ValueError:
            logger.warning(f"Corrupt status record for job {self.job_id}")
            return None
        if not isinstance(packet, dict):
            return None
        return packet

    def get(self) -> Optional[JobStatus]:
        packet = self.get_all()
        if not packet or "status" not in packet:
            return None
        try:
            return JobStatus(packet["status"])
        except ValueError:
            logger.warning(f"Unknown status {packet['status']!r} for job {self.job_id}")
            return None

    def stop(self) -> None:
        self.store.delete(self.key)

    def __str__(self) -> str:
        return self.key
