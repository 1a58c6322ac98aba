import json
import logging
from collections.abc import Mapping
from typing import Any, Optional, Sequence, TYPE_CHECKING
from uuid import uuid4

from resqueue.commands.queues import blpop, is_job_entry, pop, push
from resqueue.domain.errors import CannotPerformError, InvalidJobArgumentsError, UnknownHandlerError
from resqueue.domain.states import JobEvent, JobStatus, PerformDecision
from resqueue.services import stats
from resqueue.services.failure import create_failure
from resqueue.services.status import JobStatusTracker

if TYPE_CHECKING:
    from resqueue.context import QueueContext

logger = logging.getLogger(__name__)

class Job:
    """
    One reserved unit of work: the queue it came from, its decoded payload
    ({"class", "args": [record], "id"}) and, once dispatched, the worker
    running it.
    """

    def __init__(self, ctx: "QueueContext", queue: str, payload: dict[str, Any]):
        self.ctx = ctx
        self.queue = queue
        self.payload = payload
        self.worker = None
        self._instance = None
        self._status: Optional[JobStatusTracker] = None

    @classmethod
    def create(
        cls,
        ctx: "QueueContext",
        queue: str,
        class_name: str,
        args: Optional[Mapping[str, Any]] = None,
        track_status: bool = False,
    ) -> Optional[str]:
        """
        Pushes a new job onto `queue`. Returns the job id, or None when the
        store did not accept the entry.
        """
        if args is not None and not isinstance(args, Mapping):
            raise InvalidJobArgumentsError(
                f"Job arguments must be a mapping, got {type(args).__name__}"
            )

        job_id = uuid4().hex
        store = ctx.store

        # Record the status first so a fast worker can't overwrite "working" with "queued"
        if track_status:
            JobStatusTracker.create(store, job_id)

        pushed = push(store, queue, {
            "class": class_name,
            "args": [dict(args) if args is not None else None],
            "id": job_id,
        })
        if not pushed:
            logger.error(f"Failed to push {class_name} onto queue {queue}")
            if track_status:
                JobStatusTracker(store, job_id).stop()
            return None
        return job_id

    @classmethod
    def reserve(cls, ctx: "QueueContext", queue: str) -> Optional["Job"]:
        payload = pop(ctx.store, queue)
        if payload is None:
            return None
        return cls(ctx, queue, payload)

    @classmethod
    def reserve_blocking(cls, ctx: "QueueContext", queues: Sequence[str], timeout: float) -> Optional["Job"]:
        result = blpop(ctx.store, queues, timeout, ctx.settings.BLPOP_MIN_ELAPSED_RATIO)
        if result is None:
            return None
        queue, payload = result
        return cls(ctx, queue, payload)

    @classmethod
    def from_transport(cls, ctx: "QueueContext", data: dict[str, Any]) -> "Job":
        payload = data["payload"]
        if not is_job_entry(payload):
            raise ValueError(f"Malformed job payload: {payload!r:.200}")
        return cls(ctx, data["queue"], payload)

    def to_transport(self) -> dict[str, Any]:
        return {
            "queue": self.queue,
            "payload": self.payload,
            "worker": str(self.worker) if self.worker is not None else None,
        }

    @property
    def id(self) -> Optional[str]:
        return self.payload.get("id")

    @property
    def class_name(self) -> str:
        return self.payload.get("class", "")

    # Status

    @property
    def status(self) -> Optional[JobStatusTracker]:
        if not self.id:
            return None
        if self._status is None:
            self._status = JobStatusTracker(self.ctx.store, self.id, self.ctx.settings.STATUS_TTL_SECONDS)
        # The store may have been reopened since (e.g. after a fork)
        self._status.store = self.ctx.store
        return self._status

    def update_status(self, status: JobStatus, result: Any = None) -> None:
        tracker = self.status
        if tracker is not None:
            tracker.update(status, result)

    def get_status(self) -> Optional[JobStatus]:
        tracker = self.status
        return tracker.get() if tracker is not None else None

    # Execution

    def get_arguments(self) -> dict[str, Any]:
        args = self.payload.get("args")
        if not args:
            return {}
        return args[0] or {}

    def get_instance(self):
        if self._instance is not None:
            return self._instance

        factory = self.ctx.handlers.get(self.class_name)
        if factory is None:
            raise UnknownHandlerError(self.class_name)
        if not callable(factory):
            raise CannotPerformError(f"Job class {self.class_name} is not constructible")

        instance = factory()
        if not callable(getattr(instance, "perform", None)):
            raise CannotPerformError(f"Job class {self.class_name} does not contain a perform method")

        instance.job = self
        instance.args = self.get_arguments()
        instance.queue = self.queue
        self._instance = instance
        return instance

    def perform(self) -> bool:
        """
        Runs before_perform, set_up, perform, tear_down and after_perform.

        Returns False when a before_perform listener or set_up asked to skip
        the job. Any exception propagates to the caller.
        """
        instance = self.get_instance()

        if self.ctx.events.trigger(JobEvent.BEFORE_PERFORM, self) is PerformDecision.SKIP:
            logger.info(f"Skipping {self}: before_perform listener declined")
            return False

        set_up = getattr(instance, "set_up", None)
        if callable(set_up) and set_up() is PerformDecision.SKIP:
            logger.info(f"Skipping {self}: set_up declined")
            return False

        instance.perform()

        tear_down = getattr(instance, "tear_down", None)
        if callable(tear_down):
            tear_down()

        self.ctx.events.trigger(JobEvent.AFTER_PERFORM, self)
        return True

    def fail(self, error: BaseException) -> None:
        """Records a failure: on_failure listeners, status, failure backend and counters."""
        self.ctx.events.trigger(JobEvent.ON_FAILURE, error, self)
        self.update_status(JobStatus.FAILED)

        store = self.ctx.store
        create_failure(
            self.ctx.failure_backend,
            store,
            self.payload,
            error,
            self.worker,
            self.queue,
            max_length=self.ctx.settings.FAILED_QUEUE_MAX_LENGTH,
        )
        stats.incr(store, "failed")
        if self.worker is not None:
            stats.incr(store, f"failed:{self.worker}")

    def recreate(self) -> Optional[str]:
        """Re-enqueues the same class and arguments, keeping status tracking if it was on."""
        tracker = self.status
        track = tracker.is_tracking() if tracker is not None else False
        return Job.create(self.ctx, self.queue, self.class_name, self.get_arguments() or None, track)

    def __str__(self) -> str:
        parts = [f"Job{{{self.queue}}}"]
        if self.id:
            parts.append(f"ID: {self.id}")
        parts.append(self.class_name)
        args = self.payload.get("args")
        if args:
            parts.append(json.dumps(args))
        return "(" + " | ".join(parts) + ")"
