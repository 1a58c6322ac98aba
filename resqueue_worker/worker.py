import json
import logging
import os
import socket
from dataclasses import asdict
from datetime import datetime
from typing import Iterable, Optional, Union

import psutil

from resqueue.context import QueueContext
from resqueue.domain.errors import DirtyExitError
from resqueue.domain.models import WorkerIdentity, WorkingOn
from resqueue.domain.states import JobEvent, JobStatus
from resqueue.job import Job
from resqueue.services import stats
from resqueue.services.failure import TIME_FORMAT
from resqueue_worker.signals import SignalListener, WorkerControl
from resqueue_worker.strategies import ExecutionStrategy, default_strategy

logger = logging.getLogger(__name__)

WORKERS_SET = "workers"

def _now() -> str:
    return datetime.now().astimezone().strftime(TIME_FORMAT)

class Worker:
    """
    Polls (or blocks on) a list of queues and hands each reserved job to an
    execution strategy. Identity is "hostname:pid:queue1,queue2".
    """

    def __init__(
        self,
        ctx: QueueContext,
        queues: Union[str, Iterable[str]],
        strategy: Optional[ExecutionStrategy] = None,
        hostname: Optional[str] = None,
        pid: Optional[int] = None,
        control: Optional[WorkerControl] = None,
    ):
        if isinstance(queues, str):
            queues = [queues]
        self.ctx = ctx
        self._queues = list(queues)
        self.hostname = hostname or socket.gethostname()
        self.pid = pid if pid is not None else os.getpid()
        self.id = str(WorkerIdentity(self.hostname, self.pid, tuple(self._queues)))
        self.current_job: Optional[Job] = None

        self.control = control or WorkerControl()
        self.control.kill_child_hook = self.kill_child
        self.signals = SignalListener(self.control)

        self.strategy: Optional[ExecutionStrategy] = None
        self.set_strategy(strategy or default_strategy(ctx.settings))

    def set_strategy(self, strategy: ExecutionStrategy):
        self.strategy = strategy
        strategy.set_worker(self)

    def set_id(self, worker_id: str):
        self.id = worker_id

    def __str__(self) -> str:
        return self.id

    # Registry lookups

    @classmethod
    def exists(cls, ctx: QueueContext, worker_id: str) -> bool:
        return ctx.store.sismember(WORKERS_SET, worker_id)

    @classmethod
    def find(cls, ctx: QueueContext, worker_id: str) -> Optional["Worker"]:
        if ":" not in worker_id or not cls.exists(ctx, worker_id):
            return None
        try:
            identity = WorkerIdentity.parse(worker_id)
        except ValueError:
            logger.warning(f"Ignoring malformed worker id {worker_id!r}")
            return None
        worker = cls(ctx, identity.queues, hostname=identity.hostname, pid=identity.pid)
        worker.set_id(worker_id)
        return worker

    @classmethod
    def all(cls, ctx: QueueContext) -> list["Worker"]:
        workers = []
        for worker_id in sorted(ctx.store.smembers(WORKERS_SET)):
            worker = cls.find(ctx, worker_id)
            if worker is not None:
                workers.append(worker)
        return workers

    # Main loop

    def work(self, interval: Optional[float] = None, blocking: Optional[bool] = None):
        """
        Runs until shutdown is requested. With `interval == 0` the loop
        returns as soon as no job is found (single pass).
        """
        if interval is None:
            interval = self.ctx.settings.WORKER_INTERVAL
        if blocking is None:
            blocking = self.ctx.settings.WORKER_BLOCKING

        logger.info(f"Worker {self} starting")
        self.startup()
        try:
            while not self.control.shutdown_requested:
                job = None
                if not self.control.paused:
                    if blocking:
                        logger.debug(f"Waiting for {','.join(self._queues)} with blocking timeout {interval}s")
                    else:
                        logger.debug(f"Waiting for {','.join(self._queues)} with interval {interval}s")
                    job = self.reserve(blocking, interval)

                if job is None:
                    if interval == 0:
                        break
                    # A paused worker doesn't block in reserve, so it has to sleep
                    if not blocking or self.control.paused:
                        logger.debug(f"Sleeping for {interval}s")
                        self.control.wait(interval)
                    continue

                logger.info(f"Starting work on {job}")
                self.ctx.events.trigger(JobEvent.BEFORE_FORK, job)
                self.working_on(job)
                self.strategy.perform(job)
                self.done_working()
        finally:
            self.signals.uninstall()

        self.unregister_worker()
        logger.info(f"Worker {self} stopped")

    def perform(self, job: Job):
        """Runs a job in the current process; job-level errors become failures."""
        try:
            self.ctx.events.trigger(JobEvent.AFTER_FORK, job)
            performed = job.perform()
        except Exception as e:
            logger.critical(f"Job has failed, {job}: {e}")
            job.fail(e)
            return

        job.update_status(JobStatus.COMPLETED)
        if performed:
            logger.info(f"Job has finished, {job}")
        else:
            logger.info(f"Job was skipped, {job}")

    def reserve(self, blocking: bool = False, timeout: Optional[float] = None) -> Optional[Job]:
        queues = self.queues()
        if not queues:
            return None

        if blocking:
            if timeout is None:
                timeout = self.ctx.settings.WORKER_INTERVAL
            job = Job.reserve_blocking(self.ctx, queues, timeout)
            if job is not None:
                logger.info(f"Found job on queue {job.queue}")
            return job

        for queue in queues:
            logger.debug(f"Checking queue for jobs: {queue}")
            job = Job.reserve(self.ctx, queue)
            if job is not None:
                logger.info(f"Found job on queue {job.queue}")
                return job
        return None

    def queues(self, fetch: bool = True) -> list[str]:
        """The configured queues; "*" expands to every known queue, sorted."""
        if "*" not in self._queues or not fetch:
            return list(self._queues)
        return sorted(self.ctx.queues())

    # Lifecycle

    def startup(self):
        self.signals.install()
        self.prune_dead_workers()
        self.ctx.events.trigger(JobEvent.BEFORE_FIRST_FORK, self)
        self.register_worker()

    def worker_pids(self) -> set[int]:
        return set(psutil.pids())

    def prune_dead_workers(self):
        """Unregisters workers on this host whose process is gone."""
        pids = self.worker_pids()
        for worker in Worker.all(self.ctx):
            if worker.hostname != self.hostname or worker.pid in pids or worker.pid == self.pid:
                continue
            logger.info(f"Pruning dead worker: {worker}")
            worker.unregister_worker()

    def register_worker(self):
        store = self.ctx.store
        store.sadd(WORKERS_SET, self.id)
        store.set(f"worker:{self.id}:started", _now())

    def unregister_worker(self):
        if self.current_job is not None:
            self.current_job.fail(DirtyExitError())
            self.current_job = None

        store = self.ctx.store
        store.srem(WORKERS_SET, self.id)
        store.delete(f"worker:{self.id}", f"worker:{self.id}:started")
        stats.clear(store, f"processed:{self.id}")
        stats.clear(store, f"failed:{self.id}")

    def working_on(self, job: Job):
        job.worker = self
        self.current_job = job
        job.update_status(JobStatus.WORKING)
        marker = WorkingOn(queue=job.queue, run_at=_now(), payload=job.payload)
        self.ctx.store.set(f"worker:{self.id}", json.dumps(asdict(marker)))

    def done_working(self):
        self.current_job = None
        store = self.ctx.store
        stats.incr(store, "processed")
        stats.incr(store, f"processed:{self.id}")
        store.delete(f"worker:{self.id}")

    def job(self) -> dict:
        raw = self.ctx.store.get(f"worker:{self.id}")
        return json.loads(raw) if raw else {}

    def get_stat(self, name: str) -> int:
        return stats.get(self.ctx.store, f"{name}:{self.id}")

    def started(self) -> Optional[str]:
        return self.ctx.store.get(f"worker:{self.id}:started")

    # Control

    def pause_processing(self):
        self.control.pause()

    def unpause_processing(self):
        self.control.resume()

    def shutdown(self):
        self.control.request_shutdown()

    def shutdown_now(self):
        self.control.request_shutdown_now()

    def kill_child(self):
        self.strategy.shutdown()
