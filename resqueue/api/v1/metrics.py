from prometheus_client import Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

from resqueue.api.deps import Context
from resqueue.commands.queues import queues, size
from resqueue.context import QueueContext
from resqueue.services import stats
from resqueue.services.failure import RedisFailureBackend
from resqueue_worker.worker import WORKERS_SET

router = APIRouter()

# Metrics Definitions
# Workers run in other processes, so everything is read back from the store at scrape time
QUEUE_DEPTH = Gauge("resqueue_queue_depth", "Number of jobs waiting in a queue", ["queue"])

WORKERS_REGISTERED = Gauge(
    "resqueue_workers_registered",
    "Number of registered workers"
)

JOBS_PROCESSED = Gauge(
    "resqueue_jobs_processed",
    "Jobs processed across all workers (stat:processed)"
)

JOBS_FAILED = Gauge(
    "resqueue_jobs_failed",
    "Jobs failed across all workers (stat:failed)"
)

FAILED_QUEUE_LENGTH = Gauge(
    "resqueue_failed_queue_length",
    "Failure records kept in the failed list"
)

def refresh(ctx: QueueContext):
    store = ctx.store
    QUEUE_DEPTH.clear()
    for name in queues(store):
        QUEUE_DEPTH.labels(queue=name).set(size(store, name))
    WORKERS_REGISTERED.set(store.scard(WORKERS_SET))
    JOBS_PROCESSED.set(stats.get(store, "processed"))
    JOBS_FAILED.set(stats.get(store, "failed"))
    FAILED_QUEUE_LENGTH.set(RedisFailureBackend.count(store))

@router.get("/metrics")
def metrics(ctx: Context):
    refresh(ctx)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
