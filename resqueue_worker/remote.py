"""
Receiving end of FastCGIStrategy: a WSGI application that runs the job
posted in the RESQUE_JOB form field. resqueue_worker.fastcgi_worker wraps it
as the `application` a FastCGI gateway serves.
"""

import json
import logging
from urllib.parse import parse_qs

from resqueue.context import QueueContext
from resqueue.job import Job
from resqueue.domain.models import WorkerIdentity
from resqueue_worker.strategies import InProcessStrategy
from resqueue_worker.worker import Worker

logger = logging.getLogger(__name__)

def _read_form(environ) -> dict[str, list[str]]:
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    body = environ["wsgi.input"].read(length) if length > 0 else b""
    return parse_qs(body.decode("utf-8"))

def _worker_for(ctx: QueueContext, job: Job, worker_id) -> Worker:
    # The dispatching worker lives in another process; rebuild its identity only
    if worker_id:
        try:
            identity = WorkerIdentity.parse(worker_id)
        except ValueError:
            logger.warning(f"Malformed worker id in request: {worker_id!r}")
        else:
            worker = Worker(ctx, identity.queues, InProcessStrategy(), identity.hostname, identity.pid)
            worker.set_id(worker_id)
            return worker
    return Worker(ctx, [job.queue], InProcessStrategy())

def make_job_app(ctx: QueueContext):
    def app(environ, start_response):
        raw = _read_form(environ).get("RESQUE_JOB", [""])[0]
        if not raw:
            start_response("400 Missing Job", [("Content-Type", "text/plain")])
            return [b"Missing job"]

        try:
            data = json.loads(raw)
            job = Job.from_transport(ctx, data)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Could not decode job: {e}")
            start_response("500 Internal Server Error", [("Content-Type", "text/plain")])
            return [b"Could not decode job"]

        worker = _worker_for(ctx, job, data.get("worker"))
        job.worker = worker
        worker.perform(job)

        start_response("200 OK", [("Content-Type", "text/plain")])
        return [b"OK"]

    return app
