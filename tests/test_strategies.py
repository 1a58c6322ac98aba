import json
import os
import subprocess
import sys
from urllib.parse import parse_qs, urlsplit

import pytest

from resqueue.domain.errors import FastCGICommunicationError, FastCGITimeoutError
from resqueue.domain.states import JobStatus
from resqueue.services import stats
from resqueue.services.failure import RedisFailureBackend
from resqueue.services.status import JobStatusTracker
from resqueue_worker.client import FastCGIResponse
from resqueue_worker.strategies import FastCGIStrategy, ForkStrategy
from resqueue_worker.worker import Worker

needs_fork = pytest.mark.skipif(not hasattr(os, "fork"), reason="needs fork")


class ExitJob:
    def perform(self):
        os._exit(self.args["code"])


class QuietJob:
    def perform(self):
        pass


@pytest.fixture
def fork_ctx(ctx):
    ctx.handlers.register("ExitJob", ExitJob)
    ctx.handlers.register("QuietJob", QuietJob)
    return ctx


def dispatch(worker, class_name, args, track_status=True):
    ctx = worker.ctx
    job_id = ctx.enqueue("jobs", class_name, args, track_status=track_status)
    job = worker.reserve()
    worker.working_on(job)
    worker.strategy.perform(job)
    worker.done_working()
    return job_id


@needs_fork
class TestForkStrategy:
    def test_nonzero_exit_is_a_dirty_exit(self, fork_ctx, store):
        worker = Worker(fork_ctx, "jobs", ForkStrategy(), hostname="testhost")

        job_id = dispatch(worker, "ExitJob", {"code": 7})

        failures = RedisFailureBackend.all(store)
        assert len(failures) == 1
        assert failures[0]["exception"] == "DirtyExitError"
        assert failures[0]["error"] == "Job exited with exit code 7"
        assert stats.get(store, "failed") == 1
        assert stats.get(store, f"failed:{worker}") == 1
        assert JobStatusTracker(store, job_id).get() == JobStatus.FAILED
        assert worker.strategy.child_pid is None

    def test_clean_exit_records_nothing_in_parent(self, fork_ctx, store):
        worker = Worker(fork_ctx, "jobs", ForkStrategy(), hostname="testhost")

        dispatch(worker, "QuietJob", {})

        assert RedisFailureBackend.count(store) == 0
        assert stats.get(store, "failed") == 0

    def test_shutdown_without_child_is_a_no_op(self, fork_ctx):
        worker = Worker(fork_ctx, "jobs", ForkStrategy(), hostname="testhost")
        worker.kill_child()
        assert not worker.control.shutdown_requested

    def test_shutdown_with_vanished_child_stops_worker(self, fork_ctx):
        strategy = ForkStrategy()
        worker = Worker(fork_ctx, "jobs", strategy, hostname="testhost")
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        proc.wait()
        strategy.child_pid = proc.pid

        worker.kill_child()

        assert worker.control.shutdown_requested

    def test_shutdown_kills_live_child(self, fork_ctx):
        strategy = ForkStrategy()
        worker = Worker(fork_ctx, "jobs", strategy, hostname="testhost")
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        strategy.child_pid = proc.pid
        try:
            worker.kill_child()
            assert proc.wait(timeout=10) != 0
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
        assert strategy.child_pid is None
        assert not worker.control.shutdown_requested


class FakeFastCGIClient:
    """Replays scripted outcomes: a FastCGIResponse or an exception to raise."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.closed = 0

    def begin_request(self, params, body=b""):
        self.requests.append((params, body))
        return len(self.requests)

    def get_response(self):
        outcome = self.outcomes.pop(0)
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed += 1


def fastcgi_worker(ctx, client, **kwargs):
    strategy = FastCGIStrategy("127.0.0.1:9000", "/srv/app/fastcgi.py", client=client, **kwargs)
    return Worker(ctx, "jobs", strategy, hostname="testhost")


class TestFastCGIStrategy:
    def test_request_shape(self, ctx, store):
        client = FakeFastCGIClient(FastCGIResponse(200, body="ok"))
        worker = fastcgi_worker(ctx, client)

        job_id = dispatch(worker, "RecordingJob", {"secret": "large"})

        assert RedisFailureBackend.count(store) == 0
        params, body = client.requests[0]
        assert params["REQUEST_METHOD"] == "POST"
        assert params["SCRIPT_FILENAME"] == "/srv/app/fastcgi.py"
        assert params["GATEWAY_INTERFACE"] == "FastCGI/1.0"
        assert params["CONTENT_LENGTH"] == str(len(body))

        uri = urlsplit(params["REQUEST_URI"])
        assert uri.path == "/"
        query = parse_qs(uri.query)
        assert query["queue"] == ["jobs"]
        assert query["class"] == ["RecordingJob"]
        assert query["id"] == [job_id]
        assert "args" not in query

        transport = json.loads(parse_qs(body.decode())["RESQUE_JOB"][0])
        assert transport["queue"] == "jobs"
        assert transport["payload"]["args"] == [{"secret": "large"}]
        assert transport["worker"] == str(worker)

    def test_environment_overrides_and_empty_values(self):
        strategy = FastCGIStrategy(
            "127.0.0.1:9000",
            "/srv/app/fastcgi.py",
            environment={"SERVER_PORT": 9999, "REMOTE_ADDR": "", "APP_ENV": "test"},
            client=FakeFastCGIClient(),
        )
        assert strategy.request_data["SERVER_PORT"] == "9999"
        assert strategy.request_data["APP_ENV"] == "test"
        assert "REMOTE_ADDR" not in strategy.request_data

    def test_communication_error_reconnects_and_resends(self, ctx, store):
        client = FakeFastCGIClient(FastCGICommunicationError("stale"), FastCGIResponse(200))
        worker = fastcgi_worker(ctx, client)

        dispatch(worker, "RecordingJob", {})

        assert len(client.requests) == 2
        assert client.closed == 1
        assert RedisFailureBackend.count(store) == 0

    def test_communication_errors_exhaust_retries(self, ctx, store):
        client = FakeFastCGIClient(FastCGICommunicationError("down"), FastCGICommunicationError("still down"))
        worker = fastcgi_worker(ctx, client)

        job_id = dispatch(worker, "RecordingJob", {})

        record = RedisFailureBackend.all(store)[0]
        assert record["exception"] == "FastCGICommunicationError"
        assert record["error"] == "still down"
        assert JobStatusTracker(store, job_id).get() == JobStatus.FAILED

    def test_timeout_waits_on_the_same_request(self, ctx, store):
        client = FakeFastCGIClient(FastCGITimeoutError("slow"), FastCGIResponse(200))
        worker = fastcgi_worker(ctx, client)

        dispatch(worker, "RecordingJob", {})

        assert len(client.requests) == 1
        assert RedisFailureBackend.count(store) == 0

    def test_timeouts_exhaust_retries(self, ctx, store):
        client = FakeFastCGIClient(FastCGITimeoutError("slow"), FastCGITimeoutError("slower"))
        worker = fastcgi_worker(ctx, client)

        dispatch(worker, "RecordingJob", {})

        assert RedisFailureBackend.all(store)[0]["exception"] == "FastCGITimeoutError"
        assert client.closed == 1

    @pytest.mark.parametrize("response", [
        FastCGIResponse(500, body="Internal error"),
        FastCGIResponse(0),
        FastCGIResponse(200, body="partial output\nFatal error: out of memory"),
    ])
    def test_unsuccessful_responses_fail_the_job(self, ctx, store, response):
        worker = fastcgi_worker(ctx, FakeFastCGIClient(response))

        dispatch(worker, "RecordingJob", {})

        record = RedisFailureBackend.all(store)[0]
        assert record["exception"] == "RemoteJobError"
        assert "non-200 status code" in record["error"]

    def test_shutdown_now_while_waiting_does_not_resend(self, ctx, store):
        client = FakeFastCGIClient()
        worker = fastcgi_worker(ctx, client)

        def interrupted_read():
            # the signal handler closes the socket under the blocked read
            worker.shutdown_now()
            raise FastCGICommunicationError("Read failed: [Errno 9] Bad file descriptor")

        client.outcomes = [interrupted_read, FastCGIResponse(200)]

        job_id = dispatch(worker, "RecordingJob", {})

        assert len(client.requests) == 1
        assert len(client.outcomes) == 1
        assert RedisFailureBackend.count(store) == 0
        assert JobStatusTracker(store, job_id).get() != JobStatus.FAILED
        assert worker.control.shutdown_requested

    def test_shutdown_closes_connection(self, ctx):
        client = FakeFastCGIClient()
        worker = fastcgi_worker(ctx, client)
        worker.kill_child()
        assert client.closed == 1
