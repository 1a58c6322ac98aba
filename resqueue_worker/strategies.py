import json
import logging
import os
import signal
import socket
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional, TYPE_CHECKING
from urllib.parse import urlencode

import psutil

from resqueue.domain.errors import (
    DirtyExitError,
    FastCGICommunicationError,
    FastCGITimeoutError,
    RemoteJobError,
)
from resqueue.job import Job
from resqueue.settings import Settings
from resqueue_worker.client import FastCGIClient

if TYPE_CHECKING:
    from resqueue_worker.worker import Worker

logger = logging.getLogger(__name__)

class ExecutionStrategy(ABC):
    """How a worker runs one job: in its own process, in a fork, or remotely."""

    worker: Optional["Worker"] = None

    def set_worker(self, worker: "Worker"):
        self.worker = worker

    @abstractmethod
    def perform(self, job: Job) -> None:
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Tears down the current job's execution context, if any."""
        pass

class InProcessStrategy(ExecutionStrategy):
    def perform(self, job: Job):
        self.worker.perform(job)

    def shutdown(self):
        logger.debug("No child to kill.")

class ForkStrategy(InProcessStrategy):
    """
    Runs each job in a forked child and waits for it. A nonzero exit
    status fails the job with a DirtyExitError.
    """

    def __init__(self):
        self.child_pid: Optional[int] = None

    def perform(self, job: Job):
        # Neither side may keep using the pre-fork connection
        self.worker.ctx.session.reset()

        pid = os.fork()
        if pid == 0:
            self._run_child(job)

        self.child_pid = pid
        logger.info(f"Forked {pid} at {datetime.now():%Y-%m-%d %H:%M:%S}")

        _, status = os.waitpid(pid, 0)
        self.child_pid = None

        exit_code = os.waitstatus_to_exitcode(status)
        if exit_code != 0:
            job.fail(DirtyExitError(f"Job exited with exit code {exit_code}", exit_code))

    def _run_child(self, job: Job):
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)

        exit_code = 0
        try:
            super().perform(job)
        except SystemExit as e:
            exit_code = e.code if isinstance(e.code, int) else 1
        except BaseException:
            logger.exception(f"Unhandled error in child running {job}")
            exit_code = 1
        finally:
            os._exit(exit_code)

    def shutdown(self):
        pid = self.child_pid
        if not pid:
            logger.debug("No child to kill.")
            return

        logger.info(f"Killing child at {pid}")
        if psutil.pid_exists(pid):
            try:
                os.kill(pid, signal.SIGKILL)
                self.child_pid = None
                return
            except ProcessLookupError:
                pass

        logger.info(f"Child {pid} not found, restarting.")
        self.worker.shutdown()

# Base CGI environment for every FastCGI request; REQUEST_METHOD must stay POST
DEFAULT_REQUEST_DATA = {
    "GATEWAY_INTERFACE": "FastCGI/1.0",
    "SERVER_SOFTWARE": "resqueue-fastcgi/1.0",
    "REMOTE_ADDR": "127.0.0.1",
    "REMOTE_PORT": "8888",
    "SERVER_ADDR": "127.0.0.1",
    "SERVER_PORT": "8888",
    "SERVER_PROTOCOL": "HTTP/1.1",
    "REQUEST_METHOD": "POST",
    "REQUEST_URI": "/",
    "CONTENT_TYPE": "application/x-www-form-urlencoded",
}

FATAL_ERROR_MARKER = "\nFatal error: "

RESPONDER_SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fastcgi_worker.py")

def responder_environment(config: Settings) -> dict[str, Any]:
    """Request params the responder reads to reach the same store and handlers."""
    return {
        "RESQUEUE_REDIS_URL": config.REDIS_URL,
        "RESQUEUE_REDIS_NAMESPACE": config.REDIS_NAMESPACE,
        "RESQUEUE_APP_MODULE": config.APP_MODULE,
    }

class FastCGIStrategy(ExecutionStrategy):
    """
    Sends each job to a FastCGI responder (see resqueue_worker.remote) and
    waits for the response. Communication errors reopen the connection and
    resend, up to `retries` attempts; timeouts keep waiting on the same
    request. Shutting down closes the connection but cannot cancel a job
    the remote side has already started.
    """

    def __init__(
        self,
        location: str,
        script: str = "",
        environment: Optional[dict[str, Any]] = None,
        retries: int = 2,
        timeout: float = 30.0,
        client: Optional[FastCGIClient] = None,
    ):
        self.location = location
        self.retries = max(1, retries)
        self.client = client or FastCGIClient.from_location(location, timeout=timeout)
        self.waiting = False
        self.cancelled = False

        merged = {
            "SCRIPT_FILENAME": script,
            "SERVER_NAME": socket.gethostname(),
            **DEFAULT_REQUEST_DATA,
            **(environment or {}),
        }
        # Empty headers are not sent
        self.request_data = {k: str(v) for k, v in merged.items() if v not in (None, "")}

    @classmethod
    def from_settings(cls, config: Settings, environment: Optional[dict[str, Any]] = None) -> "FastCGIStrategy":
        return cls(
            config.FASTCGI_LOCATION,
            config.FASTCGI_SCRIPT or RESPONDER_SCRIPT,
            environment={**responder_environment(config), **(environment or {})},
            retries=config.FASTCGI_RETRIES,
            timeout=config.FASTCGI_TIMEOUT_SECONDS,
        )

    def build_request(self, job: Job) -> tuple[dict[str, str], bytes]:
        content = urlencode({"RESQUE_JOB": json.dumps(job.to_transport())}).encode()

        # Arguments can be large; only the envelope goes into the URI
        query = {k: v for k, v in job.payload.items() if k != "args"}
        query["queue"] = job.queue

        params = dict(self.request_data)
        params["CONTENT_LENGTH"] = str(len(content))
        params["REQUEST_URI"] = params.get("REQUEST_URI", "/") + "?" + urlencode(query)
        return params, content

    def perform(self, job: Job):
        logger.debug(f"Requested fcgi job execution from {self.location} at {datetime.now():%Y-%m-%d %H:%M:%S}")
        params, content = self.build_request(job)

        response = None
        pending = False
        self.waiting = True
        self.cancelled = False
        try:
            for attempt in range(1, self.retries + 1):
                try:
                    if not pending:
                        self.client.begin_request(params, content)
                        pending = True
                    response = self.client.get_response()
                    break
                except FastCGITimeoutError as e:
                    if self.cancelled:
                        break
                    logger.info(f"FastCGI timeout ({e}), attempt {attempt}/{self.retries}")
                except FastCGICommunicationError as e:
                    self.client.close()
                    pending = False
                    if self.cancelled:
                        break
                    if attempt >= self.retries:
                        logger.error(f"Giving up on {job} after {attempt} attempts: {e}")
                        job.fail(e)
                        return
                    logger.warning(f"Error talking to FastCGI, restarting ({e})")
        finally:
            self.waiting = False

        if self.cancelled and response is None:
            # The remote job keeps running; it is neither resent nor failed
            logger.info(f"Stopped waiting for {job} after shutdown")
            return

        if response is None:
            # Drop the connection so a late reply can't be read as the next job's
            self.client.close()
            job.fail(FastCGITimeoutError(f"No response from {self.location} after {self.retries} attempts"))
            return

        if (
            not response.status_code
            or response.status_code > 299
            or FATAL_ERROR_MARKER in response.body
        ):
            job.fail(RemoteJobError(
                f"FastCGI job returned non-200 status code: {response.status_code} "
                f"Stdout: {response.body} Stderr: {response.stderr}"
            ))

    def shutdown(self):
        if self.waiting:
            logger.info("Closing fcgi connection with job in progress.")
            self.cancelled = True
        else:
            logger.info("No child to kill.")
        self.client.close()

def default_strategy(config: Settings) -> ExecutionStrategy:
    """
    Strategy named by JOB_STRATEGY, otherwise fork where the platform
    supports it. A process-local memory store can't see a child's writes,
    so it always runs in-process.
    """
    name = config.JOB_STRATEGY
    if name == "fastcgi":
        return FastCGIStrategy.from_settings(config)
    if name == "inprocess":
        return InProcessStrategy()
    if name == "fork":
        return ForkStrategy()
    if hasattr(os, "fork") and config.STORE_BACKEND != "memory":
        return ForkStrategy()
    return InProcessStrategy()
