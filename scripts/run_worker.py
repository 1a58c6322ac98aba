import logging
import os
import sys

sys.path.append(os.getcwd())

from resqueue.context import build_context
from resqueue.settings import settings
from resqueue_worker import Worker

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(process)d] %(name)s: %(message)s",
)
logger = logging.getLogger("resqueue.run_worker")

def run_worker():
    queues = [q.strip() for q in settings.WORKER_QUEUES.split(",") if q.strip()]
    if not queues:
        logger.error("Set RESQUEUE_WORKER_QUEUES to the queue(s) to work on")
        sys.exit(1)

    worker = Worker(build_context(settings), queues)
    logger.info(f"Starting worker {worker}")
    worker.work(settings.WORKER_INTERVAL, settings.WORKER_BLOCKING)

def main():
    count = max(1, settings.WORKER_COUNT)

    if count > 1:
        children = []
        for _ in range(count):
            pid = os.fork()
            if pid == 0:
                code = 0
                try:
                    run_worker()
                except Exception:
                    logger.exception("Worker crashed")
                    code = 1
                finally:
                    os._exit(code)
            logger.info(f"Forked worker {pid}")
            children.append(pid)

        for pid in children:
            _, status = os.waitpid(pid, 0)
            logger.info(f"Worker {pid} exited with code {os.waitstatus_to_exitcode(status)}")
        return

    if settings.PIDFILE:
        with open(settings.PIDFILE, "w") as f:
            f.write(str(os.getpid()))

    run_worker()

if __name__ == "__main__":
    main()
