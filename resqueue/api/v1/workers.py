from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from resqueue.api.deps import Context
from resqueue_worker.worker import Worker

router = APIRouter()

class WorkerInfo(BaseModel):
    id: str
    hostname: str
    pid: int
    queues: list[str]
    started: Optional[str] = None
    job: dict[str, Any] = {}
    processed: int = 0
    failed: int = 0

@router.get("", response_model=list[WorkerInfo])
def list_workers(ctx: Context):
    return [
        WorkerInfo(
            id=worker.id,
            hostname=worker.hostname,
            pid=worker.pid,
            queues=worker.queues(fetch=False),
            started=worker.started(),
            job=worker.job(),
            processed=worker.get_stat("processed"),
            failed=worker.get_stat("failed"),
        )
        for worker in Worker.all(ctx)
    ]
