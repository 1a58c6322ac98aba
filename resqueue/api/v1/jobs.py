from typing import Any, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from resqueue.api.deps import Context
from resqueue.domain.errors import InvalidJobArgumentsError
from resqueue.services.status import JobStatusTracker

router = APIRouter()

class JobCreate(BaseModel):
    queue: str
    class_name: str
    args: Optional[dict[str, Any]] = None
    track_status: bool = False

class JobCreated(BaseModel):
    id: str
    queue: str
    class_name: str

class JobStatusResponse(BaseModel):
    id: str
    status: str
    updated: Optional[int] = None
    started: Optional[int] = None
    result: Optional[Any] = None

@router.post("", response_model=JobCreated, status_code=status.HTTP_201_CREATED)
def create_job(payload: JobCreate, ctx: Context):
    try:
        job_id = ctx.enqueue(payload.queue, payload.class_name, payload.args, payload.track_status)
    except InvalidJobArgumentsError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if not job_id:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue store rejected the job")
    return JobCreated(id=job_id, queue=payload.queue, class_name=payload.class_name)

@router.get("/{job_id}/status", response_model=JobStatusResponse)
def get_job_status(job_id: str, ctx: Context):
    tracker = JobStatusTracker(ctx.store, job_id, ctx.settings.STATUS_TTL_SECONDS)
    packet = tracker.get_all()
    if not packet or "status" not in packet:
        raise HTTPException(status_code=404, detail="Job is not being tracked")
    return JobStatusResponse(
        id=job_id,
        status=packet["status"],
        updated=packet.get("updated"),
        started=packet.get("started"),
        result=packet.get("result"),
    )
