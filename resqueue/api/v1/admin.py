from typing import Any, Union

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from resqueue.api.deps import Context
from resqueue.commands import exchanges
from resqueue.commands.queues import dequeue, queues, size
from resqueue.services.failure import RedisFailureBackend

router = APIRouter()

class DequeueRequest(BaseModel):
    # Empty means the whole queue
    items: list[Union[str, dict[str, Any]]] = []

class TrimRequest(BaseModel):
    length: int = Field(ge=0)

@router.get("/queues")
def list_queues(ctx: Context):
    store = ctx.store
    return [{"queue": name, "size": size(store, name)} for name in queues(store)]

@router.post("/queues/{queue}/dequeue")
def dequeue_queue(queue: str, body: DequeueRequest, ctx: Context):
    try:
        removed = dequeue(ctx.store, queue, body.items)
    except TypeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"queue": queue, "removed": removed}

@router.get("/exchanges")
def list_exchanges(ctx: Context):
    return exchanges.exchanges(ctx.store)

@router.get("/failed")
def list_failed(ctx: Context, start: int = 0, count: int = 100):
    store = ctx.store
    return {
        "count": RedisFailureBackend.count(store),
        "items": RedisFailureBackend.all(store, start, count),
    }

@router.post("/failed/trim")
def trim_failed(body: TrimRequest, ctx: Context):
    removed = RedisFailureBackend.limit_queue_length(ctx.store, body.length)
    return {"removed": removed}
