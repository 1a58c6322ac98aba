import json
import logging
import time
from typing import Any, Optional, Sequence, TYPE_CHECKING
from uuid import uuid4

from resqueue.domain.errors import BlockingPopTimingError
from resqueue.domain.states import JobEvent
from resqueue.store.base import QueueStore

if TYPE_CHECKING:
    from resqueue.context import QueueContext

logger = logging.getLogger(__name__)

QUEUES_SET = "queues"
QUEUE_PREFIX = "queue:"

def queue_key(queue: str) -> str:
    return f"{QUEUE_PREFIX}{queue}"

def is_job_entry(item: Any) -> bool:
    """A JSON object with a `class` and `args` absent or a list of at most one object (or null)."""
    if not isinstance(item, dict) or "class" not in item:
        return False
    args = item.get("args")
    if args is None:
        return True
    return (
        isinstance(args, list)
        and len(args) <= 1
        and all(a is None or isinstance(a, dict) for a in args)
    )

def decode_item(raw: Optional[str]) -> Optional[dict[str, Any]]:
    """Decodes a queue entry; anything that isn't a job entry is dropped."""
    if not raw:
        return None
    try:
        item = json.loads(raw)
    except ValueError:
        logger.warning(f"Dropping undecodable queue entry: {raw[:200]}")
        return None
    if not is_job_entry(item):
        logger.warning(f"Dropping malformed queue entry: {raw[:200]}")
        return None
    return item

def push(store: QueueStore, queue: str, item: dict[str, Any]) -> bool:
    """Appends a job entry to the tail of `queue`, registering the queue name."""
    store.sadd(QUEUES_SET, queue)
    length = store.rpush(queue_key(queue), json.dumps(item))
    return bool(length and length >= 1)

def pop(store: QueueStore, queue: str) -> Optional[dict[str, Any]]:
    return decode_item(store.lpop(queue_key(queue)))

def blpop(
    store: QueueStore,
    queues: Sequence[str],
    timeout: float,
    min_elapsed_ratio: float = 0.10,
) -> Optional[tuple[str, dict[str, Any]]]:
    """
    Blocking pop across `queues`. Returns (queue, item) or None.

    An empty result that arrives much sooner than `timeout` means the store
    did not actually block, which is a broken coordination layer rather than
    an empty queue: BlockingPopTimingError is raised.
    """
    if not queues:
        return None

    if timeout <= 0:
        # A zero timeout would block forever; sweep once instead
        for queue in queues:
            item = pop(store, queue)
            if item is not None:
                return queue, item
        return None

    start = time.monotonic()
    result = store.blpop([queue_key(q) for q in queues], timeout)

    if not result:
        elapsed = time.monotonic() - start
        if timeout > 1 and elapsed < timeout * min_elapsed_ratio:
            raise BlockingPopTimingError(timeout, elapsed)
        return None

    key, raw = result
    item = decode_item(raw)
    if item is None:
        return None
    return key[len(QUEUE_PREFIX):], item

def size(store: QueueStore, queue: str) -> int:
    return store.llen(queue_key(queue))

def queues(store: QueueStore) -> list[str]:
    return sorted(store.smembers(QUEUES_SET))

def enqueue(
    ctx: "QueueContext",
    queue: str,
    class_name: str,
    args: Optional[dict[str, Any]] = None,
    track_status: bool = False,
) -> Optional[str]:
    """
    Creates a job on `queue` and fires after_enqueue.
    Returns the job id, or None when the push failed.
    """
    from resqueue.job import Job

    job_id = Job.create(ctx, queue, class_name, args, track_status)
    if job_id:
        ctx.events.trigger(JobEvent.AFTER_ENQUEUE, {
            "class": class_name,
            "args": args,
            "queue": queue,
            "id": job_id,
        })
    return job_id

# Filtered removal

def _matchers(items: Sequence[Any]) -> list[tuple[str, str, Any]]:
    """
    Normalizes removal filters into (class, kind, value) triples.

    Accepted shapes:
      "EmailJob"                          -> every EmailJob
      {"EmailJob": "<id>"}                -> EmailJob with that id
      {"EmailJob": {"to": "a@x.com"}}     -> EmailJob with exactly those args
      {"class": "EmailJob", "id"/"args": ...}
    """
    matchers = []
    for item in items:
        if isinstance(item, str):
            matchers.append((item, "class", None))
        elif isinstance(item, dict) and "class" in item:
            if "id" in item:
                matchers.append((item["class"], "id", item["id"]))
            elif "args" in item:
                matchers.append((item["class"], "args", item["args"]))
            else:
                matchers.append((item["class"], "class", None))
        elif isinstance(item, dict):
            for class_name, value in item.items():
                kind = "args" if isinstance(value, dict) else "id"
                matchers.append((class_name, kind, value))
        else:
            raise TypeError(f"Unsupported dequeue filter: {item!r}")
    return matchers

def _matches(raw: str, matchers: list[tuple[str, str, Any]]) -> bool:
    try:
        decoded = json.loads(raw)
    except ValueError:
        return False
    if not is_job_entry(decoded):
        return False

    args = decoded.get("args") or []
    job_args = args[0] if args else None

    for class_name, kind, value in matchers:
        if decoded.get("class") != class_name:
            continue
        if kind == "class":
            return True
        if kind == "id" and decoded.get("id") == value:
            return True
        if kind == "args" and job_args and job_args == value:
            return True
    return False

def _remove_items(store: QueueStore, queue: str, items: Sequence[Any]) -> int:
    matchers = _matchers(items)
    original = queue_key(queue)
    temp = f"{original}:temp:{int(time.time())}:{uuid4().hex[:8]}"
    requeue = f"{temp}:requeue"
    counter = 0

    # Rotate every entry through `temp`; non-matching ones move on to `requeue`
    while True:
        raw = store.rpoplpush(original, temp)
        if raw is None:
            break
        if _matches(raw, matchers):
            store.lpop(temp)
            counter += 1
        else:
            store.rpoplpush(temp, requeue)

    # Restore survivors in their original order
    while store.rpoplpush(requeue, original) is not None:
        pass

    store.delete(requeue, temp)
    return counter

def _remove_list(store: QueueStore, queue: str) -> int:
    counter = size(store, queue)
    result = store.delete(queue_key(queue))
    return counter if result == 1 else 0

def dequeue(store: QueueStore, queue: str, items: Optional[Sequence[Any]] = None) -> int:
    """
    Removes matching entries from `queue` and returns how many were removed.
    With no filters the whole queue is deleted.

    Not transactional: a crash midway can strand or duplicate entries in the
    temporary lists. Treat it as best-effort maintenance.
    """
    if items:
        removed = _remove_items(store, queue, items)
    else:
        removed = _remove_list(store, queue)
    logger.info(f"Dequeued {removed} entries from {queue}")
    return removed
