"""
Fan-out exchanges: an exchange is a set of queue names, and publishing to it
pushes the same job onto every subscribed queue.
"""

from typing import Any, Optional

from resqueue.commands.queues import push
from resqueue.store.base import QueueStore

EXCHANGES_SET = "exchanges"

def _exchange_key(exchange: str) -> str:
    return f"exchanges:{exchange}"

def subscribe(store: QueueStore, exchange: str, queue: str) -> None:
    if not queue:
        raise ValueError("queue param must be supplied")
    store.sadd(_exchange_key(exchange), queue)
    store.sadd(EXCHANGES_SET, exchange)

def unsubscribe(store: QueueStore, exchange: str, queue: str) -> None:
    if not queue:
        raise ValueError("queue param must be supplied")
    store.srem(_exchange_key(exchange), queue)
    if store.scard(_exchange_key(exchange)) == 0:
        store.srem(EXCHANGES_SET, exchange)

def queues_for(store: QueueStore, exchange: str) -> list[str]:
    if not store.sismember(EXCHANGES_SET, exchange):
        return []
    return sorted(store.smembers(_exchange_key(exchange)))

def exchanges(store: QueueStore) -> list[dict[str, Any]]:
    return [
        {"exchange": exchange, "queues": queues_for(store, exchange)}
        for exchange in sorted(store.smembers(EXCHANGES_SET))
    ]

def publish(store: QueueStore, exchange: str, class_name: str, args: Optional[dict[str, Any]] = None) -> int:
    """Pushes one entry per subscribed queue; returns how many queues received it."""
    delivered = 0
    for queue in queues_for(store, exchange):
        if push(store, queue, {"class": class_name, "args": [args]}):
            delivered += 1
    return delivered
