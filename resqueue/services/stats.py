"""
Integer counters kept under stat:<name>.
"""

from resqueue.store.base import QueueStore


def _key(name: str) -> str:
    return f"stat:{name}"

def get(store: QueueStore, name: str) -> int:
    return int(store.get(_key(name)) or 0)

def incr(store: QueueStore, name: str, by: int = 1) -> int:
    return store.incrby(_key(name), by)

def decr(store: QueueStore, name: str, by: int = 1) -> int:
    return store.incrby(_key(name), -by)

def clear(store: QueueStore, name: str) -> bool:
    return bool(store.delete(_key(name)))
