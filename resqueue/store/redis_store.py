import logging
from typing import Optional, Sequence

import redis

from resqueue.domain.errors import StoreError
from resqueue.store.base import QueueStore

logger = logging.getLogger(__name__)

class RedisStore(QueueStore):
    """QueueStore over redis-py with every key prefixed by `namespace`."""

    def __init__(self, client: redis.Redis, namespace: str = "resque:"):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "resque:") -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _strip(self, key: str) -> str:
        if key.startswith(self.namespace):
            return key[len(self.namespace):]
        return key

    def rpush(self, key, value):
        try:
            return self.client.rpush(self._key(key), value)
        except redis.RedisError as e:
            logger.error(f"Redis rpush to {key} failed: {e}")
            return 0

    def lpop(self, key):
        return self.client.lpop(self._key(key))

    def blpop(self, keys: Sequence[str], timeout: float) -> Optional[tuple[str, str]]:
        try:
            item = self.client.blpop([self._key(k) for k in keys], timeout=timeout)
        except redis.TimeoutError as e:
            raise StoreError(f"blpop on {list(keys)} timed out at the socket level: {e}") from e
        if not item:
            return None
        key, value = item
        return self._strip(key), value

    def llen(self, key):
        return self.client.llen(self._key(key))

    def lrange(self, key, start, end):
        return self.client.lrange(self._key(key), start, end)

    def rpoplpush(self, source, destination):
        return self.client.rpoplpush(self._key(source), self._key(destination))

    def sadd(self, key, member):
        return self.client.sadd(self._key(key), member)

    def srem(self, key, member):
        return self.client.srem(self._key(key), member)

    def sismember(self, key, member):
        return bool(self.client.sismember(self._key(key), member))

    def smembers(self, key):
        return set(self.client.smembers(self._key(key)))

    def scard(self, key):
        return self.client.scard(self._key(key))

    def get(self, key):
        return self.client.get(self._key(key))

    def set(self, key, value):
        return bool(self.client.set(self._key(key), value))

    def delete(self, *keys):
        if not keys:
            return 0
        return self.client.delete(*[self._key(k) for k in keys])

    def exists(self, key):
        return bool(self.client.exists(self._key(key)))

    def expire(self, key, seconds):
        return bool(self.client.expire(self._key(key), seconds))

    def ttl(self, key):
        return self.client.ttl(self._key(key))

    def incrby(self, key, amount=1):
        return self.client.incrby(self._key(key), amount)

    def close(self):
        self.client.close()
