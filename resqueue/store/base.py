from abc import ABC, abstractmethod
from typing import Optional, Sequence


class QueueStore(ABC):
    """
    Key/value + list client the queue engine coordinates through.

    Keys are plain strings; implementations may namespace them internally but
    must hand back un-namespaced keys (e.g. from `blpop`).
    """

    # Lists

    @abstractmethod
    def rpush(self, key: str, value: str) -> int:
        """Appends to the tail, returns the new length."""

    @abstractmethod
    def lpop(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def blpop(self, keys: Sequence[str], timeout: float) -> Optional[tuple[str, str]]:
        """Pops from the head of the first non-empty list, waiting up to `timeout` seconds."""

    @abstractmethod
    def llen(self, key: str) -> int:
        pass

    @abstractmethod
    def lrange(self, key: str, start: int, end: int) -> list[str]:
        pass

    @abstractmethod
    def rpoplpush(self, source: str, destination: str) -> Optional[str]:
        """Atomically moves the tail of `source` onto the head of `destination`."""

    # Sets

    @abstractmethod
    def sadd(self, key: str, member: str) -> int:
        pass

    @abstractmethod
    def srem(self, key: str, member: str) -> int:
        pass

    @abstractmethod
    def sismember(self, key: str, member: str) -> bool:
        pass

    @abstractmethod
    def smembers(self, key: str) -> set[str]:
        pass

    @abstractmethod
    def scard(self, key: str) -> int:
        pass

    # Strings / keys

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> bool:
        pass

    @abstractmethod
    def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def expire(self, key: str, seconds: int) -> bool:
        pass

    @abstractmethod
    def ttl(self, key: str) -> int:
        """Seconds left, -1 without expiry, -2 when the key is missing."""

    @abstractmethod
    def incrby(self, key: str, amount: int = 1) -> int:
        pass

    def close(self) -> None:
        pass
