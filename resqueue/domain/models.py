from dataclasses import dataclass, field
from typing import Optional, Any

@dataclass(frozen=True)
class WorkerIdentity:
    hostname: str
    pid: int
    queues: tuple[str, ...]

    @classmethod
    def parse(cls, worker_id: str) -> "WorkerIdentity":
        """
        Rebuilds an identity from its "hostname:pid:queue1,queue2" form.
        Queue names may not contain commas; the hostname may not contain colons.
        """
        parts = worker_id.split(":", 2)
        if len(parts) != 3:
            raise ValueError(f"Malformed worker id: {worker_id!r}")
        hostname, pid, queues = parts
        return cls(hostname=hostname, pid=int(pid), queues=tuple(queues.split(",")))

    def __str__(self) -> str:
        return f"{self.hostname}:{self.pid}:{','.join(self.queues)}"

@dataclass
class FailureRecord:
    failed_at: str
    payload: dict[str, Any]
    exception: str
    error: str
    backtrace: list[str] = field(default_factory=list)
    worker: Optional[str] = None
    queue: Optional[str] = None

@dataclass
class WorkingOn:
    queue: str
    run_at: str
    payload: dict[str, Any]
