from enum import Enum, StrEnum, auto


class JobStatus(StrEnum):
    QUEUED = auto()      # Enqueued with tracking, waiting for a worker
    WORKING = auto()     # Reserved by a worker, handler running
    FAILED = auto()      # Terminal
    COMPLETED = auto()   # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.FAILED, JobStatus.COMPLETED)


class JobEvent(StrEnum):
    BEFORE_FIRST_FORK = auto()
    BEFORE_FORK = auto()
    AFTER_FORK = auto()
    BEFORE_PERFORM = auto()
    AFTER_PERFORM = auto()
    AFTER_ENQUEUE = auto()
    ON_FAILURE = auto()


class PerformDecision(Enum):
    PROCEED = auto()
    SKIP = auto()   # Returned from before_perform to skip the job without failing it
