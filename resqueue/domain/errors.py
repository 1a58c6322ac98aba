class JobError(Exception):
    """Base exception for job queue errors."""
    pass

class InvalidJobArgumentsError(JobError, ValueError):
    pass

class CannotPerformError(JobError):
    pass

class UnknownHandlerError(CannotPerformError):
    def __init__(self, class_name):
        super().__init__(f"Could not find job class {class_name}")
        self.class_name = class_name

class DirtyExitError(JobError):
    def __init__(self, message="Job exited without finishing", exit_code=None):
        super().__init__(message)
        self.exit_code = exit_code

class RemoteJobError(DirtyExitError):
    pass

class FastCGICommunicationError(JobError):
    pass

class FastCGITimeoutError(FastCGICommunicationError):
    pass

class StoreError(JobError):
    pass

class BlockingPopTimingError(StoreError):
    def __init__(self, timeout, elapsed):
        super().__init__(f"blpop expected {timeout}s, failed in {elapsed:.2f}s")
        self.timeout = timeout
        self.elapsed = elapsed
