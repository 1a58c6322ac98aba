from .client import FastCGIClient, FastCGIResponse
from .signals import SignalListener, WorkerControl
from .strategies import ExecutionStrategy, FastCGIStrategy, ForkStrategy, InProcessStrategy, default_strategy
from .worker import Worker

__all__ = [
    "ExecutionStrategy",
    "FastCGIClient",
    "FastCGIResponse",
    "FastCGIStrategy",
    "ForkStrategy",
    "InProcessStrategy",
    "SignalListener",
    "Worker",
    "WorkerControl",
    "default_strategy",
]
