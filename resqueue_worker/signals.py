import logging
import signal
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

class WorkerControl:
    """
    Run-state token shared by the worker loop and whoever wants it to stop
    or pause (signal handlers, an embedding application, tests).

    "Shutdown" lets the current job finish; "shutdown now" also kills the
    job's child context through `kill_child_hook`.
    """

    def __init__(self, kill_child_hook: Optional[Callable[[], None]] = None):
        self.kill_child_hook = kill_child_hook
        self._shutdown = threading.Event()
        self._paused = threading.Event()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    def request_shutdown(self):
        logger.info("Shutting down")
        self._shutdown.set()

    def request_shutdown_now(self):
        self.request_shutdown()
        self.kill_child()

    def kill_child(self):
        if self.kill_child_hook is not None:
            self.kill_child_hook()

    def pause(self):
        logger.info("Pausing job processing")
        self._paused.set()

    def resume(self):
        logger.info("Resuming job processing")
        self._paused.clear()

    def wait(self, timeout: float) -> bool:
        """Sleeps up to `timeout` seconds; returns early (True) once shutdown is requested."""
        return self._shutdown.wait(timeout)

# signal name -> WorkerControl method
SIGNAL_ACTIONS = (
    ("SIGTERM", "request_shutdown_now"),
    ("SIGINT", "request_shutdown_now"),
    ("SIGQUIT", "request_shutdown"),
    ("SIGUSR1", "kill_child"),
    ("SIGUSR2", "pause"),
    ("SIGCONT", "resume"),
)

class SignalListener:
    """Translates OS signals into WorkerControl state changes."""

    def __init__(self, control: WorkerControl):
        self.control = control
        self._previous: dict[int, object] = {}

    def _make_handler(self, name: str, action: Callable[[], None]):
        def handler(signum, frame):
            logger.info(f"{name} received")
            action()
        return handler

    def install(self):
        for name, method in SIGNAL_ACTIONS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            handler = self._make_handler(name, getattr(self.control, method))
            try:
                self._previous[signum] = signal.signal(signum, handler)
            except (ValueError, OSError):
                # Not on the main thread, or the platform refuses this signal
                pass
        logger.debug(f"Registered signals: {sorted(self._previous)}")

    def uninstall(self):
        for signum, previous in self._previous.items():
            try:
                signal.signal(signum, previous)
            except (ValueError, OSError, TypeError):
                pass
        self._previous = {}
