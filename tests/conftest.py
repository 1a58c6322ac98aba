import pytest

from resqueue.context import QueueContext
from resqueue.domain.states import PerformDecision
from resqueue.handlers import HandlerRegistry, JobHandler
from resqueue.settings import Settings
from resqueue.store.memory import InMemoryStore
from resqueue.store.session import StoreSession


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingJob(JobHandler):
    def __init__(self, calls):
        self.calls = calls

    def set_up(self):
        self.calls.append(("set_up", self.args))

    def perform(self):
        self.calls.append(("perform", self.args))

    def tear_down(self):
        self.calls.append(("tear_down", self.args))


class FailingJob(JobHandler):
    def perform(self):
        raise RuntimeError("boom")


class SkippingJob(JobHandler):
    def __init__(self, calls):
        self.calls = calls

    def set_up(self):
        return PerformDecision.SKIP

    def perform(self):
        self.calls.append(("perform", self.args))


class NoPerformJob:
    pass


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock)


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, STORE_BACKEND="memory", JOB_STRATEGY="inprocess")


@pytest.fixture
def calls():
    return []


@pytest.fixture
def handlers(calls):
    registry = HandlerRegistry()
    registry.register("RecordingJob", lambda: RecordingJob(calls))
    registry.register("SkippingJob", lambda: SkippingJob(calls))
    registry.register("FailingJob", FailingJob)
    registry.register("NoPerformJob", NoPerformJob)
    return registry


@pytest.fixture
def ctx(store, test_settings, handlers):
    return QueueContext(StoreSession(lambda: store), handlers=handlers, config=test_settings)
