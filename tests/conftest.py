from datetime import UTC, datetime, timedelta

import pytest

from tqueue.adapters.queue.memory import InMemoryQueueClient


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=UTC)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingReporter:
    """ErrorReporter that keeps what it was given."""

    def __init__(self) -> None:
        self.reports: list[tuple[BaseException, dict[str, object]]] = []

    def report_error(self, exc: BaseException, fields=None) -> None:
        self.reports.append((exc, dict(fields or {})))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def client(clock: FakeClock) -> InMemoryQueueClient:
    return InMemoryQueueClient(clock=clock)
