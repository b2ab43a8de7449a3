from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

import pytest

from spawner.models import AgentEvent, EventKind
from spawner.scheduler import LaunchScheduler


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    def __init__(self, index: int, notify: Callable[[AgentEvent], None], fail: bool = False) -> None:
        self.index = index
        self.notify = notify
        self.fail = fail
        self.pid = 1000 + index
        self.started = False
        self.stopped = False
        self.exited = False

    def start(self) -> None:
        if self.fail:
            raise OSError("fork failed")
        self.started = True

    def stop(self, timeout: float = 5.0) -> None:
        self.stopped = True

    def ready(self, detail: str = "ok") -> None:
        self.notify(AgentEvent(EventKind.READY, self.index, detail=detail))

    def error(self, detail: str = "boom") -> None:
        self.notify(AgentEvent(EventKind.ERROR, self.index, detail=detail))

    def exit(self, code: Optional[int] = 0, signal: Optional[str] = None) -> None:
        self.exited = True
        self.notify(AgentEvent(EventKind.EXIT, self.index, code=code, signal=signal))


class FakeSpawner:
    """Handle factory that remembers every agent it was asked to start."""

    def __init__(self, clock: FakeClock, failing: Iterable[int] = ()) -> None:
        self.clock = clock
        self.failing = set(failing)
        self.handles: Dict[int, FakeHandle] = {}
        self.order: List[int] = []
        self.launch_times: List[float] = []

    def __call__(self, index: int, notify: Callable[[AgentEvent], None]) -> FakeHandle:
        handle = FakeHandle(index, notify, fail=index in self.failing)
        self.handles[index] = handle
        self.order.append(index)
        self.launch_times.append(self.clock())
        return handle

    def live(self) -> List[FakeHandle]:
        return [h for h in self.handles.values() if h.started and not h.exited]


def assert_invariants(scheduler: LaunchScheduler) -> None:
    snap = scheduler.snapshot()
    assert snap.alive == snap.launched - snap.finished
    assert 0 <= snap.finished <= snap.launched <= snap.total
    assert snap.alive <= scheduler.concurrency_limit


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_scheduler(clock: FakeClock):
    def _make(
        total: int,
        limit: int,
        stagger: float = 0.0,
        settle: float = 0.5,
        failing: Iterable[int] = (),
    ) -> tuple[LaunchScheduler, FakeSpawner]:
        spawner = FakeSpawner(clock, failing=failing)
        scheduler = LaunchScheduler(
            total=total,
            concurrency_limit=limit,
            stagger_interval=stagger,
            settle_delay=settle,
            spawn=spawner,
            clock=clock,
        )
        return scheduler, spawner

    return _make
