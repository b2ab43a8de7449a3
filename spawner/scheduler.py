"""Launch scheduler that brings agents up under a concurrency budget.

Every signal an agent handle raises and every timer firing is turned into an
:class:`~spawner.models.AgentEvent` and pushed through a single inbox. Only the
scheduler loop consumes that inbox, so queue pops and counter updates happen
one at a time even though handles report from their own watcher threads.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import queue
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Protocol, Tuple

from .models import AgentEvent, AgentRecord, AgentState, EventKind, SchedulerState, StatusSnapshot

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTLE_SECONDS = 0.5
IDLE_POLL_SECONDS = 1.0

Notify = Callable[[AgentEvent], None]


class AgentHandle(Protocol):
    pid: Optional[int]

    def start(self) -> None:
        ...

    def stop(self, timeout: float = 5.0) -> None:
        ...


HandleFactory = Callable[[int, Notify], AgentHandle]


class DelayQueue:
    """Heap of events keyed by due time. Not thread-safe; owned by the loop."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._heap: List[Tuple[float, int, AgentEvent]] = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def schedule(self, delay: float, event: AgentEvent) -> None:
        due = self._clock() + max(0.0, delay)
        heapq.heappush(self._heap, (due, next(self._seq), event))

    def pop_due(self) -> List[AgentEvent]:
        now = self._clock()
        due: List[AgentEvent] = []
        while self._heap and self._heap[0][0] <= now:
            due.append(heapq.heappop(self._heap)[2])
        return due

    def next_delay(self) -> Optional[float]:
        if not self._heap:
            return None
        return max(0.0, self._heap[0][0] - self._clock())


class LaunchScheduler:
    """Owns the pending work queue, the concurrency budget and live agents.

    ``spawn(index, notify)`` must return an unstarted handle; the handle
    reports its lifecycle by calling ``notify`` with ready/error/exit events,
    exactly one of which is an exit.
    """

    def __init__(
        self,
        total: int,
        concurrency_limit: int,
        stagger_interval: float,
        spawn: HandleFactory,
        settle_delay: float = DEFAULT_SETTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        if stagger_interval < 0 or settle_delay < 0:
            raise ValueError("delays must be non-negative")
        self.state = SchedulerState(total)
        self.concurrency_limit = concurrency_limit
        self.stagger_interval = stagger_interval
        self.settle_delay = settle_delay
        self._spawn = spawn
        self._pending: Deque[int] = deque(range(total))
        self._records: Dict[int, AgentRecord] = {}
        self._records_lock = threading.Lock()
        self._inbox: "queue.Queue[AgentEvent]" = queue.Queue()
        self._timers = DelayQueue(clock)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started = False
        self._quiescence_logged = False

    # Read-only views --------------------------------------------------
    @property
    def total(self) -> int:
        return self.state.total

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    @property
    def quiescent(self) -> bool:
        return not self._pending and self.state.alive == 0

    def snapshot(self) -> StatusSnapshot:
        return self.state.snapshot()

    def agents(self) -> List[Dict[str, object]]:
        with self._records_lock:
            records = sorted(self._records.values(), key=lambda record: record.index)
        return [record.summary() for record in records]

    # Event intake ------------------------------------------------------
    def post(self, event: AgentEvent) -> None:
        """Queue an event for the scheduler loop. Safe from any thread."""
        self._inbox.put(event)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        LOGGER.info(
            "Scheduling %d agents (max %d concurrent, stagger %.3fs)",
            self.total,
            self.concurrency_limit,
            self.stagger_interval,
        )
        self.post(AgentEvent.admit("startup"))

    def run_pending(self) -> int:
        """Process queued events and due timers until none remain."""
        processed = 0
        while True:
            batch = self._drain_inbox()
            batch.extend(self._timers.pop_due())
            if not batch:
                return processed
            for event in batch:
                self._dispatch(event)
                processed += 1

    def _drain_inbox(self) -> List[AgentEvent]:
        events: List[AgentEvent] = []
        while True:
            try:
                events.append(self._inbox.get_nowait())
            except queue.Empty:
                return events

    def _record(self, index: int) -> Optional[AgentRecord]:
        with self._records_lock:
            return self._records.get(index)

    def run_forever(self) -> None:
        self.start()
        while not self._stop.is_set():
            timeout = self._timers.next_delay()
            if timeout is None or timeout > IDLE_POLL_SECONDS:
                timeout = IDLE_POLL_SECONDS
            try:
                event = self._inbox.get(timeout=timeout)
            except queue.Empty:
                pass
            else:
                self._dispatch(event)
            self.run_pending()

    def serve_in_thread(self) -> threading.Thread:
        thread = threading.Thread(target=self.run_forever, name="launch-scheduler", daemon=True)
        self._thread = thread
        thread.start()
        return thread

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the loop and terminate every live agent."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=IDLE_POLL_SECONDS * 2)
        with self._records_lock:
            handles = [record.handle for record in self._records.values() if record.handle is not None]
        if handles:
            LOGGER.info("Stopping %d live agents", len(handles))
        for handle in handles:
            handle.stop(timeout)

    # Admission ---------------------------------------------------------
    def admit_more(self) -> None:
        while self.state.alive < self.concurrency_limit and self._pending:
            self._launch(self._pending.popleft())

    def _launch(self, index: int) -> None:
        record = AgentRecord(index=index, handle=None)
        with self._records_lock:
            self._records[index] = record
        self.state.record_launch()
        try:
            record.handle = self._spawn(index, self.post)
            record.handle.start()
        except Exception:
            LOGGER.exception("Agent #%d failed to start", index)
            self.post(AgentEvent(EventKind.EXIT, index, detail="start failed"))
        else:
            LOGGER.info("Launched agent #%d (%d/%d)", index, self.state.launched, self.total)
        if self._pending:
            self._timers.schedule(self.stagger_interval, AgentEvent.admit("stagger"))

    # Signal handling ---------------------------------------------------
    def _dispatch(self, event: AgentEvent) -> None:
        if event.kind is EventKind.ADMIT:
            self.admit_more()
        elif event.kind is EventKind.READY:
            self._on_ready(event)
        elif event.kind is EventKind.ERROR:
            self._on_error(event)
        elif event.kind is EventKind.EXIT:
            self._on_exit(event)
        self._check_quiescent()

    def _on_ready(self, event: AgentEvent) -> None:
        record = self._record(event.index)
        if record is None or not record.transition(AgentState.READY):
            LOGGER.debug("Ignoring ready signal from agent #%d", event.index)
            return
        LOGGER.info("Agent #%d ready - %s", event.index, event.detail or "")

    def _on_error(self, event: AgentEvent) -> None:
        record = self._record(event.index)
        if record is None:
            LOGGER.debug("Ignoring error signal from agent #%d", event.index)
            return
        record.errors += 1
        record.last_error = event.detail
        record.transition(AgentState.ERRORED)
        LOGGER.warning("Agent #%d error: %s", event.index, event.detail)

    def _on_exit(self, event: AgentEvent) -> None:
        with self._records_lock:
            record = self._records.pop(event.index, None)
        if record is None:
            LOGGER.warning("Ignoring exit signal for unknown agent #%d", event.index)
            return
        record.transition(AgentState.EXITED)
        record.exit_code = event.code
        record.exit_signal = event.signal
        self.state.record_exit()
        level = logging.INFO if event.code == 0 else logging.WARNING
        LOGGER.log(
            level,
            "Agent #%d exited (code=%s, sig=%s%s)",
            event.index,
            event.code,
            event.signal,
            ", %s" % event.detail if event.detail else "",
        )
        if self._pending:
            self._timers.schedule(self.settle_delay, AgentEvent.admit("settle"))

    def _check_quiescent(self) -> None:
        if self._quiescence_logged or not self.quiescent:
            return
        self._quiescence_logged = True
        LOGGER.info("All %d agents finished; launch queue is empty", self.state.finished)


__all__ = ["AgentHandle", "DelayQueue", "HandleFactory", "LaunchScheduler"]
