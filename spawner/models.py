"""Domain models for the agent spawner: events, agent records and counters."""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class AgentState(str, enum.Enum):
    STARTING = "starting"
    READY = "ready"
    ERRORED = "errored"
    EXITED = "exited"


# Exited is reachable from every live state and is terminal.
_TRANSITIONS = {
    AgentState.STARTING: {AgentState.READY, AgentState.ERRORED, AgentState.EXITED},
    AgentState.READY: {AgentState.EXITED},
    AgentState.ERRORED: {AgentState.EXITED},
    AgentState.EXITED: set(),
}


class EventKind(str, enum.Enum):
    READY = "ready"
    ERROR = "error"
    EXIT = "exit"
    ADMIT = "admit"


@dataclass(frozen=True)
class AgentEvent:
    """A single signal delivered to the scheduler's inbox.

    ``ready``/``error``/``exit`` come from agent handles, ``admit`` from the
    stagger and settle timers (``index`` is -1 for those).
    """

    kind: EventKind
    index: int = -1
    detail: Optional[str] = None
    code: Optional[int] = None
    signal: Optional[str] = None

    @classmethod
    def admit(cls, reason: str) -> "AgentEvent":
        return cls(EventKind.ADMIT, detail=reason)


@dataclass
class AgentRecord:
    index: int
    handle: Any
    state: AgentState = AgentState.STARTING
    started_at: float = field(default_factory=time.time)
    errors: int = 0
    last_error: Optional[str] = None
    exit_code: Optional[int] = None
    exit_signal: Optional[str] = None

    def transition(self, new_state: AgentState) -> bool:
        """Move to ``new_state`` if allowed; returns whether the move happened."""
        if new_state not in _TRANSITIONS[self.state]:
            return False
        self.state = new_state
        return True

    def summary(self) -> Dict[str, object]:
        return {
            "index": self.index,
            "state": self.state.value,
            "pid": getattr(self.handle, "pid", None),
            "errors": self.errors,
            "last_error": self.last_error,
            "started_at": self.started_at,
        }


@dataclass(frozen=True)
class StatusSnapshot:
    launched: int
    alive: int
    finished: int
    total: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "launched": self.launched,
            "alive": self.alive,
            "finished": self.finished,
            "total": self.total,
        }


class SchedulerState:
    """Launch counters shared between the scheduler loop and status readers.

    Only the scheduler mutates the counters; readers go through ``snapshot``.
    """

    def __init__(self, total: int) -> None:
        if total < 0:
            raise ValueError("total must be non-negative")
        self.total = total
        self._launched = 0
        self._finished = 0
        self._lock = threading.Lock()

    @property
    def launched(self) -> int:
        return self._launched

    @property
    def finished(self) -> int:
        return self._finished

    @property
    def alive(self) -> int:
        return self._launched - self._finished

    def record_launch(self) -> None:
        with self._lock:
            if self._launched >= self.total:
                raise RuntimeError("cannot launch more than %d agents" % self.total)
            self._launched += 1

    def record_exit(self) -> None:
        with self._lock:
            if self._finished >= self._launched:
                raise RuntimeError("exit recorded without a live agent")
            self._finished += 1

    def snapshot(self) -> StatusSnapshot:
        with self._lock:
            return StatusSnapshot(
                launched=self._launched,
                alive=self._launched - self._finished,
                finished=self._finished,
                total=self.total,
            )


__all__ = [
    "AgentEvent",
    "AgentRecord",
    "AgentState",
    "EventKind",
    "SchedulerState",
    "StatusSnapshot",
]
