"""Agent process management utilities."""

from __future__ import annotations

import importlib
import logging
import multiprocessing as mp
import os
import signal
import threading
from multiprocessing.connection import Connection
from typing import Callable, Dict, Optional

from .models import AgentEvent, EventKind

LOGGER = logging.getLogger(__name__)

DEFAULT_TARGET = "spawner.agents:idle_agent"

AgentTarget = Callable[[int, "AgentChannel", Dict[str, str]], None]


class AgentChannel:
    """Child-side end of the signal pipe back to the scheduler."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def ready(self, detail: str = "") -> None:
        self._send("ready", detail)

    def error(self, detail: str) -> None:
        self._send("error", detail)

    def _send(self, kind: str, detail: str) -> None:
        try:
            self._conn.send({"type": kind, "detail": detail})
        except (BrokenPipeError, OSError) as exc:
            LOGGER.warning("Could not report %s to launcher: %s", kind, exc)


def resolve_target(reference: str) -> AgentTarget:
    """Import ``module:function`` and return the callable."""
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Agent target must look like 'module:function', got {reference!r}")
    module = importlib.import_module(module_name)
    target = getattr(module, attr, None)
    if not callable(target):
        raise ValueError(f"Agent target {reference!r} is not callable")
    return target


def _agent_worker(index: int, target: str, params: Dict[str, str], conn: Connection) -> None:
    """Run inside a child process for the lifetime of one agent."""
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    logging.basicConfig(level=logging.INFO)
    LOGGER = logging.getLogger(f"Agent-{index}")
    channel = AgentChannel(conn)
    try:
        run = resolve_target(target)
        run(index, channel, params)
    except KeyboardInterrupt:
        LOGGER.info("Agent %s interrupted", index)
    except Exception as exc:
        LOGGER.exception("Agent %s failed", index)
        channel.error(str(exc))
        raise SystemExit(1) from exc
    finally:
        conn.close()


def describe_exit(exitcode: Optional[int]) -> tuple[Optional[int], Optional[str]]:
    """Split a ``Process.exitcode`` into (code, signal name)."""
    if exitcode is None or exitcode >= 0:
        return exitcode, None
    try:
        return None, signal.Signals(-exitcode).name
    except ValueError:
        return None, str(-exitcode)


class ProcessAgentHandle:
    """One agent running in its own process, reporting back through a pipe."""

    def __init__(
        self,
        index: int,
        notify: Callable[[AgentEvent], None],
        target: str = DEFAULT_TARGET,
        params: Optional[Dict[str, str]] = None,
    ) -> None:
        self.index = index
        self.target = target
        self.params = dict(params or {})
        self._notify = notify
        self._process: Optional[mp.Process] = None
        self._watcher: Optional[threading.Thread] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def start(self) -> None:
        if self._process is not None:
            raise RuntimeError(f"agent #{self.index} already started")
        recv_conn, send_conn = mp.Pipe(duplex=False)
        proc = mp.Process(
            target=_agent_worker,
            args=(self.index, self.target, self.params, send_conn),
            name=f"agent-{self.index}",
            daemon=True,
        )
        try:
            proc.start()
        except Exception:
            recv_conn.close()
            raise
        finally:
            send_conn.close()
        self._process = proc
        self._watcher = threading.Thread(
            target=self._watch, args=(proc, recv_conn), name=f"agent-{self.index}-watch", daemon=True
        )
        self._watcher.start()

    def _watch(self, proc: mp.Process, conn: Connection) -> None:
        try:
            while True:
                try:
                    message = conn.recv()
                except (EOFError, OSError):
                    break
                kind = message.get("type") if isinstance(message, dict) else None
                if kind == "ready":
                    self._notify(AgentEvent(EventKind.READY, self.index, detail=message.get("detail")))
                elif kind == "error":
                    self._notify(AgentEvent(EventKind.ERROR, self.index, detail=message.get("detail")))
                else:
                    LOGGER.debug("Agent #%d sent unknown message %r", self.index, message)
        finally:
            conn.close()
            proc.join()
            code, sig = describe_exit(proc.exitcode)
            self._notify(AgentEvent(EventKind.EXIT, self.index, code=code, signal=sig))

    def stop(self, timeout: float = 5.0) -> None:
        process = self._process
        if process is None or not process.is_alive():
            return
        try:
            os.kill(process.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        process.join(timeout=timeout)
        if process.is_alive():
            process.kill()
            process.join(timeout=timeout)


def process_handle_factory(target: str = DEFAULT_TARGET, params: Optional[Dict[str, str]] = None):
    """Build a ``spawn(index, notify)`` callable for :class:`LaunchScheduler`."""

    def spawn(index: int, notify: Callable[[AgentEvent], None]) -> ProcessAgentHandle:
        return ProcessAgentHandle(index, notify, target=target, params=params)

    return spawn


__all__ = [
    "AgentChannel",
    "ProcessAgentHandle",
    "describe_exit",
    "process_handle_factory",
    "resolve_target",
]
