from __future__ import annotations

import pytest

from spawner.models import AgentEvent, AgentRecord, AgentState, EventKind, SchedulerState


class TestSchedulerState:
    def test_alive_tracks_launches_and_exits(self):
        state = SchedulerState(total=3)
        state.record_launch()
        state.record_launch()
        state.record_exit()
        snap = state.snapshot()
        assert snap.as_dict() == {"launched": 2, "alive": 1, "finished": 1, "total": 3}
        assert state.alive == state.launched - state.finished

    def test_cannot_launch_past_total(self):
        state = SchedulerState(total=1)
        state.record_launch()
        with pytest.raises(RuntimeError):
            state.record_launch()

    def test_cannot_exit_without_live_agent(self):
        state = SchedulerState(total=2)
        with pytest.raises(RuntimeError):
            state.record_exit()

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError):
            SchedulerState(total=-1)


class TestAgentRecord:
    @pytest.mark.parametrize(
        "path",
        [
            [AgentState.READY, AgentState.EXITED],
            [AgentState.ERRORED, AgentState.EXITED],
            [AgentState.EXITED],
        ],
    )
    def test_allowed_paths(self, path):
        record = AgentRecord(index=0, handle=None)
        for state in path:
            assert record.transition(state)
        assert record.state is AgentState.EXITED

    def test_exited_is_terminal(self):
        record = AgentRecord(index=0, handle=None)
        record.transition(AgentState.EXITED)
        assert not record.transition(AgentState.READY)
        assert not record.transition(AgentState.ERRORED)
        assert record.state is AgentState.EXITED

    def test_ready_and_errored_do_not_cross(self):
        record = AgentRecord(index=0, handle=None)
        record.transition(AgentState.READY)
        assert not record.transition(AgentState.ERRORED)
        assert not record.transition(AgentState.STARTING)

    def test_summary_reports_handle_pid(self):
        class Handle:
            pid = 4242

        record = AgentRecord(index=7, handle=Handle(), started_at=1.5)
        assert record.summary() == {
            "index": 7,
            "state": "starting",
            "pid": 4242,
            "errors": 0,
            "last_error": None,
            "started_at": 1.5,
        }


def test_admit_event_has_no_agent():
    event = AgentEvent.admit("stagger")
    assert event.kind is EventKind.ADMIT
    assert event.index == -1
    assert event.detail == "stagger"
