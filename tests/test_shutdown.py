import time

import pytest

from teamwire.team_engine.agent import MemberAgent
from teamwire.team_engine.errors import MEMBERS_STILL_ACTIVE, TeamEngineError
from teamwire.team_engine.protocol import LEADER_MAILBOX, MessageKind, ShutdownState
from tests.utils.fakes import ShutdownResponder


def _isolated_team(manager, *names):
    manager.create_team("t1")
    return [manager.add_member("t1", name, execution_mode="isolated") for name in names]


def test_no_response_times_out_and_member_stays_active(manager, fake_tmux):
    [w1] = _isolated_team(manager, "w1")

    started = time.monotonic()
    outcome = manager.request_shutdown("t1", "w1", timeout_s=2)
    elapsed = time.monotonic() - started

    assert outcome.state == ShutdownState.TIMED_OUT
    assert elapsed >= 2.0
    member = manager.store.get_member("t1", "w1")
    assert member.is_active is True
    assert member.process_handle == w1.process_handle
    assert w1.process_handle in fake_tmux.panes
    [request] = manager.mailbox.read_all("t1", "w1")
    assert request.kind == MessageKind.SHUTDOWN_REQUEST
    assert request.request_id == outcome.request_id


def test_request_ignored_after_timeout_leaves_member_running(manager, fake_tmux):
    [w1] = _isolated_team(manager, "w1")
    outcome = manager.request_shutdown("t1", "w1", timeout_s=0.05)
    assert outcome.state == ShutdownState.TIMED_OUT
    time.sleep(0.02)

    agent = MemberAgent(manager.mailbox, manager.task_board, "t1", "w1")
    agent.poll_once()

    assert agent.stop_requested is False
    responses = [
        e for e in manager.mailbox.read_all("t1", LEADER_MAILBOX) if e.kind == MessageKind.SHUTDOWN_RESPONSE
    ]
    assert responses == []
    assert manager.store.get_member("t1", "w1").is_active is True
    assert w1.process_handle in fake_tmux.panes


def test_embedded_member_approves_then_team_can_be_deleted(manager):
    manager.create_team("t1")
    manager.add_member("t1", "w1", execution_mode="embedded")

    outcome = manager.request_shutdown("t1", "w1", timeout_s=5)

    assert outcome.state == ShutdownState.APPROVED
    assert manager.store.get_member("t1", "w1").is_active is False
    manager.delete_team("t1")
    assert not manager.store.exists("t1")


def test_isolated_approval_kills_pane_and_clears_handle(manager, fake_tmux):
    [w1] = _isolated_team(manager, "w1")
    responder = ShutdownResponder(manager.mailbox, "t1", "w1", approve=True)
    responder.start()

    outcome = manager.request_shutdown("t1", "w1", timeout_s=5)
    responder.join(timeout=1.0)

    assert outcome.state == ShutdownState.APPROVED
    assert outcome.request_id == responder.answered
    member = manager.store.get_member("t1", "w1")
    assert member.is_active is False
    assert member.process_handle is None
    assert w1.process_handle not in fake_tmux.panes


def test_denied_shutdown_leaves_member_running(manager, fake_tmux):
    [w1] = _isolated_team(manager, "w1")
    responder = ShutdownResponder(manager.mailbox, "t1", "w1", approve=False)
    responder.start()

    outcome = manager.request_shutdown("t1", "w1", timeout_s=5)
    responder.join(timeout=1.0)

    assert outcome.state == ShutdownState.DENIED
    assert outcome.reason == "still busy"
    assert manager.store.get_member("t1", "w1").is_active is True
    assert w1.process_handle in fake_tmux.panes


def test_stale_response_with_other_request_id_is_ignored(manager):
    _isolated_team(manager, "w1")
    manager.mailbox.send(
        "t1", "w1", LEADER_MAILBOX, kind="shutdown_response", request_id="req_old", approve=True
    )

    outcome = manager.request_shutdown("t1", "w1", timeout_s=0.3)

    assert outcome.state == ShutdownState.TIMED_OUT
    assert manager.store.get_member("t1", "w1").is_active is True


def test_force_shutdown_is_unconditional(manager, fake_tmux):
    [w1] = _isolated_team(manager, "w1")

    outcome = manager.force_shutdown("t1", "w1", reason="stuck")

    assert outcome.state == ShutdownState.FORCED
    assert manager.store.get_member("t1", "w1").is_active is False
    assert w1.process_handle not in fake_tmux.panes


def test_team_shutdown_runs_requests_concurrently(manager):
    _isolated_team(manager, "w1", "w2", "w3")

    started = time.monotonic()
    outcomes = manager.shutdown_team("t1", timeout_s=1.0)
    elapsed = time.monotonic() - started

    assert [o.member for o in outcomes] == ["w1", "w2", "w3"]
    assert all(o.state == ShutdownState.TIMED_OUT for o in outcomes)
    assert elapsed < 2.5
    with pytest.raises(TeamEngineError) as exc:
        manager.delete_team("t1")
    assert exc.value.code == MEMBERS_STILL_ACTIVE


def test_team_shutdown_mixed_outcomes_with_force(manager, fake_tmux):
    _isolated_team(manager, "w1", "w2")
    responder = ShutdownResponder(manager.mailbox, "t1", "w1", approve=True)
    responder.start()

    outcomes = manager.shutdown_team("t1", timeout_s=0.5, force=True)
    responder.join(timeout=1.0)

    states = {o.member: o.state for o in outcomes}
    assert states == {"w1": ShutdownState.APPROVED, "w2": ShutdownState.FORCED}
    assert fake_tmux.panes == {}
    manager.delete_team("t1")


def test_teardown_deletes_team_after_handshake(manager):
    manager.create_team("t1")
    manager.add_member("t1", "w1", execution_mode="embedded")
    manager.add_member("t1", "w2", execution_mode="embedded")

    outcomes = manager.teardown_team("t1", timeout_s=5)

    assert {o.state for o in outcomes} == {ShutdownState.APPROVED}
    assert manager.store.list_teams() == []


def test_shutdown_of_inactive_member_is_a_no_op(manager):
    manager.create_team("t1")
    manager.store.add_member("t1", {"name": "w1"})

    outcome = manager.request_shutdown("t1", "w1", timeout_s=0.1)

    assert outcome.state == ShutdownState.APPROVED
    assert outcome.request_id == ""
    assert manager.mailbox.has_mailbox("t1", "w1") is False


def _failing_for(manager, member_id, monkeypatch):
    real = manager.shutdown.request_shutdown

    def request_shutdown(team_name, mid, timeout_s=None):
        if mid == member_id:
            raise TimeoutError(f"lock timeout: {team_name}/{mid}")
        return real(team_name, mid, timeout_s=timeout_s)

    monkeypatch.setattr(manager.shutdown, "request_shutdown", request_shutdown)


def test_team_shutdown_keeps_outcomes_when_one_request_fails(manager, monkeypatch):
    _isolated_team(manager, "w1", "w2")
    _failing_for(manager, "w2", monkeypatch)
    responder = ShutdownResponder(manager.mailbox, "t1", "w1", approve=True)
    responder.start()

    outcomes = manager.shutdown_team("t1", timeout_s=2)
    responder.join(timeout=1.0)

    assert [o.member for o in outcomes] == ["w1", "w2"]
    w1, w2 = outcomes
    assert w1.state == ShutdownState.APPROVED
    assert w2.state == ShutdownState.TIMED_OUT
    assert "lock timeout" in w2.reason
    assert manager.store.get_member("t1", "w2").is_active is True


def test_team_shutdown_forces_member_whose_request_failed(manager, fake_tmux, monkeypatch):
    _isolated_team(manager, "w1", "w2")
    _failing_for(manager, "w2", monkeypatch)
    responder = ShutdownResponder(manager.mailbox, "t1", "w1", approve=True)
    responder.start()

    outcomes = manager.shutdown_team("t1", timeout_s=2, force=True)
    responder.join(timeout=1.0)

    assert {o.member: o.state for o in outcomes} == {"w1": ShutdownState.APPROVED, "w2": ShutdownState.FORCED}
    assert fake_tmux.panes == {}
    manager.delete_team("t1")
