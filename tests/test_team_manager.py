import pytest

from teamwire.team_engine.errors import (
    DUPLICATE_MEMBER,
    INVALID_PARAM,
    NOT_FOUND,
    PREREQUISITE_MISSING,
    SPAWN_FAILED,
    STILL_BLOCKED,
    TeamEngineError,
)
from teamwire.team_engine.protocol import LEADER_MAILBOX, ExecutionMode, MessageKind, TaskStatus
from tests.utils.fakes import FakeTmux


def test_create_team_records_leader_and_opens_leader_mailbox(manager):
    team = manager.create_team("t1", description="ship it")

    assert team.leader_process_id == "leader-1"
    assert manager.mailbox.has_mailbox("t1", LEADER_MAILBOX)


def test_add_embedded_member_activates_without_handle(manager):
    manager.create_team("t1")

    member = manager.add_member("t1", "w1", role_type="tester", execution_mode="embedded")

    assert member.is_active is True
    assert member.process_handle is None
    assert member.execution_mode == ExecutionMode.EMBEDDED
    assert manager.supervisor.is_alive("t1", "w1")
    assert manager.mailbox.has_mailbox("t1", "w1")


def test_add_isolated_member_records_pane_handle(manager, fake_tmux):
    manager.create_team("t1")

    member = manager.add_member("t1", "w1", model_class="large", execution_mode="isolated")

    assert member.is_active is True
    assert member.process_handle in fake_tmux.panes
    assert manager.store.get_member("t1", "w1").process_handle == member.process_handle


def test_add_member_to_missing_team_is_not_found(manager):
    with pytest.raises(TeamEngineError) as exc:
        manager.add_member("ghost", "w1", execution_mode="embedded")
    assert exc.value.code == NOT_FOUND


def test_duplicate_and_reserved_member_names(manager):
    manager.create_team("t1")
    manager.add_member("t1", "w1", execution_mode="embedded")

    with pytest.raises(TeamEngineError) as dup:
        manager.add_member("t1", "w1", execution_mode="embedded")
    assert dup.value.code == DUPLICATE_MEMBER

    with pytest.raises(TeamEngineError) as reserved:
        manager.add_member("t1", "team-lead", execution_mode="embedded")
    assert reserved.value.code == INVALID_PARAM


def test_missing_tmux_fails_before_any_state(make_manager):
    manager = make_manager(tmux=FakeTmux(installed=False))
    manager.create_team("t1")

    with pytest.raises(TeamEngineError) as exc:
        manager.add_member("t1", "w1", execution_mode="isolated")

    assert exc.value.code == PREREQUISITE_MISSING
    assert manager.store.read_team("t1").members == []
    assert manager.mailbox.has_mailbox("t1", "w1") is False


@pytest.mark.parametrize("tmux", [FakeTmux(spawn_fails=True), FakeTmux(spawn_dies=True)])
def test_failed_spawn_is_rolled_back(make_manager, tmux):
    manager = make_manager(tmux=tmux)
    manager.create_team("t1")

    with pytest.raises(TeamEngineError) as exc:
        manager.add_member("t1", "w1", execution_mode="isolated")

    assert exc.value.code == SPAWN_FAILED
    assert manager.store.read_team("t1").members == []
    assert manager.mailbox.has_mailbox("t1", "w1") is False
    # The name is free again.
    manager.add_member("t1", "w1", execution_mode="embedded")


def test_scenario_build_deploy_through_manager(manager):
    manager.create_team("t1")
    manager.add_member("t1", "w1", execution_mode="isolated")
    build = manager.create_task("t1", "build", owner="w1")
    deploy = manager.create_task("t1", "deploy", owner="w1", blocked_by=[build.id])

    manager.transition_task("t1", build.id, "in_progress")
    with pytest.raises(TeamEngineError) as exc:
        manager.transition_task("t1", deploy.id, "in_progress")
    assert exc.value.code == STILL_BLOCKED

    manager.transition_task("t1", build.id, "completed")
    assert manager.transition_task("t1", deploy.id, "in_progress").status == TaskStatus.IN_PROGRESS
    notices = [
        e
        for e in manager.peek_recent("t1", "w1", 10)
        if e.kind == MessageKind.MESSAGE and e.task_id == build.id
    ]
    assert len(notices) == 1
    assert [t.id for t in manager.list_blockers("t1", deploy.id)] == [build.id]


def test_task_owner_must_be_member(manager):
    manager.create_team("t1")

    with pytest.raises(TeamEngineError) as exc:
        manager.create_task("t1", "build", owner="nobody")
    assert exc.value.code == NOT_FOUND
    assert manager.list_tasks("t1") == []

    task = manager.create_task("t1", "build")
    with pytest.raises(TeamEngineError):
        manager.assign_task("t1", task.id, "nobody")


def test_leader_receives_member_messages(manager):
    manager.create_team("t1")
    manager.add_member("t1", "w1", execution_mode="isolated")
    manager.send_message("t1", LEADER_MAILBOX, "done with build", sender="w1")

    received = manager.receive("t1")

    assert [e.body for e in received] == ["done with build"]
    assert manager.receive("t1") == []


def test_get_status_reflects_stores(manager, fake_tmux):
    manager.create_team("t1")
    w1 = manager.add_member("t1", "w1", execution_mode="isolated")
    manager.add_member("t1", "w2", execution_mode="isolated")
    manager.create_task("t1", "build", owner="w1")
    manager.send_message("t1", "w2", "hello")
    fake_tmux.panes.pop(w1.process_handle)

    status = manager.get_status("t1")

    by_id = {m["id"]: m for m in status["members"]}
    assert by_id["w1"]["liveness"] == "offline"
    assert by_id["w2"]["liveness"] == "active"
    assert by_id["w1"]["open_tasks"] == 1
    assert by_id["w2"]["unread"] == 1
    assert status["task_counts"]["pending"] == 1
    assert len(status["warnings"]) == 1

    assert manager.reconcile("t1") == ["w1"]
    assert manager.get_status("t1")["warnings"] == []


def test_cleanup_leader_session_removes_only_that_leaders_teams(make_manager, fake_tmux):
    mine = make_manager()
    other = make_manager()
    other.leader_process_id = "leader-2"
    mine.create_team("a")
    mine.add_member("a", "w1", execution_mode="isolated")
    other.create_team("b")

    removed = mine.cleanup_leader_session("leader-1")

    assert removed == ["a"]
    assert mine.store.list_teams() == ["b"]
    assert fake_tmux.panes == {}


def test_delete_team_drops_its_own_tmux_session(manager, fake_tmux):
    manager.create_team("t1")
    manager.add_member("t1", "w1", execution_mode="isolated")
    assert "teamwire_t1" in fake_tmux.sessions

    manager.force_shutdown("t1", "w1")
    manager.delete_team("t1")

    assert "teamwire_t1" not in fake_tmux.sessions
    assert fake_tmux.panes == {}
    assert not manager.store.exists("t1")
