import json

from teamwire.commands import (
    MemberAdd,
    SendMessage,
    ShutdownRequest,
    TaskCreate,
    TaskTransition,
    TeamCreate,
    TeamDelete,
    TeamStatus,
    build_commands,
)


def _run(command, params):
    return json.loads(command.run(params))


def test_envelope_shape_on_success(manager):
    result = _run(TeamCreate(team_manager=manager), {"team_name": "t1", "description": "demo"})

    assert result["status"] == "success"
    assert set(result) == {"status", "data", "text", "stats", "context"}
    assert result["data"]["name"] == "t1"
    assert isinstance(result["stats"]["time_ms"], int)
    assert result["context"]["params_input"] == {"team_name": "t1", "description": "demo"}


def test_engine_errors_map_to_error_codes(manager):
    create = TeamCreate(team_manager=manager)
    _run(create, {"team_name": "t1"})

    result = _run(create, {"team_name": "t1"})

    assert result["status"] == "error"
    assert result["error"]["code"] == "ALREADY_EXISTS"
    assert result["data"] == {}


def test_missing_required_parameter_is_invalid_param(manager):
    result = _run(SendMessage(team_manager=manager), {"team_name": "t1", "to": "w1"})

    assert result["error"]["code"] == "INVALID_PARAM"
    assert "body" in result["text"]


def test_member_message_and_task_flow(manager):
    commands = build_commands(manager)
    _run(commands["TeamCreate"], {"team_name": "t1"})
    added = _run(commands["MemberAdd"], {"team_name": "t1", "name": "w1", "execution_mode": "isolated"})
    assert added["status"] == "success"
    assert added["data"]["process_handle"].startswith("%")

    sent = _run(commands["SendMessage"], {"team_name": "t1", "to": "all", "body": "kickoff"})
    assert sent["data"]["recipients"] == ["w1"]
    assert sent["data"]["entries"][0]["kind"] == "broadcast"

    build = _run(commands["TaskCreate"], {"team_name": "t1", "subject": "build", "owner": "w1"})["data"]
    deploy = _run(
        commands["TaskCreate"],
        {"team_name": "t1", "subject": "deploy", "blocked_by": build["id"]},
    )["data"]
    assert deploy["blocked_by"] == [build["id"]]

    blocked = _run(TaskTransition(team_manager=manager), {"team_name": "t1", "task_id": deploy["id"], "status": "in_progress"})
    assert blocked["error"]["code"] == "STILL_BLOCKED"

    cycle = _run(
        TaskCreate(team_manager=manager),
        {"team_name": "t1", "subject": "loop", "blocked_by": [deploy["id"]], "blocks": [build["id"]]},
    )
    assert cycle["error"]["code"] == "CYCLE_DETECTED"


def test_shutdown_timeout_is_reported_with_outcomes(manager):
    _run(TeamCreate(team_manager=manager), {"team_name": "t1"})
    _run(MemberAdd(team_manager=manager), {"team_name": "t1", "name": "w1", "execution_mode": "isolated"})

    result = _run(ShutdownRequest(team_manager=manager), {"team_name": "t1", "member": "w1", "timeout_s": 0.2})

    assert result["status"] == "error"
    assert result["error"]["code"] == "TIMED_OUT"
    assert result["data"]["outcomes"][0]["state"] == "timed_out"

    deleted = _run(TeamDelete(team_manager=manager), {"team_name": "t1"})
    assert deleted["error"]["code"] == "MEMBERS_STILL_ACTIVE"


def test_forced_shutdown_is_partial_and_unblocks_delete(manager):
    _run(TeamCreate(team_manager=manager), {"team_name": "t1"})
    _run(MemberAdd(team_manager=manager), {"team_name": "t1", "name": "w1", "execution_mode": "isolated"})

    result = _run(
        ShutdownRequest(team_manager=manager),
        {"team_name": "t1", "member": "all", "timeout_s": 0.2, "force": True},
    )

    assert result["status"] == "partial"
    assert result["data"]["outcomes"][0]["state"] == "forced"
    assert _run(TeamDelete(team_manager=manager), {"team_name": "t1"})["status"] == "success"


def test_team_delete_with_teardown(manager):
    _run(TeamCreate(team_manager=manager), {"team_name": "t1"})
    _run(MemberAdd(team_manager=manager), {"team_name": "t1", "name": "w1", "execution_mode": "embedded"})

    result = _run(TeamDelete(team_manager=manager), {"team_name": "t1", "teardown": True, "timeout_s": 5})

    assert result["status"] == "success"
    assert result["data"]["outcomes"][0]["state"] == "approved"
    assert manager.store.list_teams() == []


def test_team_status_for_missing_team(manager):
    result = _run(TeamStatus(team_manager=manager), {"team_name": "ghost"})

    assert result["error"]["code"] == "NOT_FOUND"


def test_every_command_describes_its_parameters(manager):
    for name, command in build_commands(manager).items():
        described = command.to_dict()
        assert described["name"] == name
        assert any(p["name"] == "team_name" and p["required"] for p in described["parameters"])
