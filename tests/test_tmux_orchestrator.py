import pytest

from teamwire.team_engine.tmux_orchestrator import TmuxError, TmuxOrchestrator


class DummyRunner:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, argv):
        self.calls.append(list(argv))
        if self.responses:
            return self.responses.pop(0)
        return 0, ""


def test_ensure_session_creates_when_missing():
    runner = DummyRunner(
        responses=[
            (1, ""),  # has-session fail
            (0, ""),  # new-session ok
        ]
    )
    orch = TmuxOrchestrator(command_runner=runner)

    assert orch.ensure_session("demo") is True
    assert runner.calls[0][:3] == ["tmux", "has-session", "-t"]
    assert runner.calls[1][:3] == ["tmux", "new-session", "-d"]


def test_ensure_session_keeps_existing():
    runner = DummyRunner(responses=[(0, "")])
    orch = TmuxOrchestrator(command_runner=runner)

    assert orch.ensure_session("demo") is False
    assert len(runner.calls) == 1


def test_spawn_pane_passes_env_command_and_title():
    runner = DummyRunner(responses=[(0, "%12\n")])
    orch = TmuxOrchestrator(command_runner=runner)

    pane_id = orch.spawn_pane(
        "teamwire_demo",
        ["python", "-m", "teamwire", "worker", "--member", "dev 1"],
        env={"TEAMWIRE_MEMBER": "dev1", "TEAMWIRE_TEAM": "demo"},
        title="dev1",
    )

    assert pane_id == "%12"
    split = runner.calls[0]
    assert split[:3] == ["tmux", "split-window", "-d"]
    assert "TEAMWIRE_MEMBER=dev1" in split
    assert "TEAMWIRE_TEAM=demo" in split
    assert split[-1] == "python -m teamwire worker --member 'dev 1'"
    assert runner.calls[1][:2] == ["tmux", "select-layout"]
    assert runner.calls[2] == ["tmux", "select-pane", "-t", "%12", "-T", "teamwire:dev1"]


def test_spawn_pane_failure_raises():
    orch = TmuxOrchestrator(command_runner=DummyRunner(responses=[(1, "no space for new pane")]))

    with pytest.raises(TmuxError):
        orch.spawn_pane("demo", ["true"])


def test_spawn_pane_rejects_garbage_pane_id():
    orch = TmuxOrchestrator(command_runner=DummyRunner(responses=[(0, "weird\n")]))

    with pytest.raises(TmuxError):
        orch.spawn_pane("demo", ["true"])


def test_list_panes_skips_dead_panes():
    runner = DummyRunner(
        responses=[
            (0, "%1\tteamwire_demo\t0\tteamwire:dev1\n%2\tteamwire_demo\t1\tteamwire:dev2\n%3\tmain\t0\tzsh\n"),
        ]
    )
    orch = TmuxOrchestrator(command_runner=runner)

    panes = orch.list_panes()

    assert panes == {
        "%1": {"session": "teamwire_demo", "title": "teamwire:dev1"},
        "%3": {"session": "main", "title": "zsh"},
    }


def test_list_panes_without_server_is_empty():
    orch = TmuxOrchestrator(command_runner=DummyRunner(responses=[(1, "no server running")]))

    assert orch.list_panes() == {}
    assert orch.pane_exists("%1") is False


def test_kill_pane_reports_missing_pane():
    orch = TmuxOrchestrator(command_runner=DummyRunner(responses=[(1, "can't find pane")]))

    assert orch.kill_pane("%9") is False


def test_cleanup_session_ignores_missing_session():
    runner = DummyRunner(responses=[(1, "")])
    orch = TmuxOrchestrator(command_runner=runner)

    orch.cleanup_session("demo")

    assert runner.calls[0][:3] == ["tmux", "kill-session", "-t"]


def test_session_name_is_prefixed_and_sanitized():
    assert TmuxOrchestrator.session_name("my team") == "teamwire_my-team"


def test_is_installed_runs_version_command():
    ok = TmuxOrchestrator(command_runner=DummyRunner(responses=[(0, "tmux 3.4")]))
    missing = TmuxOrchestrator(command_runner=DummyRunner(responses=[(127, "not found")]))

    assert ok.is_installed() is True
    assert missing.is_installed() is False
