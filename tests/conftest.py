"""Shared fixtures: a manager over ``tmp_path`` with tmux faked out."""

import pytest

from teamwire.config import Config
from teamwire.team_engine.manager import TeamManager
from teamwire.team_engine.tmux_orchestrator import TmuxOrchestrator
from tests.utils.fakes import FakeTmux


def make_config(tmp_path, **overrides) -> Config:
    values = {
        "root_dir": str(tmp_path),
        "spawn_grace_s": 0.0,
        "poll_interval_s": 0.01,
        "member_shutdown_timeout_s": 2.0,
        "team_shutdown_timeout_s": 2.0,
    }
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def fake_tmux():
    return FakeTmux()


@pytest.fixture
def make_manager(tmp_path, fake_tmux):
    """Factory so a test can build several managers over one project root."""
    created = []

    def factory(tmux=None, **overrides) -> TeamManager:
        manager = TeamManager(
            project_root=str(tmp_path),
            config=make_config(tmp_path, **overrides),
            orchestrator=TmuxOrchestrator(command_runner=tmux or fake_tmux),
            leader_process_id="leader-1",
            leader_session="",
        )
        created.append(manager)
        return manager

    yield factory
    for manager in created:
        for (team, member) in list(manager.supervisor._workers):
            manager.supervisor.terminate(team, member)


@pytest.fixture
def manager(make_manager):
    return make_manager()
