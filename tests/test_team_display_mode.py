from unittest.mock import patch

import pytest

from teamwire.team_engine.display_mode import resolve_execution_mode
from teamwire.team_engine.errors import INVALID_PARAM, TeamEngineError
from teamwire.team_engine.protocol import ExecutionMode


def test_embedded_aliases():
    for raw in ("embedded", "in-process", "IN-PROCESS"):
        mode, note = resolve_execution_mode(raw)
        assert mode == ExecutionMode.EMBEDDED
        assert note is None


def test_explicit_isolated_is_never_downgraded():
    with patch("teamwire.team_engine.display_mode.shutil.which", return_value=None):
        mode, note = resolve_execution_mode("tmux")
    assert mode == ExecutionMode.ISOLATED
    assert note is None


def test_auto_mode_prefers_isolated_inside_tmux_session():
    with patch.dict("os.environ", {"TMUX": "/tmp/fake"}, clear=True):
        with patch("teamwire.team_engine.display_mode.shutil.which", return_value="/usr/bin/tmux"):
            mode, note = resolve_execution_mode("auto")
    assert mode == ExecutionMode.ISOLATED
    assert note is None


def test_auto_mode_runs_embedded_outside_tmux():
    with patch.dict("os.environ", {}, clear=True):
        with patch("teamwire.team_engine.display_mode.shutil.which", return_value="/usr/bin/tmux"):
            mode, note = resolve_execution_mode(None)
    assert mode == ExecutionMode.EMBEDDED
    assert "tmux" in note


def test_invalid_mode_is_rejected():
    with pytest.raises(TeamEngineError) as exc:
        resolve_execution_mode("bad-mode")
    assert exc.value.code == INVALID_PARAM
