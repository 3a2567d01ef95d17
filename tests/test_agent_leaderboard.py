"""Tests for the agent_leaderboard CLI helper."""

from __future__ import annotations

from importlib import util
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
MODULE_PATH = PROJECT_ROOT / "tools" / "agent_leaderboard.py"

spec = util.spec_from_file_location("agent_leaderboard", MODULE_PATH)
assert spec and spec.loader
agent_leaderboard = util.module_from_spec(spec)
sys.modules[spec.name] = agent_leaderboard
spec.loader.exec_module(agent_leaderboard)

from desk_insights.config import ConfigError
from desk_insights.performance import AgentRollup


def _rollup(name: str, resolved: int, pending: int) -> AgentRollup:
    return AgentRollup(
        agent_name=name,
        tickets_created=resolved + pending,
        tickets_resolved=resolved,
        pending_count=pending,
        open_count=pending,
        hold_count=0,
        in_progress_count=0,
        escalated_count=0,
        single_touch_count=0,
        avg_first_response_minutes=75,
        avg_resolution_hours=None,
        avg_sla_resolution_minutes=None,
        avg_threads=None,
        departments=("Service Desk",),
    )


def test_render_table_aligns_columns() -> None:
    lines = agent_leaderboard.render_table([_rollup("Alice", 12, 3), _rollup("Bob", 4, 0)])

    assert lines[0].startswith("Agent")
    assert set(lines[1].replace(" ", "")) == {"-"}
    assert lines[2].split() == ["Alice", "Service", "Desk", "15", "12", "3", "1:15", "-"]
    assert len({len(line.rstrip()) for line in lines[:2]}) == 1


def test_render_table_without_rows() -> None:
    assert agent_leaderboard.render_table([])[-1] == "No agent activity recorded."


def test_main_passes_options_and_prints(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    captured = {}

    def fake_leaderboard(options, *, base_dir):
        captured["options"] = options
        return [_rollup("Alice", 5, 1)]

    monkeypatch.setattr(agent_leaderboard, "agent_leaderboard", fake_leaderboard)

    lines = agent_leaderboard.main(["--sort-by", "pending", "--top", "3", "--department", "Network"])

    options = captured["options"]
    assert options.sort_by == "pending"
    assert options.top == 3
    assert options.department == "Network"
    assert options.disable_console is True
    assert "Alice" in capsys.readouterr().out
    assert len(lines) == 3


def test_main_exits_on_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing(options, *, base_dir):
        raise ConfigError("missing config")

    monkeypatch.setattr(agent_leaderboard, "agent_leaderboard", failing)

    with pytest.raises(SystemExit) as excinfo:
        agent_leaderboard.main([])
    assert excinfo.value.code == 1
