#!/usr/bin/env python3
"""Print an agent leaderboard table in the console."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Sequence

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "config.yaml"
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from desk_insights.config import ConfigError
from desk_insights.desk_client import DeskAPIError
from desk_insights.performance import AgentRollup
from desk_insights.workflow import LeaderboardOptions, agent_leaderboard

LOGGER = logging.getLogger(__name__)

COLUMNS = (
    ("Agent", "agent_name"),
    ("Department", "department_name"),
    ("Created", "tickets_created"),
    ("Resolved", "tickets_resolved"),
    ("Pending", "pending_count"),
    ("Avg FR", "avg_first_response_text"),
    ("Avg Res", "avg_resolution_text"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rank helpdesk agents by resolved, created or pending tickets.")
    parser.add_argument(
        "--config",
        help=(
            "Path to configuration YAML file. Defaults to "
            f"{DEFAULT_CONFIG_PATH} or config/config.yaml if present."
        ),
    )
    parser.add_argument("--department", help="Limit the leaderboard to one department (id or name).")
    parser.add_argument("--start-date", help="Optional start date (YYYY-MM-DD).")
    parser.add_argument("--end-date", help="Optional end date (YYYY-MM-DD).")
    parser.add_argument("--top", type=int, default=10, help="Number of agents to show (default: 10).")
    parser.add_argument(
        "--sort-by",
        choices=["resolved", "created", "pending"],
        default="resolved",
        help="Metric used to rank agents (default: resolved).",
    )
    parser.add_argument("--show-console-log", action="store_true", help="Show detailed log output.")
    return parser


def render_table(rollups: Sequence[AgentRollup]) -> List[str]:
    """Format rollups into a fixed-width text table."""

    cells = [[str(getattr(rollup, attr)) for _, attr in COLUMNS] for rollup in rollups]
    widths = [
        max([len(label)] + [len(row[index]) for row in cells]) for index, (label, _) in enumerate(COLUMNS)
    ]
    header = "  ".join(label.ljust(width) for (label, _), width in zip(COLUMNS, widths))
    separator = "  ".join("-" * width for width in widths)
    lines = [header, separator]
    for row in cells:
        lines.append("  ".join(value.ljust(width) for value, width in zip(row, widths)))
    if not cells:
        lines.append("No agent activity recorded.")
    return lines


def main(argv: Iterable[str] | None = None) -> List[str]:
    args = build_parser().parse_args(argv)
    options = LeaderboardOptions(
        config_path=args.config,
        department=args.department,
        start_date=args.start_date,
        end_date=args.end_date,
        top=args.top,
        sort_by=args.sort_by,
        disable_console=not args.show_console_log,
        show_console_log=args.show_console_log,
    )
    try:
        rollups = agent_leaderboard(options, base_dir=BASE_DIR)
    except (ConfigError, DeskAPIError, ValueError) as exc:
        LOGGER.exception("Failed to build the agent leaderboard: %s", exc)
        raise SystemExit(1) from exc

    lines = render_table(rollups)
    for line in lines:
        print(line)
    return lines


if __name__ == "__main__":
    main()
