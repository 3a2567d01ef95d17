#!/usr/bin/env python3
"""Generate the agent and department dashboard bundle."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "config.yaml"
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from desk_insights.workflow import DashboardOptions, generate_dashboard


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate HTML/PDF/image/CSV dashboards for helpdesk agents and departments."
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to configuration YAML file. Defaults to "
            f"{DEFAULT_CONFIG_PATH} or config/config.yaml if present."
        ),
    )
    parser.add_argument(
        "--output-directory",
        help="Directory where the dashboard bundle should be written. Overrides configuration defaults.",
    )
    parser.add_argument("--department", help="Limit the dashboard to one department (id or name).")
    parser.add_argument(
        "--agent",
        action="append",
        help="Limit tables to an agent display name. Can be supplied multiple times.",
    )
    parser.add_argument(
        "--status",
        action="append",
        help="Limit pending and metrics tables to a status (open, hold, in progress, escalated).",
    )
    parser.add_argument("--start-date", help="Optional start date (YYYY-MM-DD, start of day UTC).")
    parser.add_argument("--end-date", help="Optional end date (YYYY-MM-DD, end of day UTC).")
    parser.add_argument(
        "--search",
        help="Numeric values match a ticket number exactly; other text matches agent name prefixes.",
    )
    parser.add_argument("--page", type=int, default=1, help="Page of each paginated table to render.")
    parser.add_argument(
        "--sort-by",
        choices=["resolved", "created", "pending"],
        help="Order the agent performance table as a leaderboard instead of by name.",
    )
    parser.add_argument(
        "--format",
        action="append",
        choices=["html", "pdf", "images", "json", "csv"],
        help="Output formats to generate (default: all).",
    )
    parser.add_argument(
        "--show-console-log",
        action="store_true",
        help="Show detailed log output instead of the default progress display.",
    )
    parser.add_argument(
        "--simple-console",
        action="store_true",
        help="Use a simple console log format instead of Rich formatting.",
    )
    parser.add_argument(
        "--console-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the console logging level.",
    )
    return parser


def main(argv: Iterable[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    options = DashboardOptions(
        config_path=args.config,
        output_directory=args.output_directory,
        department=args.department,
        agents=args.agent,
        statuses=args.status,
        start_date=args.start_date,
        end_date=args.end_date,
        search=args.search,
        formats=args.format,
        page=args.page,
        sort_by=args.sort_by,
        disable_console=not args.show_console_log,
        simple_console=args.simple_console,
        console_level=args.console_level,
        show_console_log=args.show_console_log,
    )
    report_dir = generate_dashboard(options, base_dir=BASE_DIR)
    print(f"Dashboard bundle available at {report_dir}")


if __name__ == "__main__":
    main()
