from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
from dateutil import parser as dateparser

from . import engine, health
from .critical_path import CyclicDependencyError, compute_critical_path, critical_path_frame
from .io_utils import ensure_directory, load_config, load_state, write_csv
from .models import EngineConfig, PortfolioState
from .portfolio import project_tasks

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Portfolio analytics batch tool (state JSON in, CSV reports out)."
    )
    parser.add_argument("--state", required=True, help="Path to the persisted state JSON document")
    parser.add_argument("--config", help="Path to engine configuration JSON (defaults apply when omitted)")
    parser.add_argument(
        "--outdir",
        default="out",
        help="Output directory for generated CSV files (default: ./out)",
    )
    parser.add_argument(
        "--today",
        help="Reference date (YYYY-MM-DD) for the FTE timeline and health status; defaults to today",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and print a summary without writing CSV files",
    )
    return parser.parse_args(argv)


def _resolve_inputs(args: argparse.Namespace) -> Tuple[Path, Optional[Path], date]:
    state_path = Path(args.state)
    if not state_path.is_file():
        raise ValueError(f"state file not found at {state_path}")
    config_path = Path(args.config) if args.config else None
    if config_path is not None and not config_path.is_file():
        raise ValueError(f"config file not found at {config_path}")
    if args.today:
        try:
            today = dateparser.isoparse(args.today).date()
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"--today must be an ISO date, got '{args.today}'") from exc
    else:
        today = date.today()
    return state_path, config_path, today


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def build_reports(state: PortfolioState, cfg: EngineConfig, today: date) -> Dict[str, pd.DataFrame]:
    """Run every engine over ``state``; raises CyclicDependencyError on a cyclic task graph."""
    schedule_frames = []
    health_rows = []
    for project in state.projects:
        result = compute_critical_path(project_tasks(state, project.id))
        if result.task_data:
            schedule_frames.append(critical_path_frame(result, project.id))
        categories = health.costs_by_category(
            project, costs=state.costs, members=state.members, bookings=state.resource_bookings, config=cfg
        )
        forecast_total = sum(item.forecast for item in categories.values())
        health_rows.append(
            {
                "project_id": project.id,
                "name": project.name,
                "status": project.status or "active",
                "light": health.project_health(
                    project,
                    costs=state.costs,
                    risks=state.risks,
                    members=state.members,
                    bookings=state.resource_bookings,
                    config=cfg,
                    today=today,
                ),
                "manual_override": project.manual_override,
                "budget_total": project.budget.total,
                "forecast_total": forecast_total,
                "budget_variance_pct": round(health.budget_variance(forecast_total, project.budget.total), 2),
                "fte": engine.project_fte(project.id, members=state.members, bookings=state.resource_bookings),
                "completion_days": result.project_completion_time,
                "critical_path": ";".join(result.critical_path),
            }
        )

    groups = engine.competency_group_utilization(
        members=state.members, bookings=state.resource_bookings, projects=state.projects, config=cfg
    )
    weeks = engine.fte_timeline(
        projects=state.projects,
        members=state.members,
        bookings=state.resource_bookings,
        today=today,
        config=cfg,
    )
    return {
        "critical_path": pd.concat(schedule_frames, ignore_index=True) if schedule_frames else pd.DataFrame(),
        "resource_utilization": engine.utilization_frame(
            members=state.members, bookings=state.resource_bookings, projects=state.projects
        ),
        "competency_groups": pd.DataFrame([item.to_dict() for item in groups]),
        "fte_timeline": engine.fte_timeline_frame(weeks),
        "project_health": pd.DataFrame(health_rows),
    }


def _print_dry_run_summary(state: PortfolioState, reports: Dict[str, pd.DataFrame]) -> None:
    health_df = reports["project_health"]
    if health_df.empty:
        print("No projects in state.")
    else:
        print("Projects:")
        for row in health_df.itertuples(index=False):
            light = row.light or "n/a"
            print(f"- {row.project_id} {row.name}: {light}, {row.fte:.2f} FTE, variance {row.budget_variance_pct:.1f}%")
    overbooked = reports["resource_utilization"]
    overbooked = overbooked[overbooked["is_overbooked"]] if not overbooked.empty else overbooked
    if overbooked.empty:
        print("\nOverbooked members: none")
    else:
        print("\nOverbooked members:")
        for row in overbooked.itertuples(index=False):
            print(f"- {row.name}: {row.total_utilization:.0f}% of {row.available_capacity:.0f}%")
    timeline = reports["fte_timeline"]
    overloaded_weeks = sorted(set(timeline.loc[timeline["is_overloaded"], "week_start"])) if not timeline.empty else []
    print(f"\nTotal available FTE: {engine.total_available_fte(state.members):.2f}")
    print(f"Overloaded weeks: {', '.join(overloaded_weeks) if overloaded_weeks else 'none'}")


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        state_path, config_path, today = _resolve_inputs(args)
        cfg = load_config(config_path)
        _configure_logging(cfg.logging_level)
        state = load_state(state_path, cfg)
        logger.info(
            "loaded %d projects and %d bookings from %s",
            len(state.projects),
            len(state.resource_bookings),
            state_path,
        )
    except (ValueError, OSError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    try:
        reports = build_reports(state, cfg, today)
    except CyclicDependencyError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        _print_dry_run_summary(state, reports)
        return

    outdir = ensure_directory(args.outdir)
    for name, frame in reports.items():
        path = outdir / f"{name}.csv"
        write_csv(frame, path)
        print(f"Wrote {path}")


if __name__ == "__main__":
    main()
