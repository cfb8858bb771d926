"""Command-line interface for the staffing optimizer."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

from staffing.config import DEFAULT_SOLVER_MAX_TIME
from staffing.data_access.slot_writer import CsvSlotStore
from staffing.data_access.week_loader import CsvDataSource
from staffing.engine.pipeline import optimize_dates, preview_dates
from staffing.reporting.console import print_optimization_report, print_preview, print_preview_summary
from staffing.reporting.export import export_previews_to_excel


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Assign staff to morning/afternoon slots for the given dates."
    )
    parser.add_argument(
        "data_dir",
        type=Path,
        help="Directory holding the CSV tables (staff, locations, demand, slots, ...).",
    )
    parser.add_argument(
        "dates",
        nargs="+",
        metavar="DATE",
        help="Target dates in ISO format (YYYY-MM-DD). Dates are grouped into Monday-Sunday weeks.",
    )
    parser.add_argument(
        "--weekly",
        action="store_true",
        help="Solve each week as one global model instead of day by day.",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Dry run: compare with the current schedule and stage drafts instead of writing slots.",
    )
    parser.add_argument(
        "--max-solve-seconds",
        type=int,
        default=None,
        help="Optional override for the solver time limit in seconds.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of weeks to optimize in parallel (default: 1).",
    )
    parser.add_argument(
        "--export",
        type=Path,
        default=None,
        metavar="PATH",
        help="With --preview, also write the comparison to an Excel workbook.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging.",
    )
    return parser


def _parse_dates(raw_dates: list[str]) -> list[date]:
    parsed: list[date] = []
    for raw in raw_dates:
        try:
            parsed.append(date.fromisoformat(raw.strip()))
        except ValueError:
            raise ValueError(f"Invalid date '{raw}'. Expected format: YYYY-MM-DD") from None
    return parsed


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        time_limit = args.max_solve_seconds if args.max_solve_seconds is not None else DEFAULT_SOLVER_MAX_TIME
        dates = _parse_dates(args.dates)
        if args.export is not None and not args.preview:
            raise ValueError("--export is only available together with --preview")
        source = CsvDataSource(args.data_dir)
        store = CsvSlotStore(args.data_dir)

        if args.preview:
            previews = preview_dates(source, store, dates, weekly=args.weekly, time_limit=time_limit)
            location_names = {loc_id: loc.name for loc_id, loc in source.load_locations().items()}
            for preview in previews:
                print_preview(preview, location_names)
            print_preview_summary(previews)
            if args.export is not None:
                output_path = args.export
                if not str(output_path).lower().endswith(".xlsx"):
                    output_path = output_path.with_name(output_path.name + ".xlsx")
                export_previews_to_excel(previews, output_path, location_names)
                print(f"\nComparison exported to {output_path}")
            return

        report = optimize_dates(
            source, store, dates, weekly=args.weekly, time_limit=time_limit, max_workers=args.workers
        )
        print_optimization_report(report)
        if report.failed:
            sys.exit(2)
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
