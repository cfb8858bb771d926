"""Console output helpers for optimization runs and previews."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from staffing.engine.pipeline import OptimizationReport
from staffing.engine.preview import NeedStatus, PreviewResult
from staffing.reporting.stats import preview_totals, status_counts

WIDTH = 100


def _need_label(row, location_names: Mapping[str, str]) -> str:
    label = location_names.get(row.location_id, row.location_id) if row.location_id else "surgical"
    if row.session_id:
        label = f"{label} {row.session_id}/{row.role_id}"
    return label


def print_optimization_report(report: OptimizationReport) -> None:
    print("\n" + "=" * WIDTH)
    print(f"OPTIMIZATION REPORT ({report.mode})")
    print("=" * WIDTH)
    print(f"\n{'Date':<14}{'Status':<16}{'Objective':>14}{'Written':>10}{'Needs':>8}  Message")
    print("─" * WIDTH)
    for item in report.dates:
        objective = f"{item.objective:,.0f}" if item.objective is not None else "-"
        marker = "✓" if item.success else "✗"
        print(
            f"{item.date.isoformat():<14}{marker + ' ' + item.status:<16}{objective:>14}"
            f"{item.assignments_written:>10}{item.needs_count:>8}  {item.message}"
        )
    print(f"\n{len(report.succeeded)} date(s) optimized, {len(report.failed)} failed.")


def _print_table(title: str, rows: Iterable[NeedStatus], location_names: Mapping[str, str]) -> None:
    print(f"\n{title}")
    print(f"{'Period':<11}{'Need':<40}{'Req':>5}{'Asg':>5}  {'Status':<13}Staff")
    print("─" * WIDTH)
    for row in rows:
        staff = ", ".join(row.staff) or "-"
        print(
            f"{row.period:<11}{_need_label(row, location_names):<40}{row.required:>5}{row.assigned:>5}"
            f"  {row.status:<13}{staff}"
        )


def print_preview(preview: PreviewResult, location_names: Optional[Mapping[str, str]] = None) -> None:
    names = location_names or {}
    print("\n" + "=" * WIDTH)
    print(f"PREVIEW {preview.date.isoformat()}")
    print("=" * WIDTH)

    if not preview.feasible:
        print("No feasible assignment found; the current schedule is unchanged.")
        print("\nPossible reasons:")
        print("  - A closing site has fewer than two staff able to cover the full day")
        print("  - Capacity limits leave some staff without any admissible day plan")
        _print_table("CURRENT", preview.before, names)
        return

    _print_table("BEFORE", preview.before, names)
    _print_table("AFTER", preview.after, names)

    print("\nCHANGES")
    print("─" * WIDTH)
    if not preview.changes:
        print("No changes proposed.")
    for change in preview.changes:
        print(f"{change.period:<11}{_need_label(change, names)}: {change.status_before} -> {change.status_after}")
        if change.added:
            print(f"    + {', '.join(change.added)}")
        if change.removed:
            print(f"    - {', '.join(change.removed)}")

    counts = status_counts(preview.after)
    summary = preview.summary
    print(
        f"\nUnmet needs: {summary.unmet_before} -> {summary.unmet_after} (net {summary.net_change:+d}); "
        f"satisfied {counts['satisfied']}, partial {counts['partial']}, unsatisfied {counts['unsatisfied']}"
    )
    print(f"Draft rows staged: {len(preview.drafts)}")


def print_preview_summary(previews: Iterable[PreviewResult]) -> None:
    totals = preview_totals(previews)
    print(f"\n{'=' * WIDTH}")
    print(
        f"{totals['feasible_days']}/{totals['days']} day(s) feasible, "
        f"{totals['changed_needs']} need(s) changed, {totals['draft_rows']} draft row(s), "
        f"unmet {totals['unmet_before']} -> {totals['unmet_after']}"
    )
