"""Shared helpers for summarizing optimization and preview results."""

from __future__ import annotations

from typing import Dict, Iterable

from staffing.engine.preview import PARTIAL, SATISFIED, UNSATISFIED, NeedStatus, PreviewResult


def status_counts(rows: Iterable[NeedStatus]) -> Dict[str, int]:
    """Number of needs per satisfaction status."""
    counts = {SATISFIED: 0, PARTIAL: 0, UNSATISFIED: 0}
    for row in rows:
        counts[row.status] += 1
    return counts


def preview_totals(previews: Iterable[PreviewResult]) -> Dict[str, int]:
    """Aggregate counters over several preview days."""
    totals = {
        "days": 0,
        "feasible_days": 0,
        "changed_needs": 0,
        "draft_rows": 0,
        "unmet_before": 0,
        "unmet_after": 0,
    }
    for preview in previews:
        totals["days"] += 1
        totals["feasible_days"] += int(preview.feasible)
        totals["changed_needs"] += len(preview.changes)
        totals["draft_rows"] += len(preview.drafts)
        if preview.summary is not None:
            totals["unmet_before"] += preview.summary.unmet_before
            totals["unmet_after"] += preview.summary.unmet_after
    return totals
