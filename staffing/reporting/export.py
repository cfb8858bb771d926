"""Excel export helpers for preview comparisons."""

from __future__ import annotations

import importlib.util
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import pandas as pd

from staffing.engine.preview import PreviewResult

EXCEL_ENGINES = ("xlsxwriter", "openpyxl")


def _excel_engine() -> str:
    for candidate in EXCEL_ENGINES:
        if importlib.util.find_spec(candidate):
            return candidate
    raise RuntimeError("No Excel writer installed; install XlsxWriter or openpyxl")


def _label(location_id: str, session_id: Optional[str], role_id: Optional[str], names: Mapping[str, str]) -> str:
    label = names.get(location_id, location_id)
    return f"{label} {session_id}/{role_id}" if session_id else label


def comparison_frame(preview: PreviewResult, location_names: Mapping[str, str]) -> pd.DataFrame:
    """One row per need: required, before/after assignment and status."""
    after = {(row.period, row.location_id, row.session_id, row.role_id): row for row in preview.after}
    rows: List[list] = []
    for row in preview.before:
        other = after.get((row.period, row.location_id, row.session_id, row.role_id), row)
        rows.append(
            [
                row.period,
                _label(row.location_id, row.session_id, row.role_id, location_names),
                row.kind,
                row.required,
                row.assigned,
                row.status,
                ", ".join(row.staff),
                other.assigned,
                other.status,
                ", ".join(other.staff),
            ]
        )
    columns = [
        "Period", "Need", "Type", "Required",
        "Assigned Before", "Status Before", "Staff Before",
        "Assigned After", "Status After", "Staff After",
    ]
    return pd.DataFrame(rows, columns=columns)


def changes_frame(previews: Sequence[PreviewResult], location_names: Mapping[str, str]) -> pd.DataFrame:
    rows = [
        [
            preview.date.isoformat(),
            change.period,
            _label(change.location_id, change.session_id, change.role_id, location_names),
            ", ".join(change.added),
            ", ".join(change.removed),
            ", ".join(change.unchanged),
            change.status_before,
            change.status_after,
        ]
        for preview in previews
        for change in preview.changes
    ]
    columns = ["Date", "Period", "Need", "Added", "Removed", "Unchanged", "Status Before", "Status After"]
    return pd.DataFrame(rows, columns=columns)


def summary_frame(previews: Sequence[PreviewResult]) -> pd.DataFrame:
    rows = []
    for preview in previews:
        summary = preview.summary
        rows.append(
            [
                preview.date.isoformat(),
                "yes" if preview.feasible else "no",
                preview.objective,
                summary.unmet_before if summary else None,
                summary.unmet_after if summary else None,
                summary.net_change if summary else None,
                len(preview.drafts),
            ]
        )
    columns = ["Date", "Feasible", "Objective", "Unmet Before", "Unmet After", "Net Change", "Draft Rows"]
    return pd.DataFrame(rows, columns=columns)


def export_previews_to_excel(
    previews: Sequence[PreviewResult],
    output_path: Path,
    location_names: Optional[Mapping[str, str]] = None,
) -> None:
    """Write a summary sheet, a changes sheet and one comparison sheet per date."""
    names = location_names or {}
    engine = _excel_engine()
    with pd.ExcelWriter(output_path, engine=engine) as writer:
        sheets = [("Summary", summary_frame(previews)), ("Changes", changes_frame(previews, names))]
        sheets += [(preview.date.isoformat(), comparison_frame(preview, names)) for preview in previews]
        for sheet_name, frame in sheets:
            frame.to_excel(writer, sheet_name=sheet_name, index=False)
            _autosize_columns(writer, engine, sheet_name, frame)


def _autosize_columns(writer: pd.ExcelWriter, engine: str, sheet_name: str, dataframe: pd.DataFrame):
    worksheet = writer.sheets[sheet_name]
    for idx, column in enumerate(dataframe.columns):
        max_len = max([len(str(column))] + [len(str(cell)) for cell in dataframe[column]])
        if engine == "xlsxwriter":
            worksheet.set_column(idx, idx, max_len + 2)
        else:
            from openpyxl.utils import get_column_letter

            worksheet.column_dimensions[get_column_letter(idx + 1)].width = max_len + 2
