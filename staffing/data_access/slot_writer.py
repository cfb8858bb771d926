"""Downstream write collaborator: slot updates and preview drafts stored as CSV."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Iterable, Protocol

import pandas as pd

from staffing.data_access.csv_tables import read_table
from staffing.data_access.week_loader import SLOT_FLAG_COLUMNS
from staffing.domain.models import DraftRow, SlotUpdate

logger = logging.getLogger(__name__)

UPDATE_COLUMNS = ("location_id", "session_id", "role_id", *SLOT_FLAG_COLUMNS)
DRAFT_COLUMNS = [
    "slot_id",
    "date",
    "period",
    "staff_id",
    "location_id",
    "session_id",
    "role_id",
    *SLOT_FLAG_COLUMNS,
]


class SlotStore(Protocol):
    """Downstream writes: idempotent slot updates and per-date draft replacement."""

    def apply_updates(self, updates: Iterable[SlotUpdate]) -> int: ...

    def replace_drafts(self, day: date, rows: Iterable[DraftRow]) -> int: ...


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class CsvSlotStore:
    """Per-row idempotent updates of ``slots.csv`` and a replace-by-date draft table."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.slots_path = self.directory / "slots.csv"
        self.drafts_path = self.directory / "slot_drafts.csv"

    def apply_updates(self, updates: Iterable[SlotUpdate]) -> int:
        """Write each update onto its slot row. Unknown slot ids are logged and skipped."""
        df = read_table(self.slots_path, ["id", "staff_id", "date", "period"], UPDATE_COLUMNS)
        positions = {slot_id.strip(): index for index, slot_id in zip(df.index, df["id"])}
        written = 0
        for update in updates:
            index = positions.get(update.slot_id)
            if index is None:
                logger.warning("Slot %s not found; update skipped", update.slot_id)
                continue
            for column in UPDATE_COLUMNS:
                df.at[index, column] = _cell(getattr(update, column))
            written += 1
        df.to_csv(self.slots_path, index=False)
        logger.info("Wrote %d slot update(s) to %s", written, self.slots_path)
        return written

    def replace_drafts(self, day: date, rows: Iterable[DraftRow]) -> int:
        """Clear every draft of ``day`` before inserting the new ones."""
        if self.drafts_path.exists():
            existing = read_table(self.drafts_path, DRAFT_COLUMNS)
            existing = existing[existing["date"].str[:10] != day.isoformat()]
        else:
            existing = pd.DataFrame(columns=DRAFT_COLUMNS)
        new_rows = pd.DataFrame(
            [{column: _cell(value) for column, value in asdict(row).items()} for row in rows],
            columns=DRAFT_COLUMNS,
        )
        combined = pd.concat([existing[DRAFT_COLUMNS], new_rows], ignore_index=True)
        combined.to_csv(self.drafts_path, index=False)
        logger.info("Staged %d draft row(s) for %s", len(new_rows), day)
        return len(new_rows)
