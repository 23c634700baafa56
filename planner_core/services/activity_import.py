# =============================================================================
# planner_core/services/activity_import.py
# Bulk activity import from spreadsheet rows
# =============================================================================
"""
ActivityImporter - turns validated spreadsheet rows into Activities.

Row layout:
    lessonNumber, category, activityName, description, level, minutes,
    video, music, backing, resource, unitName

Normalisation:
- rows with fewer than 3 cells, or without category/activity name, are skipped
- a blank lesson number inherits the last one seen (default "1")
- rows whose lesson number is not a positive integer are skipped
- minutes keep their leading integer; negative or unreadable values become 0
- double quotes are stripped from descriptions
- duplicates by (name, category, lesson number): the last row wins
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from planner_core.errors import ValidationError
from planner_core.models.activity import Activity, normalize_lesson_number

logger = logging.getLogger(__name__)


IMPORT_COLUMNS = [
    "lesson_number",
    "category",
    "activity",
    "description",
    "level",
    "time",
    "video",
    "music",
    "backing",
    "resource",
    "unit_name",
]

# Import column -> Activity resource kind
RESOURCE_FIELDS = {
    "video": "video",
    "music": "music",
    "backing": "backing",
    "resource": "worksheet",
}


@dataclass
class ImportSummary:
    """What an import read, kept and skipped."""
    rows_read: int = 0
    skipped_short: int = 0
    skipped_incomplete: int = 0
    skipped_invalid_number: int = 0
    duplicates_replaced: int = 0
    activities: int = 0
    lesson_numbers: List[str] = field(default_factory=list)
    renumbered: Dict[str, str] = field(default_factory=dict)

    @property
    def rows_skipped(self) -> int:
        return self.skipped_short + self.skipped_incomplete + self.skipped_invalid_number

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["rows_skipped"] = self.rows_skipped
        return data


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Spreadsheet readers hand integers back as floats
        return str(int(value))
    return str(value).strip()


def _lesson_number_or_none(value: str) -> Optional[str]:
    try:
        return normalize_lesson_number(value) or None
    except ValidationError:
        return None


class ActivityImporter:
    """Parse spreadsheet rows into de-duplicated Activities."""

    def __init__(self, skip_header: bool = False):
        """
        Args:
            skip_header: Drop the first row (column titles)
        """
        self.skip_header = skip_header

    def to_frame(self, rows: Iterable[Sequence[Any]]) -> pd.DataFrame:
        """Rows as a DataFrame of trimmed text, padded to the import columns."""
        width = len(IMPORT_COLUMNS)
        padded = [(list(r) + [None] * width)[:width] for r in rows]
        df = pd.DataFrame(padded, columns=IMPORT_COLUMNS, dtype=object)
        df = df.replace({np.nan: None})
        return df.apply(lambda column: column.map(_cell_text))

    def parse(self, rows: Iterable[Sequence[Any]]) -> Tuple[List[Activity], ImportSummary]:
        """
        Parse rows into activities.

        Returns:
            (activities, summary)
        """
        raw = [list(r) if r is not None else [] for r in rows]
        if self.skip_header and raw:
            raw = raw[1:]

        summary = ImportSummary(rows_read=len(raw))
        usable = [r for r in raw if len(r) >= 3]
        summary.skipped_short = len(raw) - len(usable)
        if not usable:
            return [], summary

        df = self.to_frame(usable)

        complete = (df["category"] != "") & (df["activity"] != "")
        summary.skipped_incomplete = int((~complete).sum())
        df = df[complete].copy()

        # Blank lesson numbers inherit the previous row's
        df["lesson_number"] = (
            df["lesson_number"].replace("", np.nan).ffill().fillna("1").map(_lesson_number_or_none)
        )
        invalid = df["lesson_number"].isna()
        if invalid.any():
            summary.skipped_invalid_number = int(invalid.sum())
            logger.warning(f"Skipping {summary.skipped_invalid_number} rows with invalid lesson numbers")
        df = df[~invalid].copy()
        if df.empty:
            return [], summary

        minutes = pd.to_numeric(df["time"].str.extract(r"^\s*(-?\d+)", expand=False), errors="coerce")
        df["time"] = minutes.where(minutes >= 0).fillna(0).astype(int)
        df["description"] = df["description"].str.replace('"', "", regex=False)

        activities: Dict[tuple, Activity] = {}
        for row in df.itertuples(index=False):
            activity = Activity(
                name=row.activity,
                category=row.category,
                description=row.description,
                duration=int(row.time),
                resources={kind: getattr(row, column) for column, kind in RESOURCE_FIELDS.items()},
                level=row.level,
                year_groups=[row.level] if row.level else [],
                unit_name=row.unit_name,
                lesson_number=row.lesson_number,
            )
            if activity.import_key in activities:
                summary.duplicates_replaced += 1
                # Re-insert so the surviving row keeps its latest position
                del activities[activity.import_key]
            activities[activity.import_key] = activity

        parsed = list(activities.values())
        summary.activities = len(parsed)
        summary.lesson_numbers = sorted({a.lesson_number for a in parsed}, key=int)
        logger.info(
            f"Parsed {summary.activities} activities across "
            f"{len(summary.lesson_numbers)} lessons ({summary.rows_skipped} rows skipped)"
        )
        return parsed, summary
