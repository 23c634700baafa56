# =============================================================================
# planner_core/models/lesson_plan.py
# LessonPlan - a user-authored draft or finalized lesson
# =============================================================================
"""
LessonPlan model.

Features:
- Owns deep copies of activities, so library edits never reach a planned lesson
- Duration recomputed on every add/remove
- Optional lesson number; a numbered plan is projected into a LessonRecord
- Conversion to the `lesson_plans` table rows
"""

from __future__ import annotations
import copy
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from planner_core.errors import ValidationError
from planner_core.models.activity import Activity, normalize_lesson_number
from planner_core.models.unit import _parse_timestamp


class PlanStatus(Enum):
    """Lesson plan lifecycle states."""
    DRAFT = "draft"
    PLANNED = "planned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class LessonPlan:
    """A draft or finalized lesson for a class."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    date: Optional[date] = None
    week: int = 0
    class_name: str = ""
    activities: List[Activity] = field(default_factory=list)
    duration: int = 0
    notes: str = ""
    status: PlanStatus = PlanStatus.DRAFT
    unit_id: Optional[str] = None
    unit_name: Optional[str] = None
    lesson_number: str = ""
    title: str = ""
    term: Optional[str] = None
    time: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if isinstance(self.status, str):
            try:
                self.status = PlanStatus(self.status)
            except ValueError:
                raise ValidationError(
                    f"Unknown lesson plan status: {self.status}",
                    field="status",
                    value=self.status,
                )
        if isinstance(self.date, str):
            self.date = date.fromisoformat(self.date[:10]) if self.date else None
        self.lesson_number = normalize_lesson_number(self.lesson_number)
        self.activities = [copy.deepcopy(a) for a in self.activities]
        self.recompute_duration()

    @property
    def is_numbered(self) -> bool:
        return bool(self.lesson_number)

    def recompute_duration(self) -> int:
        self.duration = sum(a.duration for a in self.activities)
        return self.duration

    def add_activity(self, activity: Activity) -> Activity:
        """Append a deep copy of the activity."""
        placed = activity.copy()
        self.activities.append(placed)
        self.recompute_duration()
        self.updated_at = datetime.now()
        return placed

    def remove_activity(self, identifier: str) -> bool:
        for i, activity in enumerate(self.activities):
            if activity.matches(identifier):
                del self.activities[i]
                self.recompute_duration()
                self.updated_at = datetime.now()
                return True
        return False

    def copy(self) -> LessonPlan:
        return copy.deepcopy(self)

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "week": self.week,
            "class_name": self.class_name,
            "activities": [a.to_dict() for a in self.activities],
            "duration": self.duration,
            "notes": self.notes,
            "status": self.status.value,
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
            "lesson_number": self.lesson_number,
            "title": self.title,
            "term": self.term,
            "time": self.time,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LessonPlan:
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            date=data.get("date"),
            week=int(data.get("week") or 0),
            class_name=data.get("class_name") or "",
            activities=[Activity.from_dict(a) for a in data.get("activities") or []],
            notes=data.get("notes") or "",
            status=data.get("status") or PlanStatus.DRAFT.value,
            unit_id=data.get("unit_id"),
            unit_name=data.get("unit_name"),
            lesson_number=data.get("lesson_number") or "",
            title=data.get("title") or "",
            term=data.get("term"),
            time=data.get("time"),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )

    # Timestamps are managed by the table
    def to_row(self) -> Dict[str, Any]:
        row = self.to_dict()
        row.pop("created_at")
        row.pop("updated_at")
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> LessonPlan:
        return cls.from_dict(row)
