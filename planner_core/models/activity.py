# =============================================================================
# planner_core/models/activity.py
# Activity - the atomic teaching item
# =============================================================================
"""
Activity model shared by the library, lesson records and lesson plans.

Features:
- Stable identifier (remote id wins over the locally generated id)
- Identity by (name, category) and import key by (name, category, lesson number)
- Resource links by kind
- Conversion to the cache JSON form and to `activities` table rows
"""

from __future__ import annotations
import copy
import uuid
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

from planner_core.errors import ValidationError


# Resource kind -> remote column
RESOURCE_COLUMNS = {
    "video": "video_link",
    "music": "music_link",
    "backing": "backing_link",
    "worksheet": "resource_link",
    "link": "link",
    "vocals": "vocals_link",
    "image": "image_link",
}
RESOURCE_KINDS = tuple(RESOURCE_COLUMNS)


def coerce_minutes(value: Any) -> int:
    """Lenient minutes parser: anything unusable or negative becomes 0."""
    try:
        minutes = int(float(value))
    except (TypeError, ValueError):
        return 0
    return minutes if minutes >= 0 else 0


def normalize_lesson_number(value: Any) -> str:
    """
    Normalize a lesson number to its string form.

    Blank values stay blank. Anything else must be a positive integer.
    """
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    if text.endswith(".0"):
        text = text[:-2]
    if not text.isdigit() or int(text) < 1:
        raise ValidationError(
            f"Lesson number must be a positive integer, got {value!r}",
            field="lesson_number",
            value=value,
        )
    return str(int(text))


@dataclass
class Activity:
    """An atomic teaching item."""
    name: str
    category: str
    description: str = ""
    duration: int = 0
    resources: Dict[str, str] = field(default_factory=dict)
    level: str = ""
    unit_name: str = ""
    lesson_number: str = ""
    standards: List[str] = field(default_factory=list)
    year_groups: List[str] = field(default_factory=list)
    remote_id: Optional[str] = None
    local_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        self.name = (self.name or "").strip()
        self.category = (self.category or "").strip()
        if not self.name:
            raise ValidationError("Activity name is required", field="name")
        if not self.category:
            raise ValidationError("Activity category is required", field="category")

        if isinstance(self.duration, bool):
            raise ValidationError("Duration must be a whole number of minutes", field="duration")
        try:
            duration = int(self.duration)
        except (TypeError, ValueError):
            raise ValidationError(
                "Duration must be a whole number of minutes",
                field="duration",
                value=self.duration,
            )
        if duration < 0 or duration != float(self.duration):
            raise ValidationError(
                "Duration must be a non-negative whole number of minutes",
                field="duration",
                value=self.duration,
            )
        self.duration = duration

        unknown = set(self.resources) - set(RESOURCE_KINDS)
        if unknown:
            raise ValidationError(
                f"Unknown resource kinds: {', '.join(sorted(unknown))}",
                field="resources",
            )
        # Keep kinds in canonical order and drop blanks
        self.resources = {
            kind: self.resources[kind]
            for kind in RESOURCE_KINDS
            if self.resources.get(kind)
        }
        self.lesson_number = normalize_lesson_number(self.lesson_number)

    # =========================================================================
    # IDENTITY
    # =========================================================================

    @property
    def identifier(self) -> str:
        """Remote id when known, otherwise the local id."""
        return self.remote_id or self.local_id

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.category)

    @property
    def import_key(self) -> Tuple[str, str, str]:
        return (self.name, self.category, self.lesson_number)

    def matches(self, identifier: str) -> bool:
        return identifier in (self.remote_id, self.local_id)

    def same_as(self, other: Activity) -> bool:
        """True when both are copies of the same library activity."""
        ours = {self.remote_id, self.local_id} - {None}
        return bool(ours & {other.remote_id, other.local_id})

    def copy(self, **changes: Any) -> Activity:
        """Deep copy, optionally with fields replaced (ids are kept)."""
        clone = copy.deepcopy(self)
        for name, value in changes.items():
            if name not in self.__dataclass_fields__:
                raise ValidationError(f"Unknown activity field: {name}", field=name)
            setattr(clone, name, copy.deepcopy(value))
        if changes:
            clone.__post_init__()
        return clone

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Activity:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if not known.get("local_id"):
            known.pop("local_id", None)
        return cls(**known)

    def to_row(self) -> Dict[str, Any]:
        """Row for the `activities` table."""
        row = {
            "id": self.identifier,
            "activity": self.name,
            "description": self.description,
            "time": self.duration,
            "category": self.category,
            "level": self.level,
            "unit_name": self.unit_name,
            "lesson_number": self.lesson_number,
            "eyfs_standards": list(self.standards),
            "yeargroups": list(self.year_groups),
        }
        for kind, column in RESOURCE_COLUMNS.items():
            row[column] = self.resources.get(kind, "")
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Activity:
        """Build an activity from an `activities` table row."""
        remote_id = row.get("id")
        resources = {
            kind: row.get(column) or ""
            for kind, column in RESOURCE_COLUMNS.items()
        }
        activity = cls(
            name=row.get("activity") or "",
            category=row.get("category") or "",
            description=row.get("description") or "",
            duration=coerce_minutes(row.get("time")),
            resources=resources,
            level=row.get("level") or "",
            unit_name=row.get("unit_name") or "",
            lesson_number=row.get("lesson_number") or "",
            standards=list(row.get("eyfs_standards") or []),
            year_groups=list(row.get("yeargroups") or []),
            remote_id=str(remote_id) if remote_id else None,
        )
        if remote_id:
            activity.local_id = str(remote_id)
        return activity
