# =============================================================================
# planner_core/models/lesson.py
# LessonRecord - one numbered lesson within a class
# =============================================================================
"""
LessonRecord and lesson-number helpers.

Features:
- Activities grouped by category with a derived display order
- Total time recomputed from contained activities
- Default titles generated from the lesson's categories
- Renumbering rewrites every contained activity's lesson number
"""

from __future__ import annotations
import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from planner_core.errors import ValidationError
from planner_core.models.activity import Activity, normalize_lesson_number

# Display order of the built-in categories; others follow alphabetically
CATEGORY_ORDER = [
    "Welcome",
    "Kodaly Songs",
    "Kodaly Action Songs",
    "Action/Games Songs",
    "Rhythm Sticks",
    "Scarf Songs",
    "General Game",
    "Core Songs",
    "Parachute Games",
    "Percussion Games",
    "Goodbye",
    "Teaching Units",
    "Kodaly Rhythms",
    "Kodaly Games",
    "IWB Games",
]

# Category -> title used when a lesson has no explicit title
THEMED_TITLES = {
    "Kodaly Songs": "Kodaly Lesson",
    "Rhythm Sticks": "Rhythm Sticks Lesson",
    "Percussion Games": "Percussion Lesson",
    "Scarf Songs": "Movement with Scarves",
    "Parachute Games": "Parachute Activities",
    "Action/Games Songs": "Action Games Lesson",
}

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


# =============================================================================
# LESSON NUMBER HELPERS
# =============================================================================

def is_lesson_number(value: Any) -> bool:
    """True for the string form of a positive integer."""
    text = str(value).strip() if value is not None else ""
    return text.isdigit() and int(text) >= 1


def lesson_sort_key(number: str) -> int:
    return int(number)


def sorted_lesson_numbers(numbers: Iterable[str]) -> List[str]:
    """Unique lesson numbers sorted numerically."""
    return sorted({n for n in numbers if is_lesson_number(n)}, key=lesson_sort_key)


def is_dense(numbers: Iterable[str]) -> bool:
    """True when the numbers are exactly {1..N}."""
    ordered = sorted_lesson_numbers(numbers)
    return ordered == [str(i) for i in range(1, len(ordered) + 1)]


# =============================================================================
# CATEGORY ORDER AND TITLES
# =============================================================================

def sort_categories(categories: Iterable[str], order: Optional[Sequence[str]] = None) -> List[str]:
    """Sort categories by the configured order; unknown ones go last, alphabetically."""
    order = list(order or CATEGORY_ORDER)
    position = {name: i for i, name in enumerate(order)}
    return sorted(
        set(categories),
        key=lambda c: (position.get(c, len(order)), c.lower()),
    )


def default_lesson_title(categories: Sequence[str]) -> str:
    """Title for a lesson with no explicit title, derived from its categories."""
    if not categories:
        return "Untitled Lesson"

    if "Welcome" in categories and "Goodbye" in categories:
        others = [c for c in categories if c not in ("Welcome", "Goodbye")]
        return f"{others[0]} Lesson" if others else "Standard Lesson"

    for category, title in THEMED_TITLES.items():
        if category in categories:
            return title

    return f"{categories[0]} Lesson"


def is_corrupted_title(title: Optional[str]) -> bool:
    """Some older records stored an id where the title belongs."""
    return bool(title) and bool(_UUID_RE.match(title.strip()))


# =============================================================================
# LESSON RECORD
# =============================================================================

@dataclass
class LessonRecord:
    """One lesson within a class, keyed by its lesson number."""
    lesson_number: str
    grouped: Dict[str, List[Activity]] = field(default_factory=dict)
    category_order: List[str] = field(default_factory=list)
    total_time: int = 0
    title: str = ""
    lesson_standards: List[str] = field(default_factory=list)
    notes: str = ""

    def __post_init__(self):
        self.lesson_number = normalize_lesson_number(self.lesson_number)
        if not self.lesson_number:
            raise ValidationError("A lesson record needs a lesson number", field="lesson_number")
        self.refresh()

    @property
    def activities(self) -> List[Activity]:
        """Contained activities in display order."""
        return [a for category in self.category_order for a in self.grouped.get(category, [])]

    @property
    def is_empty(self) -> bool:
        return not any(self.grouped.values())

    def refresh(self, order: Optional[Sequence[str]] = None) -> None:
        """Drop empty groups and recompute category order and total time."""
        self.grouped = {c: acts for c, acts in self.grouped.items() if acts}
        kept = [c for c in self.category_order if c in self.grouped]
        added = sort_categories([c for c in self.grouped if c not in kept], order)
        self.category_order = kept + added
        self.total_time = sum(a.duration for a in self.activities)

    def add_activity(self, activity: Activity, order: Optional[Sequence[str]] = None) -> Activity:
        """Add a copy of the activity stamped with this lesson's number."""
        placed = activity.copy(lesson_number=self.lesson_number)
        self.grouped.setdefault(placed.category, []).append(placed)
        self.refresh(order)
        return placed

    def remove_activity(self, identifier: str) -> bool:
        """Remove the first activity matching the identifier."""
        for category, acts in self.grouped.items():
            for i, activity in enumerate(acts):
                if activity.matches(identifier):
                    del acts[i]
                    self.refresh()
                    return True
        return False

    def replace_activities(self, activities: Iterable[Activity], order: Optional[Sequence[str]] = None) -> None:
        self.grouped = {}
        self.category_order = []
        for activity in activities:
            placed = activity.copy(lesson_number=self.lesson_number)
            self.grouped.setdefault(placed.category, []).append(placed)
        self.refresh(order)

    def renumber(self, new_number: str) -> None:
        """Move this record to a new lesson number."""
        self.lesson_number = normalize_lesson_number(new_number)
        for activity in self.activities:
            activity.lesson_number = self.lesson_number

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lesson_number": self.lesson_number,
            "grouped": {
                category: [a.to_dict() for a in acts]
                for category, acts in self.grouped.items()
            },
            "category_order": list(self.category_order),
            "total_time": self.total_time,
            "title": self.title,
            "lesson_standards": list(self.lesson_standards),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], lesson_number: Optional[str] = None) -> LessonRecord:
        number = lesson_number or data.get("lesson_number")
        grouped = {
            category: [Activity.from_dict(a) for a in acts or []]
            for category, acts in (data.get("grouped") or {}).items()
        }
        record = cls(
            lesson_number=number,
            grouped=grouped,
            category_order=list(data.get("category_order") or []),
            title=data.get("title") or "",
            lesson_standards=list(data.get("lesson_standards") or []),
            notes=data.get("notes") or "",
        )
        for activity in record.activities:
            activity.lesson_number = record.lesson_number
        if is_corrupted_title(record.title):
            record.title = default_lesson_title(record.category_order)
        return record

    def copy(self) -> LessonRecord:
        return copy.deepcopy(self)
