# =============================================================================
# planner_core/models/half_term.py
# HalfTerm - the six fixed scheduling periods of an academic year
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from planner_core.models.lesson import lesson_sort_key, is_lesson_number


# (id, display name, months)
DEFAULT_HALF_TERMS = (
    ("A1", "Autumn 1", "Sep-Oct"),
    ("A2", "Autumn 2", "Nov-Dec"),
    ("SP1", "Spring 1", "Jan-Feb"),
    ("SP2", "Spring 2", "Mar-Apr"),
    ("SM1", "Summer 1", "Apr-May"),
    ("SM2", "Summer 2", "Jun-Jul"),
)

# Term tag on a lesson plan -> half-term a promoted lesson lands in
TERM_TO_HALF_TERM = {
    "autumn": "A1",
    "spring": "SP1",
    "summer": "SM1",
}


@dataclass
class HalfTerm:
    """A scheduling period holding an ordered list of lesson numbers."""
    id: str
    name: str
    months: str = ""
    lessons: List[str] = field(default_factory=list)
    is_complete: bool = False

    def contains(self, lesson_number: str) -> bool:
        return lesson_number in self.lessons

    def position_of(self, lesson_number: str) -> Optional[int]:
        """
        1-based position of a lesson among this half-term's lessons sorted
        numerically. Always derived from the current list.
        """
        if lesson_number not in self.lessons:
            return None
        ordered = sorted(
            (n for n in set(self.lessons) if is_lesson_number(n)),
            key=lesson_sort_key,
        )
        return ordered.index(lesson_number) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "months": self.months,
            "lessons": list(self.lessons),
            "is_complete": self.is_complete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> HalfTerm:
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            months=data.get("months") or "",
            lessons=[str(n) for n in data.get("lessons") or []],
            is_complete=bool(data.get("is_complete", False)),
        )


def default_half_terms() -> List[HalfTerm]:
    """Fresh copies of the six default half-terms."""
    return [HalfTerm(id=i, name=name, months=months) for i, name, months in DEFAULT_HALF_TERMS]


def half_term_for_term(term: Optional[str]) -> Optional[str]:
    """Map a term tag like "Autumn" or "Spring Term" to its first half-term."""
    if not term:
        return None
    text = term.strip().lower()
    for prefix, half_term_id in TERM_TO_HALF_TERM.items():
        if text.startswith(prefix):
            return half_term_id
    return None
