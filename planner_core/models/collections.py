# =============================================================================
# planner_core/models/collections.py
# Collection keys, storage layout and the StandardsMap
# =============================================================================
"""
Every class owns one snapshot per collection. A CollectionKey names the
collection and carries its storage layout in both stores.

    Key            Local cache key               Remote table
    -------------  ----------------------------  ----------------
    ACTIVITIES     library-activities-<class>    activities
    LESSONS        lesson-data-<class>           lessons
    STANDARDS      lesson-standards-<class>      lesson_standards
    HALF_TERMS     half-terms-<class>            half_terms
    UNITS          units-<class>                 (local only)
    LESSON_PLANS   lesson-plans-<class>          lesson_plans
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from planner_core.models.half_term import default_half_terms


class CollectionKey(Enum):
    """Collections persisted per class."""
    ACTIVITIES = "library-activities"
    LESSONS = "lesson-data"
    STANDARDS = "lesson-standards"
    HALF_TERMS = "half-terms"
    UNITS = "units"
    LESSON_PLANS = "lesson-plans"

    @property
    def table(self) -> Optional[str]:
        """Remote table name, or None for local-only collections."""
        return _TABLES[self]

    @property
    def local_only(self) -> bool:
        return self.table is None

    @property
    def on_conflict(self) -> str:
        if self is CollectionKey.ACTIVITIES:
            return "activity,category,lesson_number"
        return "id,class_id"

    def local_key(self, class_id: str) -> str:
        return f"{self.value}-{class_id}"

    def default_payload(self) -> Any:
        """Payload used when neither store has the collection."""
        if self is CollectionKey.HALF_TERMS:
            return [ht.to_dict() for ht in default_half_terms()]
        if self is CollectionKey.LESSONS:
            return {"lessons": {}, "lesson_numbers": [], "teaching_units": []}
        if self is CollectionKey.STANDARDS:
            return {}
        return []

    def is_empty(self, payload: Any) -> bool:
        if not payload:
            return True
        if self is CollectionKey.LESSONS:
            return not payload.get("lessons")
        return False


_TABLES = {
    CollectionKey.ACTIVITIES: "activities",
    CollectionKey.LESSONS: "lessons",
    CollectionKey.STANDARDS: "lesson_standards",
    CollectionKey.HALF_TERMS: "half_terms",
    CollectionKey.UNITS: None,
    CollectionKey.LESSON_PLANS: "lesson_plans",
}


@dataclass
class StandardsMap:
    """Per-lesson-number list of standards statements."""
    entries: Dict[str, List[str]] = field(default_factory=dict)

    def get(self, lesson_number: str) -> List[str]:
        return list(self.entries.get(lesson_number, []))

    def add(self, lesson_number: str, standard: str) -> bool:
        current = self.entries.setdefault(lesson_number, [])
        if standard in current:
            return False
        current.append(standard)
        return True

    def remove(self, lesson_number: str, standard: str) -> bool:
        current = self.entries.get(lesson_number)
        if not current or standard not in current:
            return False
        current.remove(standard)
        if not current:
            del self.entries[lesson_number]
        return True

    def relocate(self, mapping: Dict[str, str]) -> None:
        """Move entries per an old->new mapping; keys not in the mapping are dropped."""
        self.entries = {
            mapping[old]: standards
            for old, standards in self.entries.items()
            if old in mapping and standards
        }

    def to_dict(self) -> Dict[str, List[str]]:
        return copy.deepcopy(self.entries)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Iterable[str]]]) -> StandardsMap:
        return cls({str(k): list(v) for k, v in (data or {}).items() if v})
