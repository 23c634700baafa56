# =============================================================================
# planner_core/services/class_store.py
# ClassStore - the live collections of one class
# =============================================================================
"""
ClassStore - explicitly owned in-memory state of a class.

The engine holds one ClassStore per class and is its only writer. Mutations
run on a copy and replace the live store only after the invariants hold.
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import logging

from planner_core.models.activity import Activity
from planner_core.models.collections import CollectionKey, StandardsMap
from planner_core.models.half_term import HalfTerm, default_half_terms
from planner_core.models.lesson import LessonRecord, is_lesson_number, sorted_lesson_numbers
from planner_core.models.lesson_plan import LessonPlan
from planner_core.models.unit import Unit

logger = logging.getLogger(__name__)


@dataclass
class ClassStore:
    """All collections of one class."""
    class_id: str
    activities: List[Activity] = field(default_factory=list)
    lessons: Dict[str, LessonRecord] = field(default_factory=dict)
    standards: StandardsMap = field(default_factory=StandardsMap)
    half_terms: List[HalfTerm] = field(default_factory=default_half_terms)
    units: List[Unit] = field(default_factory=list)
    lesson_plans: List[LessonPlan] = field(default_factory=list)

    def copy(self) -> ClassStore:
        return copy.deepcopy(self)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def lesson_numbers(self) -> List[str]:
        """Lesson record numbers, sorted numerically."""
        return sorted_lesson_numbers(self.lessons)

    def all_lesson_numbers(self) -> List[str]:
        """Numbers held by lesson records or numbered plans."""
        plan_numbers = [p.lesson_number for p in self.lesson_plans if p.is_numbered]
        return sorted_lesson_numbers(list(self.lessons) + plan_numbers)

    def teaching_units(self) -> List[str]:
        """Categories taught across the lessons, alphabetically."""
        return sorted({c for record in self.lessons.values() for c in record.category_order})

    def half_term(self, half_term_id: str) -> Optional[HalfTerm]:
        for half_term in self.half_terms:
            if half_term.id == half_term_id:
                return half_term
        return None

    def half_term_containing(self, lesson_number: str) -> Optional[HalfTerm]:
        for half_term in self.half_terms:
            if half_term.contains(lesson_number):
                return half_term
        return None

    def plan(self, plan_id: str) -> Optional[LessonPlan]:
        for plan in self.lesson_plans:
            if plan.id == plan_id:
                return plan
        return None

    def plan_for_lesson(self, lesson_number: str) -> Optional[LessonPlan]:
        for plan in self.lesson_plans:
            if plan.lesson_number == lesson_number:
                return plan
        return None

    def unit(self, unit_id: str) -> Optional[Unit]:
        for unit in self.units:
            if unit.id == unit_id:
                return unit
        return None

    def library_activity(self, identifier: str) -> Optional[Activity]:
        for activity in self.activities:
            if activity.matches(identifier):
                return activity
        return None

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def to_payload(self, key: CollectionKey) -> Any:
        """JSON-ready snapshot of one collection."""
        if key is CollectionKey.ACTIVITIES:
            return [a.to_dict() for a in self.activities]
        if key is CollectionKey.LESSONS:
            return {
                "lessons": {n: self.lessons[n].to_dict() for n in self.lesson_numbers()},
                "lesson_numbers": self.lesson_numbers(),
                "teaching_units": self.teaching_units(),
            }
        if key is CollectionKey.STANDARDS:
            return self.standards.to_dict()
        if key is CollectionKey.HALF_TERMS:
            return [ht.to_dict() for ht in self.half_terms]
        if key is CollectionKey.UNITS:
            return [u.to_dict() for u in self.units]
        return [p.to_dict() for p in self.lesson_plans]

    def load_payload(self, key: CollectionKey, payload: Any) -> None:
        """Replace one collection from a snapshot."""
        if key is CollectionKey.ACTIVITIES:
            self.activities = [Activity.from_dict(a) for a in payload or []]
        elif key is CollectionKey.LESSONS:
            lessons = {}
            for number, data in ((payload or {}).get("lessons") or {}).items():
                if not is_lesson_number(number):
                    logger.warning(f"Class {self.class_id}: ignoring lesson with invalid number {number!r}")
                    continue
                record = LessonRecord.from_dict(data, lesson_number=number)
                lessons[record.lesson_number] = record
            self.lessons = lessons
        elif key is CollectionKey.STANDARDS:
            self.standards = StandardsMap.from_dict(payload)
        elif key is CollectionKey.HALF_TERMS:
            self.half_terms = _with_default_half_terms([HalfTerm.from_dict(ht) for ht in payload or []])
        elif key is CollectionKey.UNITS:
            self.units = [Unit.from_dict(u) for u in payload or []]
        else:
            self.lesson_plans = [LessonPlan.from_dict(p) for p in payload or []]

    def changed_collections(self, other: ClassStore) -> List[CollectionKey]:
        """Collections whose snapshot differs between this store and another."""
        return [
            key for key in CollectionKey
            if self.to_payload(key) != other.to_payload(key)
        ]

    def referenced_lesson_numbers(self) -> Set[str]:
        """Lesson numbers referenced outside the lesson records."""
        numbers: Set[str] = set(self.standards.entries)
        for half_term in self.half_terms:
            numbers.update(half_term.lessons)
        for plan in self.lesson_plans:
            if plan.is_numbered:
                numbers.add(plan.lesson_number)
        return numbers


def _with_default_half_terms(half_terms: List[HalfTerm]) -> List[HalfTerm]:
    """Ensure all six default half-terms exist, in their fixed order."""
    by_id = {ht.id: ht for ht in half_terms}
    ordered = [by_id.pop(ht.id, ht) for ht in default_half_terms()]
    return ordered + list(by_id.values())
