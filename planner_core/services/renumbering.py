# =============================================================================
# planner_core/services/renumbering.py
# Lesson renumbering cascade and invariant checks
# =============================================================================
"""
Pure functions over a ClassStore.

A mapping is a dict old -> new covering every lesson number that survives.
Applying it moves lesson records and rewrites every collection that refers
to a lesson number; numbers missing from the mapping are removed everywhere.

Invariants checked by `verify`:
- lesson numbers (records and numbered plans) are exactly {1..N}
- every numbered plan has a lesson record, and no two plans share a number
- a lesson number appears in at most one half-term, at most once
- half-term and standards references point at existing lessons

Unit lesson lists are advisory: they are rewritten and pruned, never checked.
"""

from __future__ import annotations
from collections import Counter
from typing import Dict, Iterable, List, Optional
import logging

from planner_core.errors import RenumberingError
from planner_core.models.lesson import LessonRecord, is_dense, sorted_lesson_numbers
from planner_core.services.class_store import ClassStore

logger = logging.getLogger(__name__)


def dense_mapping(numbers: Iterable[str], removed: Optional[str] = None) -> Dict[str, str]:
    """Map the numbers (minus `removed`), sorted numerically, onto 1..M."""
    remaining = [n for n in sorted_lesson_numbers(numbers) if n != removed]
    return {old: str(new) for new, old in enumerate(remaining, start=1)}


def moved_entries(mapping: Dict[str, str]) -> Dict[str, str]:
    """Only the entries whose number actually changes."""
    return {old: new for old, new in mapping.items() if old != new}


def _remap_list(numbers: List[str], mapping: Dict[str, str]) -> List[str]:
    remapped: List[str] = []
    for number in numbers:
        new = mapping.get(number)
        if new is not None and new not in remapped:
            remapped.append(new)
    return remapped


def apply_mapping(store: ClassStore, mapping: Dict[str, str]) -> None:
    """Apply an old -> new mapping to every collection of the store, in place."""
    relocated: Dict[str, LessonRecord] = {}
    for old, record in store.lessons.items():
        new = mapping.get(old)
        if new is None:
            continue
        if new != old:
            record.renumber(new)
        relocated[new] = record
    store.lessons = relocated

    store.standards.relocate(mapping)
    for record in store.lessons.values():
        record.lesson_standards = store.standards.get(record.lesson_number)

    for half_term in store.half_terms:
        half_term.lessons = _remap_list(half_term.lessons, mapping)

    for unit in store.units:
        unit.lesson_numbers = _remap_list(unit.lesson_numbers, mapping)

    kept_plans = []
    for plan in store.lesson_plans:
        if plan.is_numbered:
            if plan.lesson_number not in mapping:
                continue
            plan.lesson_number = mapping[plan.lesson_number]
        kept_plans.append(plan)
    store.lesson_plans = kept_plans

    for activity in store.activities:
        if activity.lesson_number:
            activity.lesson_number = mapping.get(activity.lesson_number, "")


# =============================================================================
# INVARIANTS
# =============================================================================

def find_violations(store: ClassStore) -> List[str]:
    """Describe every invariant the store breaks (empty when consistent)."""
    violations: List[str] = []
    record_numbers = set(store.lessons)

    all_numbers = store.all_lesson_numbers()
    if not is_dense(all_numbers):
        violations.append(f"lesson numbers are not 1..N: {all_numbers}")

    for key, record in store.lessons.items():
        if record.lesson_number != key:
            violations.append(f"lesson stored under {key} is numbered {record.lesson_number}")
        stray = {a.lesson_number for a in record.activities} - {key}
        if stray:
            violations.append(f"lesson {key} holds activities numbered {sorted(stray)}")

    plan_counts = Counter(p.lesson_number for p in store.lesson_plans if p.is_numbered)
    for number, count in plan_counts.items():
        if count > 1:
            violations.append(f"{count} lesson plans share lesson number {number}")
        if number not in record_numbers:
            violations.append(f"lesson plan numbered {number} has no lesson record")

    assignments = Counter(n for ht in store.half_terms for n in ht.lessons)
    for number, count in assignments.items():
        if count > 1:
            holders = [ht.id for ht in store.half_terms if number in ht.lessons]
            violations.append(f"lesson {number} is assigned {count} times ({', '.join(holders)})")
        if number not in record_numbers:
            violations.append(f"half-term references missing lesson {number}")

    for number in store.standards.entries:
        if number not in record_numbers:
            violations.append(f"standards reference missing lesson {number}")

    return violations


def verify(store: ClassStore) -> None:
    """Raise RenumberingError if the store breaks an invariant."""
    violations = find_violations(store)
    if violations:
        raise RenumberingError(
            f"Class {store.class_id} would become inconsistent",
            violations=violations,
        )


def repair(store: ClassStore) -> List[str]:
    """
    Bring loaded collections back in line with the invariants, in place.

    Returns:
        Descriptions of what was changed
    """
    fixes: List[str] = []

    seen_plan_numbers = set()
    for plan in store.lesson_plans:
        if not plan.is_numbered:
            continue
        if plan.lesson_number in seen_plan_numbers:
            fixes.append(f"cleared duplicate lesson number {plan.lesson_number} on plan {plan.id}")
            plan.lesson_number = ""
            continue
        seen_plan_numbers.add(plan.lesson_number)
        if plan.lesson_number not in store.lessons:
            record = LessonRecord(plan.lesson_number, title=plan.title, notes=plan.notes)
            record.replace_activities(plan.activities)
            store.lessons[record.lesson_number] = record
            fixes.append(f"rebuilt lesson {plan.lesson_number} from its plan")

    for number, record in store.lessons.items():
        stored = store.standards.get(number)
        if record.lesson_standards and not stored:
            store.standards.entries[number] = list(record.lesson_standards)

    mapping = dense_mapping(store.lessons)
    moved = moved_entries(mapping)
    if moved:
        fixes.append(f"closed gaps in lesson numbers: {moved}")
    dangling = store.referenced_lesson_numbers() - set(store.lessons)
    if dangling:
        fixes.append(f"dropped references to missing lessons {sorted_lesson_numbers(dangling)}")
    apply_mapping(store, mapping)

    assigned = set()
    for half_term in store.half_terms:
        unique = []
        for number in half_term.lessons:
            if number in assigned:
                fixes.append(f"removed duplicate assignment of lesson {number} from {half_term.id}")
                continue
            assigned.add(number)
            unique.append(number)
        half_term.lessons = unique

    for fix in fixes:
        logger.warning(f"Class {store.class_id}: {fix}")
    return fixes
