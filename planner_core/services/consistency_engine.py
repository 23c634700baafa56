# =============================================================================
# planner_core/services/consistency_engine.py
# Lesson/Activity Consistency Engine
# =============================================================================
"""
ConsistencyEngine - the only writer of a class's collections.

Every mutation:
1. runs under the class's single-flight lock (one mutation per class at a time)
2. edits a draft copy of the class store
3. verifies the lesson invariants on the draft
4. swaps the draft in as the live store
5. saves every collection that differs from the last saved state, in one
   local transaction (local first, remote best-effort)

A rejected or inconsistent draft is discarded, so callers never observe a
partially renumbered class. Mutations return a ServiceResult whose metadata
reports which collections changed and their sync status.

Usage:
------
engine = get_consistency_engine()
engine.open_class("year-1")
result = engine.delete_lesson("year-1", "3")
if not result:
    print(result.error)
"""

from __future__ import annotations
import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from planner_core.config import PlannerSettings, get_settings
from planner_core.errors import (
    AlreadyAssignedError,
    LessonNotFoundError,
    LocalStoreError,
    ValidationError,
)
from planner_core.models.activity import Activity, normalize_lesson_number
from planner_core.models.collections import CollectionKey
from planner_core.models.half_term import HalfTerm, half_term_for_term
from planner_core.models.lesson import LessonRecord, is_dense
from planner_core.models.lesson_plan import LessonPlan
from planner_core.models.unit import Unit
from planner_core.offline.persistence import LoadResult, PersistenceCoordinator
from planner_core.offline.sync_engine import CollectionSyncState
from planner_core.services import renumbering
from planner_core.services.activity_import import ActivityImporter
from planner_core.services.base_service import BaseService, ServiceResult
from planner_core.services.class_store import ClassStore


@dataclass
class _Outcome:
    """Operation result plus extra metadata for the ServiceResult."""
    data: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ConsistencyEngine(BaseService):
    """
    Owns the live collections of every open class and keeps them consistent.
    """

    def __init__(
        self,
        coordinator: PersistenceCoordinator,
        settings: Optional[PlannerSettings] = None,
        importer: Optional[ActivityImporter] = None,
    ):
        super().__init__()
        self.coordinator = coordinator
        self.settings = settings or coordinator.settings
        self.importer = importer or ActivityImporter()
        self.category_order = self.settings.category_order or None

        self._stores: Dict[str, ClassStore] = {}
        # Last state of each class known to be in the local cache
        self._persisted: Dict[str, ClassStore] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # =========================================================================
    # CLASS LIFECYCLE
    # =========================================================================

    def _class_lock(self, class_id: str) -> threading.RLock:
        with self._locks_guard:
            if class_id not in self._locks:
                self._locks[class_id] = threading.RLock()
            return self._locks[class_id]

    def open_class(self, class_id: str) -> ServiceResult:
        """
        (Re)load every collection of a class from storage.

        Returns:
            ServiceResult with {collection: source} and any load warnings/fixes
        """
        def run() -> _Outcome:
            store, results, fixes = self._load_store(class_id)
            self._stores[class_id] = store
            return _Outcome(
                data={key.value: result.source.value for key, result in results.items()},
                metadata={
                    "warnings": [r.warning for r in results.values() if r.warning],
                    "fixes": fixes,
                },
            )

        with self._class_lock(class_id):
            self._stores.pop(class_id, None)
            result = self.safe_execute(f"Opening class {class_id}", run)
        return self._unwrap(result)

    def close_class(self, class_id: str) -> None:
        """Forget the in-memory state of a class, including unsaved changes."""
        with self._class_lock(class_id):
            self._stores.pop(class_id, None)
            self._persisted.pop(class_id, None)

    def _store(self, class_id: str) -> ClassStore:
        """Live store of a class, loading it on first use. Caller holds the class lock."""
        if class_id not in self._stores:
            store, _, _ = self._load_store(class_id)
            self._stores[class_id] = store
        return self._stores[class_id]

    def _load_store(self, class_id: str) -> Tuple[ClassStore, Dict[CollectionKey, LoadResult], List[str]]:
        store = ClassStore(class_id)
        results: Dict[CollectionKey, LoadResult] = {}
        for key in CollectionKey:
            results[key] = self.coordinator.load_result(key, class_id)
            store.load_payload(key, results[key].payload)

        loaded = store.copy()
        fixes = renumbering.repair(store)

        if not store.activities and store.lessons:
            store.activities = self._extract_library(store)
            fixes.append(f"rebuilt activity library from lessons ({len(store.activities)} activities)")

        self._persisted[class_id] = loaded
        try:
            self._persist(class_id, store)
        except LocalStoreError as e:
            self.logger.error(f"Could not save repaired collections for class {class_id}: {e.message}")

        return store, results, fixes

    @staticmethod
    def _extract_library(store: ClassStore) -> List[Activity]:
        """Unique activities found in the lessons, by (name, category)."""
        found: Dict[Tuple[str, str], Activity] = {}
        for number in store.lesson_numbers():
            for activity in store.lessons[number].activities:
                found.setdefault(activity.identity, activity.copy())
        return list(found.values())

    # =========================================================================
    # MUTATION PLUMBING
    # =========================================================================

    def _persist(self, class_id: str, store: ClassStore) -> Dict[str, Any]:
        """
        Save every collection that differs from the last saved state.

        Collections left unsaved by an earlier failed write are included.

        Returns:
            {"changed": [collection], "sync": {collection: status}}

        Raises:
            LocalStoreError: the saved baseline is left as it was
        """
        pending = self._persisted[class_id].changed_collections(store)
        if not pending:
            return {"changed": [], "sync": {}}

        statuses = self.coordinator.save_all(class_id, [(key, store.to_payload(key)) for key in pending])
        self._persisted[class_id] = store.copy()
        return {
            "changed": [key.value for key in pending],
            "sync": {key.value: status.value for key, status in statuses.items()},
        }

    def _mutate(self, class_id: str, operation: str, func: Callable[..., Any], *args: Any) -> ServiceResult:
        """Run `func(draft, *args)` as one serialized, verified, persisted mutation."""
        progress: Dict[str, Any] = {}

        def run() -> _Outcome:
            live = self._store(class_id)
            draft = live.copy()
            outcome = func(draft, *args)
            if not isinstance(outcome, _Outcome):
                outcome = _Outcome(outcome)

            renumbering.verify(draft)
            self._stores[class_id] = draft
            progress["committed"] = True
            progress["changed"] = [key.value for key in live.changed_collections(draft)]
            progress.update(self._persist(class_id, draft))
            return outcome

        with self._class_lock(class_id):
            result = self.safe_execute(f"{operation} [{class_id}]", run)

        if not result.success and progress.get("committed"):
            # Applied in memory but not durable; the next save or flush() retries it
            return result.with_metadata(**progress)

        result = self._unwrap(result)
        if result.success:
            result.metadata = {**progress, **result.metadata}
        return result

    @staticmethod
    def _unwrap(result: ServiceResult) -> ServiceResult:
        """Move an _Outcome's data and metadata onto the ServiceResult."""
        if result.success and isinstance(result.data, _Outcome):
            outcome = result.data
            result.data = copy.deepcopy(outcome.data)
            result.with_metadata(**outcome.metadata)
        elif result.success:
            result.data = copy.deepcopy(result.data)
        return result

    def _read(self, class_id: str, func: Callable[[ClassStore], Any]) -> Any:
        """Deep-copied projection of the live store."""
        with self._class_lock(class_id):
            return copy.deepcopy(func(self._store(class_id)))

    # =========================================================================
    # SHARED CHECKS
    # =========================================================================

    @staticmethod
    def _lesson_number(value: Any) -> str:
        number = normalize_lesson_number(value)
        if not number:
            raise ValidationError("A lesson number is required", field="lesson_number")
        return number

    @staticmethod
    def _next_number(store: ClassStore) -> str:
        numbers = store.all_lesson_numbers()
        return str(max(int(n) for n in numbers) + 1) if numbers else "1"

    def _existing_lesson(self, store: ClassStore, lesson_number: Any) -> LessonRecord:
        number = self._lesson_number(lesson_number)
        if number not in store.lessons:
            raise LessonNotFoundError(number, store.class_id)
        return store.lessons[number]

    def _lesson_for_write(self, store: ClassStore, lesson_number: Any) -> LessonRecord:
        """Existing lesson, or a new one when the number is the next in sequence."""
        number = self._lesson_number(lesson_number)
        if number in store.lessons:
            return store.lessons[number]

        expected = self._next_number(store)
        if number != expected:
            raise ValidationError(
                f"Cannot create lesson {number}: the next lesson number is {expected}",
                field="lesson_number",
                value=number,
            )
        record = LessonRecord(number)
        store.lessons[number] = record
        return record

    @staticmethod
    def _half_term(store: ClassStore, half_term_id: str) -> HalfTerm:
        half_term = store.half_term(half_term_id)
        if half_term is None:
            raise ValidationError(f"Unknown half-term: {half_term_id}", field="half_term_id", value=half_term_id)
        return half_term

    @staticmethod
    def _plan(store: ClassStore, plan_id: str) -> LessonPlan:
        plan = store.plan(plan_id)
        if plan is None:
            raise ValidationError(f"Lesson plan not found: {plan_id}", field="plan_id", value=plan_id)
        return plan

    @staticmethod
    def _check_not_elsewhere(store: ClassStore, number: str, target: HalfTerm) -> None:
        holder = store.half_term_containing(number)
        if holder is not None and holder is not target:
            raise AlreadyAssignedError(
                lesson_number=number,
                half_term_id=holder.id,
                half_term_name=holder.name,
                position=holder.position_of(number),
            )

    # =========================================================================
    # LESSON DELETION AND RENUMBERING
    # =========================================================================

    def delete_lesson(self, class_id: str, lesson_number: str) -> ServiceResult:
        """
        Delete a lesson and renumber every later lesson down by one.

        Returns:
            ServiceResult with {"deleted": number, "renumbered": {old: new}}
        """
        return self._mutate(class_id, f"Deleting lesson {lesson_number}", self._delete_lesson, lesson_number)

    def _delete_lesson(self, store: ClassStore, lesson_number: Any) -> Dict[str, Any]:
        number = self._lesson_number(lesson_number)
        numbers = store.all_lesson_numbers()
        if number not in numbers:
            raise LessonNotFoundError(number, store.class_id)

        store.lesson_plans = [p for p in store.lesson_plans if p.lesson_number != number]
        mapping = renumbering.dense_mapping(numbers, removed=number)
        renumbering.apply_mapping(store, mapping)

        moved = renumbering.moved_entries(mapping)
        if moved:
            self.logger.info(f"Class {store.class_id}: lesson {number} deleted, renumbered {moved}")
        return {"deleted": number, "renumbered": moved}

    def next_lesson_number(self, class_id: str) -> str:
        """One more than the highest lesson number, or "1" for an empty class."""
        return self._read(class_id, self._next_number)

    # =========================================================================
    # HALF-TERMS
    # =========================================================================

    def assign_half_term(self, class_id: str, lesson_number: str, half_term_id: str) -> ServiceResult:
        """
        Add a lesson to a half-term.

        Fails with AlreadyAssignedError details (half-term name and the
        lesson's position in it) when another half-term holds the lesson.
        Assigning to the half-term that already holds it changes nothing.
        """
        return self._mutate(
            class_id,
            f"Assigning lesson {lesson_number} to {half_term_id}",
            self._assign_half_term,
            lesson_number,
            half_term_id,
        )

    def _assign_half_term(self, store: ClassStore, lesson_number: Any, half_term_id: str) -> HalfTerm:
        number = self._existing_lesson(store, lesson_number).lesson_number
        target = self._half_term(store, half_term_id)
        self._check_not_elsewhere(store, number, target)
        if not target.contains(number):
            target.lessons.append(number)
        return target

    def unassign_half_term(self, class_id: str, lesson_number: str) -> ServiceResult:
        """Remove a lesson from whichever half-term holds it (no-op if none)."""
        return self._mutate(class_id, f"Unassigning lesson {lesson_number}", self._unassign_half_term, lesson_number)

    def _unassign_half_term(self, store: ClassStore, lesson_number: Any) -> Optional[str]:
        number = self._lesson_number(lesson_number)
        holder = store.half_term_containing(number)
        if holder is None:
            return None
        holder.lessons = [n for n in holder.lessons if n != number]
        return holder.id

    def set_half_term_lessons(self, class_id: str, half_term_id: str, lessons: Sequence[str]) -> ServiceResult:
        """Replace a half-term's lesson list (reorder, bulk assign)."""
        return self._mutate(
            class_id,
            f"Setting lessons of {half_term_id}",
            self._set_half_term_lessons,
            half_term_id,
            list(lessons),
        )

    def _set_half_term_lessons(self, store: ClassStore, half_term_id: str, lessons: List[Any]) -> HalfTerm:
        target = self._half_term(store, half_term_id)
        cleaned: List[str] = []
        for value in lessons:
            number = self._lesson_number(value)
            if number not in store.lessons:
                self.logger.warning(f"Dropping unknown lesson {number} from {half_term_id}")
                continue
            if number in cleaned:
                continue
            self._check_not_elsewhere(store, number, target)
            cleaned.append(number)
        target.lessons = cleaned
        return target

    def set_half_term_complete(self, class_id: str, half_term_id: str, complete: bool = True) -> ServiceResult:
        return self._mutate(
            class_id,
            f"Marking {half_term_id} {'complete' if complete else 'incomplete'}",
            self._set_half_term_complete,
            half_term_id,
            complete,
        )

    def _set_half_term_complete(self, store: ClassStore, half_term_id: str, complete: bool) -> HalfTerm:
        target = self._half_term(store, half_term_id)
        target.is_complete = bool(complete)
        return target

    # =========================================================================
    # ACTIVITIES
    # =========================================================================

    def add_activity(self, class_id: str, activity: Activity) -> ServiceResult:
        """
        Add an activity to the library.

        An activity with a lesson number is also placed in that lesson,
        creating it when the number is the next in sequence.
        """
        return self._mutate(class_id, f"Adding activity {activity.name}", self._add_activity, activity)

    def _add_activity(self, store: ClassStore, activity: Activity) -> Activity:
        added = activity.copy()
        existing = next((a for a in store.activities if a.import_key == added.import_key), None)
        if existing is not None:
            added.remote_id, added.local_id = existing.remote_id, existing.local_id
            store.activities[store.activities.index(existing)] = added
        else:
            store.activities.append(added)

        if added.lesson_number:
            record = self._lesson_for_write(store, added.lesson_number)
            record.remove_activity(added.identifier)
            record.add_activity(added, self.category_order)
        return added

    def update_activity(self, class_id: str, identifier: str, changes: Dict[str, Any]) -> ServiceResult:
        """
        Edit a library activity.

        The edit reaches every lesson record holding a copy of it; lesson
        plans keep the copy they were given.
        """
        return self._mutate(class_id, f"Updating activity {identifier}", self._update_activity, identifier, dict(changes))

    def _update_activity(self, store: ClassStore, identifier: str, changes: Dict[str, Any]) -> Activity:
        activity = store.library_activity(identifier)
        if activity is None:
            raise ValidationError(f"Activity not found: {identifier}", field="identifier", value=identifier)
        for protected in ("remote_id", "local_id"):
            if protected in changes:
                raise ValidationError(f"{protected} cannot be changed", field=protected)
        if "lesson_number" in changes and normalize_lesson_number(changes["lesson_number"]) != activity.lesson_number:
            raise ValidationError(
                "Move activities between lessons by removing and adding them",
                field="lesson_number",
            )

        updated = activity.copy(**changes)
        store.activities[store.activities.index(activity)] = updated

        for record in store.lessons.values():
            touched = False
            regrouped: Dict[str, List[Activity]] = {}
            for placed in record.activities:
                if placed.same_as(updated):
                    placed = updated.copy(lesson_number=record.lesson_number)
                    touched = True
                regrouped.setdefault(placed.category, []).append(placed)
            if touched:
                record.grouped = regrouped
                record.refresh(self.category_order)
        return updated

    def delete_activity(self, class_id: str, identifier: str) -> ServiceResult:
        """Remove an activity from the library (lessons keep their copies)."""
        return self._mutate(class_id, f"Deleting activity {identifier}", self._delete_activity, identifier)

    def _delete_activity(self, store: ClassStore, identifier: str) -> Activity:
        activity = store.library_activity(identifier)
        if activity is None:
            raise ValidationError(f"Activity not found: {identifier}", field="identifier", value=identifier)
        store.activities.remove(activity)
        return activity

    # =========================================================================
    # LESSONS
    # =========================================================================

    def create_lesson(self, class_id: str, title: str = "") -> ServiceResult:
        """Open an empty lesson at the next lesson number."""
        return self._mutate(class_id, "Creating lesson", self._create_lesson, title)

    def _create_lesson(self, store: ClassStore, title: str) -> LessonRecord:
        record = self._lesson_for_write(store, self._next_number(store))
        record.title = title or ""
        return record

    def add_activity_to_lesson(self, class_id: str, lesson_number: str, activity: Activity) -> ServiceResult:
        return self._mutate(
            class_id,
            f"Adding {activity.name} to lesson {lesson_number}",
            self._add_activity_to_lesson,
            lesson_number,
            activity,
        )

    def _add_activity_to_lesson(self, store: ClassStore, lesson_number: Any, activity: Activity) -> Activity:
        record = self._lesson_for_write(store, lesson_number)
        return record.add_activity(activity, self.category_order)

    def remove_activity_from_lesson(self, class_id: str, lesson_number: str, identifier: str) -> ServiceResult:
        return self._mutate(
            class_id,
            f"Removing activity {identifier} from lesson {lesson_number}",
            self._remove_activity_from_lesson,
            lesson_number,
            identifier,
        )

    def _remove_activity_from_lesson(self, store: ClassStore, lesson_number: Any, identifier: str) -> LessonRecord:
        record = self._existing_lesson(store, lesson_number)
        if not record.remove_activity(identifier):
            raise ValidationError(
                f"Lesson {record.lesson_number} has no activity {identifier}",
                field="identifier",
                value=identifier,
            )
        return record

    def update_lesson_title(self, class_id: str, lesson_number: str, title: str) -> ServiceResult:
        return self._mutate(class_id, f"Renaming lesson {lesson_number}", self._update_lesson_field,
                            lesson_number, "title", title)

    def update_lesson_notes(self, class_id: str, lesson_number: str, notes: str) -> ServiceResult:
        return self._mutate(class_id, f"Updating notes of lesson {lesson_number}", self._update_lesson_field,
                            lesson_number, "notes", notes)

    def _update_lesson_field(self, store: ClassStore, lesson_number: Any, name: str, value: str) -> LessonRecord:
        record = self._existing_lesson(store, lesson_number)
        setattr(record, name, (value or "").strip())
        return record

    # =========================================================================
    # STANDARDS
    # =========================================================================

    def add_standard_to_lesson(self, class_id: str, lesson_number: str, standard: str) -> ServiceResult:
        return self._mutate(class_id, f"Adding standard to lesson {lesson_number}", self._change_standard,
                            lesson_number, standard, True)

    def remove_standard_from_lesson(self, class_id: str, lesson_number: str, standard: str) -> ServiceResult:
        return self._mutate(class_id, f"Removing standard from lesson {lesson_number}", self._change_standard,
                            lesson_number, standard, False)

    def _change_standard(self, store: ClassStore, lesson_number: Any, standard: str, add: bool) -> List[str]:
        record = self._existing_lesson(store, lesson_number)
        standard = (standard or "").strip()
        if not standard:
            raise ValidationError("A standard is required", field="standard")
        if add:
            store.standards.add(record.lesson_number, standard)
        else:
            store.standards.remove(record.lesson_number, standard)
        record.lesson_standards = store.standards.get(record.lesson_number)
        return record.lesson_standards

    # =========================================================================
    # UNITS
    # =========================================================================

    def save_unit(self, class_id: str, unit: Unit) -> ServiceResult:
        """Insert or update a unit. References to unknown lessons are dropped."""
        return self._mutate(class_id, f"Saving unit {unit.name}", self._save_unit, unit)

    def _save_unit(self, store: ClassStore, unit: Unit) -> Unit:
        saved = copy.deepcopy(unit)
        numbers: List[str] = []
        for value in saved.lesson_numbers:
            number = self._lesson_number(value)
            if number not in store.lessons:
                self.logger.warning(f"Unit {saved.name}: dropping unknown lesson {number}")
            elif number not in numbers:
                numbers.append(number)
        saved.lesson_numbers = numbers
        saved.updated_at = datetime.now()

        existing = store.unit(saved.id)
        if existing is not None:
            store.units[store.units.index(existing)] = saved
        else:
            store.units.append(saved)
        return saved

    def delete_unit(self, class_id: str, unit_id: str) -> ServiceResult:
        return self._mutate(class_id, f"Deleting unit {unit_id}", self._delete_unit, unit_id)

    def _delete_unit(self, store: ClassStore, unit_id: str) -> Unit:
        unit = store.unit(unit_id)
        if unit is None:
            raise ValidationError(f"Unit not found: {unit_id}", field="unit_id", value=unit_id)
        store.units.remove(unit)
        return unit

    # =========================================================================
    # LESSON PLANS
    # =========================================================================

    def save_lesson_plan(self, class_id: str, plan: LessonPlan) -> ServiceResult:
        """
        Insert or update a lesson plan.

        A plan with a lesson number is projected into that lesson's record
        (created when the number is the next in sequence). A plan cannot
        change its lesson number once it has one.
        """
        return self._mutate(class_id, f"Saving lesson plan {plan.id}", self._save_lesson_plan, plan)

    def _save_lesson_plan(self, store: ClassStore, plan: LessonPlan) -> LessonPlan:
        saved = plan.copy()
        existing = store.plan(saved.id)
        if existing is not None and existing.is_numbered and saved.lesson_number != existing.lesson_number:
            raise ValidationError(
                f"Lesson plan {saved.id} already holds lesson {existing.lesson_number}",
                field="lesson_number",
                value=saved.lesson_number,
            )

        if saved.is_numbered:
            other = store.plan_for_lesson(saved.lesson_number)
            if other is not None and other.id != saved.id:
                raise ValidationError(
                    f"Lesson {saved.lesson_number} already has a lesson plan",
                    field="lesson_number",
                    value=saved.lesson_number,
                )
            self._project_plan(store, saved)
            self._auto_assign(store, saved)

        saved.recompute_duration()
        saved.updated_at = datetime.now()
        if existing is not None:
            store.lesson_plans[store.lesson_plans.index(existing)] = saved
        else:
            store.lesson_plans.append(saved)
        return saved

    def _project_plan(self, store: ClassStore, plan: LessonPlan) -> LessonRecord:
        record = self._lesson_for_write(store, plan.lesson_number)
        record.replace_activities(plan.activities, self.category_order)
        if plan.title:
            record.title = plan.title
        if plan.notes:
            record.notes = plan.notes
        return record

    def _auto_assign(self, store: ClassStore, plan: LessonPlan) -> None:
        if not self.settings.auto_assign_half_term:
            return
        half_term_id = half_term_for_term(plan.term)
        if half_term_id is None or store.half_term_containing(plan.lesson_number) is not None:
            return
        target = store.half_term(half_term_id)
        if target is not None:
            target.lessons.append(plan.lesson_number)
            self.logger.info(f"Lesson {plan.lesson_number} auto-assigned to {target.name}")

    def add_activity_to_plan(self, class_id: str, plan_id: str, activity: Activity) -> ServiceResult:
        """Add a deep copy of an activity to a plan."""
        return self._mutate(class_id, f"Adding {activity.name} to plan {plan_id}", self._add_activity_to_plan,
                            plan_id, activity)

    def _add_activity_to_plan(self, store: ClassStore, plan_id: str, activity: Activity) -> LessonPlan:
        plan = self._plan(store, plan_id)
        plan.add_activity(activity)
        if plan.is_numbered:
            self._project_plan(store, plan)
        return plan

    def remove_activity_from_plan(self, class_id: str, plan_id: str, identifier: str) -> ServiceResult:
        return self._mutate(class_id, f"Removing activity {identifier} from plan {plan_id}",
                            self._remove_activity_from_plan, plan_id, identifier)

    def _remove_activity_from_plan(self, store: ClassStore, plan_id: str, identifier: str) -> LessonPlan:
        plan = self._plan(store, plan_id)
        if not plan.remove_activity(identifier):
            raise ValidationError(f"Plan {plan_id} has no activity {identifier}", field="identifier", value=identifier)
        if plan.is_numbered:
            self._project_plan(store, plan)
        return plan

    def delete_lesson_plan(self, class_id: str, plan_id: str) -> ServiceResult:
        """
        Delete a lesson plan.

        A plan holding a lesson number deletes that lesson too, with the
        renumbering cascade. A plan without one is simply removed.
        """
        return self._mutate(class_id, f"Deleting lesson plan {plan_id}", self._delete_lesson_plan, plan_id)

    def _delete_lesson_plan(self, store: ClassStore, plan_id: str) -> Dict[str, Any]:
        plan = self._plan(store, plan_id)
        if plan.is_numbered:
            result = self._delete_lesson(store, plan.lesson_number)
        else:
            store.lesson_plans.remove(plan)
            result = {"deleted": None, "renumbered": {}}
        result["plan_id"] = plan_id
        return result

    # =========================================================================
    # IMPORT
    # =========================================================================

    def import_activities(self, class_id: str, rows: Iterable[Sequence[Any]]) -> ServiceResult:
        """
        Import spreadsheet rows.

        Activities are merged into the library by (name, category, lesson
        number), last write wins. The lessons named by the rows are rebuilt
        from them, and lesson numbers are compacted if the result has gaps.

        Returns:
            ServiceResult with the imported activities; metadata["import"]
            holds the ImportSummary
        """
        return self._mutate(class_id, "Importing activities", self._import_activities, list(rows))

    def _import_activities(self, store: ClassStore, rows: List[Sequence[Any]]) -> _Outcome:
        parsed, summary = self.importer.parse(rows)

        merged: Dict[tuple, Activity] = {a.import_key: a for a in store.activities}
        for activity in parsed:
            previous = merged.get(activity.import_key)
            if previous is not None:
                activity.remote_id, activity.local_id = previous.remote_id, previous.local_id
            merged[activity.import_key] = activity
        store.activities = list(merged.values())

        by_lesson: Dict[str, List[Activity]] = {}
        for activity in parsed:
            by_lesson.setdefault(activity.lesson_number, []).append(activity)
        for number, activities in by_lesson.items():
            record = store.lessons.get(number) or LessonRecord(number)
            record.replace_activities(activities, self.category_order)
            store.lessons[number] = record

        numbers = store.all_lesson_numbers()
        if not is_dense(numbers):
            mapping = renumbering.dense_mapping(numbers)
            renumbering.apply_mapping(store, mapping)
            summary.renumbered = renumbering.moved_entries(mapping)
            self.logger.warning(f"Imported lesson numbers had gaps; renumbered {summary.renumbered}")

        imported = [store.library_activity(a.identifier) for a in parsed]
        summary.lesson_numbers = sorted({a.lesson_number for a in imported}, key=int)
        return _Outcome(imported, {"import": summary.to_dict()})

    # =========================================================================
    # READ-ONLY PROJECTIONS
    # =========================================================================

    def all_lessons_data(self, class_id: str) -> Dict[str, LessonRecord]:
        return self._read(class_id, lambda s: {n: s.lessons[n] for n in s.lesson_numbers()})

    def lesson(self, class_id: str, lesson_number: str) -> Optional[LessonRecord]:
        number = normalize_lesson_number(lesson_number)
        return self._read(class_id, lambda s: s.lessons.get(number))

    def lesson_numbers(self, class_id: str) -> List[str]:
        return self._read(class_id, lambda s: s.lesson_numbers())

    def teaching_units(self, class_id: str) -> List[str]:
        return self._read(class_id, lambda s: s.teaching_units())

    def half_terms(self, class_id: str) -> List[HalfTerm]:
        return self._read(class_id, lambda s: s.half_terms)

    def lessons_for_half_term(self, class_id: str, half_term_id: str) -> List[LessonRecord]:
        """Lesson records of a half-term, in its display order."""
        def project(store: ClassStore) -> List[LessonRecord]:
            half_term = self._half_term(store, half_term_id)
            return [store.lessons[n] for n in half_term.lessons if n in store.lessons]
        return self._read(class_id, project)

    def term_position(self, class_id: str, lesson_number: str, half_term_id: str) -> Optional[int]:
        """1-based position of a lesson within a half-term, recomputed on every call."""
        number = normalize_lesson_number(lesson_number)
        return self._read(class_id, lambda s: self._half_term(s, half_term_id).position_of(number))

    def units(self, class_id: str) -> List[Unit]:
        return self._read(class_id, lambda s: s.units)

    def lesson_plans(self, class_id: str) -> List[LessonPlan]:
        return self._read(class_id, lambda s: s.lesson_plans)

    def activities(self, class_id: str) -> List[Activity]:
        return self._read(class_id, lambda s: s.activities)

    def lesson_standards(self, class_id: str) -> Dict[str, List[str]]:
        return self._read(class_id, lambda s: s.standards.to_dict())

    def sync_status(self, class_id: str) -> Dict[CollectionKey, CollectionSyncState]:
        return {key: self.coordinator.sync_status(key, class_id) for key in CollectionKey}

    def unsaved_collections(self, class_id: str) -> List[CollectionKey]:
        """Collections whose in-memory state has not reached the local cache."""
        with self._class_lock(class_id):
            live = self._store(class_id)
            return self._persisted[class_id].changed_collections(live)

    def flush(self, class_id: str) -> ServiceResult:
        """
        Write collections left unsaved by a failed local write.

        Returns:
            ServiceResult with the written collections in metadata["changed"]
        """
        def run() -> _Outcome:
            written = self._persist(class_id, self._store(class_id))
            return _Outcome(data=written["changed"], metadata=written)

        with self._class_lock(class_id):
            result = self.safe_execute(f"Saving class {class_id}", run)
        return self._unwrap(result)


# =============================================================================
# FACTORY
# =============================================================================

def build_consistency_engine(
    settings: Optional[PlannerSettings] = None,
    remote: Any = None,
    local_store: Any = None,
) -> ConsistencyEngine:
    """
    Wire the local cache, remote client, coordinator and engine together.

    Args:
        settings: Planner settings (default: resolved settings)
        remote: Remote store client (default: Supabase when configured)
        local_store: Local cache (default: SQLite file from settings)
    """
    from planner_core.data.supabase_client import RemoteStoreClient
    from planner_core.offline.local_cache import get_local_cache

    settings = settings or get_settings()
    if local_store is None:
        local_store = get_local_cache(settings.local_db_path, settings.max_entry_bytes)
    if remote is None and settings.remote_configured:
        remote = RemoteStoreClient(settings=settings)

    coordinator = PersistenceCoordinator(local_store, remote, settings=settings)
    if not settings.replicate_inline:
        coordinator.sync_engine.start()
    return ConsistencyEngine(coordinator, settings)


# Singleton accessor
_engine: Optional[ConsistencyEngine] = None
_engine_lock = threading.Lock()


def get_consistency_engine() -> ConsistencyEngine:
    """Get the global ConsistencyEngine instance."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_consistency_engine()
    return _engine
