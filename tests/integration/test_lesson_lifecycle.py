# =============================================================================
# tests/integration/test_lesson_lifecycle.py
# Integration Tests for a Class Lifecycle (Import → Assign → Delete → Reload)
# =============================================================================

import random
import pytest

from planner_core.models.collections import CollectionKey
from planner_core.models.lesson_plan import LessonPlan
from planner_core.offline.local_cache import LocalCacheStore
from planner_core.offline.sync_engine import SyncStatus
from planner_core.services.consistency_engine import ConsistencyEngine, build_consistency_engine

from conftest import CLASS_ID, add_lessons, half_term_lessons, lesson_names, make_activity


def import_row(lesson, category, name, minutes="5"):
    return [lesson, category, name, "", "", minutes, "", "", "", "", ""]


def assert_consistent(engine, class_id=CLASS_ID):
    """Check the cross-collection invariants of one class."""
    numbers = engine.lesson_numbers(class_id)
    assert numbers == [str(n) for n in range(1, len(numbers) + 1)]

    seen = set()
    for half_term in engine.half_terms(class_id):
        assert set(half_term.lessons) <= set(numbers)
        assert not seen & set(half_term.lessons)
        seen.update(half_term.lessons)

    assert set(engine.lesson_standards(class_id)) <= set(numbers)
    for number, record in engine.all_lessons_data(class_id).items():
        assert all(a.lesson_number == number for a in record.activities)
    for plan in engine.lesson_plans(class_id):
        assert not plan.is_numbered or plan.lesson_number in numbers


class TestLessonLifecycleIntegration:
    """
    Integration tests for the complete class lifecycle.

    Tests the flow:
    1. Spreadsheet import
    2. Half-term assignment, standards and plans
    3. Lesson deletion with renumbering
    4. Reload from the local cache and the remote store
    """

    @pytest.fixture
    def planned_class(self, engine):
        """Five imported lessons with half-terms, standards and a plan"""
        result = engine.import_activities(CLASS_ID, [
            import_row(str(n), "Core Songs", f"Song {n}") for n in range(1, 6)
        ])
        assert result.success, result.error

        engine.assign_half_term(CLASS_ID, "3", "A1")
        engine.assign_half_term(CLASS_ID, "5", "A2")
        engine.add_standard_to_lesson(CLASS_ID, "4", "Keeps a steady beat")
        engine.save_lesson_plan(CLASS_ID, LessonPlan(id="p5", lesson_number="5", title="Finale"))
        return engine

    def test_delete_middle_lesson_cascades(self, planned_class):
        engine = planned_class

        result = engine.delete_lesson(CLASS_ID, "3")

        assert result.success
        assert engine.lesson_numbers(CLASS_ID) == ["1", "2", "3", "4"]
        assert lesson_names(engine)["3"] == ["Song 4"]
        lessons = half_term_lessons(engine)
        assert lessons["A1"] == []
        assert lessons["A2"] == ["4"]
        assert engine.lesson_standards(CLASS_ID) == {"3": ["Keeps a steady beat"]}
        assert engine.lesson_plans(CLASS_ID)[0].lesson_number == "4"
        assert engine.lesson(CLASS_ID, "4").title == "Finale"
        assert_consistent(engine)

    def test_deleting_numbered_plan_deletes_lesson(self, planned_class):
        engine = planned_class
        engine.save_lesson_plan(CLASS_ID, LessonPlan(id="p2", lesson_number="2"))

        result = engine.delete_lesson_plan(CLASS_ID, "p2")

        assert result.success
        assert engine.lesson_numbers(CLASS_ID) == ["1", "2", "3", "4"]
        assert [p.id for p in engine.lesson_plans(CLASS_ID)] == ["p5"]
        assert half_term_lessons(engine)["A1"] == ["2"]
        assert_consistent(engine)

    def test_random_edits_keep_numbering_dense(self, engine):
        rng = random.Random(7)
        add_lessons(engine, 12)
        half_term_ids = [ht.id for ht in engine.half_terms(CLASS_ID)]

        for step in range(40):
            numbers = engine.lesson_numbers(CLASS_ID)
            action = rng.choice(["delete", "create", "assign", "standard"])

            if action == "delete" and numbers:
                assert engine.delete_lesson(CLASS_ID, rng.choice(numbers)).success
            elif action == "create":
                assert engine.create_lesson(CLASS_ID, title=f"Step {step}").success
            elif action == "assign" and numbers:
                # Conflicts are expected; they must leave the class unchanged
                engine.assign_half_term(CLASS_ID, rng.choice(numbers), rng.choice(half_term_ids))
            elif action == "standard" and numbers:
                engine.add_standard_to_lesson(CLASS_ID, rng.choice(numbers), f"Standard {step}")

            assert_consistent(engine)

    def test_conflicting_assignment_leaves_state_untouched(self, planned_class):
        engine = planned_class
        before = half_term_lessons(engine)

        result = engine.assign_half_term(CLASS_ID, "3", "SP1")

        assert not result.success
        assert result.error_code == "HALFTERM_001"
        assert half_term_lessons(engine) == before


class TestDurabilityIntegration:
    """Local-first durability across engine restarts"""

    def test_offline_edits_survive_restart(self, engine, remote, local_store, settings):
        remote.fail = True
        add_lessons(engine, 3)
        engine.assign_half_term(CLASS_ID, "2", "SP2")

        status = engine.sync_status(CLASS_ID)[CollectionKey.HALF_TERMS].status
        assert status in (SyncStatus.PENDING, SyncStatus.FAILED)

        restarted = build_consistency_engine(settings=settings, local_store=local_store)
        opened = restarted.open_class(CLASS_ID)

        assert opened.success
        assert opened.data[CollectionKey.LESSONS.value] == "local"
        assert restarted.lesson_numbers(CLASS_ID) == ["1", "2", "3"]
        assert half_term_lessons(restarted)["SP2"] == ["2"]

    def test_pending_edits_replicate_when_remote_returns(self, engine, remote, coordinator):
        remote.fail = True
        add_lessons(engine, 2)
        engine.close_class(CLASS_ID)

        remote.fail = False
        # Repeated failures put the connection into backoff; a health check ends it
        coordinator.connection_manager.check_connection()
        reopened = ConsistencyEngine(coordinator, coordinator.settings)

        assert reopened.lesson_numbers(CLASS_ID) == ["1", "2"]
        assert remote.collections[(CollectionKey.LESSONS, CLASS_ID)]["lesson_numbers"] == ["1", "2"]

    def test_new_device_loads_from_remote(self, engine, remote, settings, tmp_path):
        add_lessons(engine, 3)
        engine.add_standard_to_lesson(CLASS_ID, "1", "Sings in tune")

        other_store = LocalCacheStore(tmp_path / "other.db", settings.max_entry_bytes)
        other_store.initialize()
        other_device = build_consistency_engine(settings=settings, remote=remote, local_store=other_store)

        opened = other_device.open_class(CLASS_ID)

        assert opened.data[CollectionKey.LESSONS.value] == "remote"
        assert lesson_names(other_device) == lesson_names(engine)
        assert other_device.lesson_standards(CLASS_ID) == {"1": ["Sings in tune"]}
        assert other_store.get(f"lesson-data-{CLASS_ID}") is not None
        other_store.close()

    def test_local_only_class(self, local_engine, local_store):
        local_engine.add_activity_to_lesson(CLASS_ID, "1", make_activity("Hello Song"))

        statuses = local_engine.sync_status(CLASS_ID)

        assert all(state.status == SyncStatus.LOCAL_ONLY for state in statuses.values())
        assert local_store.get_pending_count() == 0
