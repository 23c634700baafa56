# =============================================================================
# tests/unit/test_activity_import.py
# Unit Tests for Activity Import and Merge
# =============================================================================

import pytest

from planner_core.services.activity_import import ActivityImporter

from conftest import CLASS_ID, add_lessons, half_term_lessons, lesson_names


def row(lesson, category, name, description="", level="", minutes="5", video="", music="", backing="",
        resource="", unit=""):
    return [lesson, category, name, description, level, minutes, video, music, backing, resource, unit]


class TestParsing:
    """Test row normalisation"""

    def test_blank_lesson_numbers_inherit(self):
        activities, summary = ActivityImporter().parse([
            row("", "Welcome", "Hello Song"),
            row("2", "Welcome", "Hello Again"),
            row("", "Goodbye", "Bye Song"),
        ])

        assert [(a.name, a.lesson_number) for a in activities] == [
            ("Hello Song", "1"),
            ("Hello Again", "2"),
            ("Bye Song", "2"),
        ]
        assert summary.lesson_numbers == ["1", "2"]

    def test_incomplete_and_short_rows_skipped(self):
        activities, summary = ActivityImporter().parse([
            ["1", "Welcome"],
            row("1", "", "No Category"),
            row("1", "Welcome", ""),
            row("1", "Welcome", "Hello Song"),
        ])

        assert [a.name for a in activities] == ["Hello Song"]
        assert summary.skipped_short == 1
        assert summary.skipped_incomplete == 2
        assert summary.rows_skipped == 3

    def test_invalid_lesson_numbers_skipped(self):
        activities, summary = ActivityImporter().parse([
            row("one", "Welcome", "Hello Song"),
            row("0", "Welcome", "Zero"),
            row("3", "Welcome", "Valid"),
        ])

        assert [a.name for a in activities] == ["Valid"]
        assert summary.skipped_invalid_number == 2

    @pytest.mark.parametrize("minutes,expected", [
        ("10", 10),
        ("10 mins", 10),
        ("", 0),
        ("-4", 0),
        ("abc", 0),
        (7.0, 7),
    ])
    def test_minutes_coerced(self, minutes, expected):
        activities, _ = ActivityImporter().parse([row("1", "Welcome", "Hello Song", minutes=minutes)])
        assert activities[0].duration == expected

    def test_quotes_stripped_and_links_mapped(self):
        activities, _ = ActivityImporter().parse([
            row("1", "Welcome", "Hello Song", description='"Sing it loud"',
                video="http://v", resource="http://sheet", level="Reception", unit="Pulse"),
        ])
        activity = activities[0]

        assert activity.description == "Sing it loud"
        assert activity.resources == {"video": "http://v", "worksheet": "http://sheet"}
        assert activity.year_groups == ["Reception"]
        assert activity.unit_name == "Pulse"

    def test_last_duplicate_wins(self):
        activities, summary = ActivityImporter().parse([
            row("1", "Welcome", "Hello Song", minutes="3"),
            row("1", "Welcome", "Hello Song", minutes="8"),
            row("2", "Welcome", "Hello Song", minutes="4"),
        ])

        assert [(a.lesson_number, a.duration) for a in activities] == [("1", 8), ("2", 4)]
        assert summary.duplicates_replaced == 1

    def test_skip_header(self):
        activities, summary = ActivityImporter(skip_header=True).parse([
            row("Lesson", "Category", "Activity"),
            row("1", "Welcome", "Hello Song"),
        ])

        assert summary.rows_read == 1
        assert [a.name for a in activities] == ["Hello Song"]


class TestImportMerge:
    """Test merging imported activities into a class"""

    def test_import_builds_lessons_and_library(self, engine):
        result = engine.import_activities(CLASS_ID, [
            row("1", "Welcome", "Hello Song"),
            row("1", "Goodbye", "Bye Song"),
            row("2", "Core Songs", "Five Little Ducks", minutes="10"),
        ])

        assert result.success
        assert len(result.data) == 3
        assert result.metadata["import"]["activities"] == 3
        assert lesson_names(engine) == {"1": ["Hello Song", "Bye Song"], "2": ["Five Little Ducks"]}
        assert engine.lesson(CLASS_ID, "2").total_time == 10
        assert len(engine.activities(CLASS_ID)) == 3

    def test_reimport_keeps_ids_and_updates(self, engine):
        first = engine.import_activities(CLASS_ID, [row("1", "Welcome", "Hello Song", minutes="3")]).data[0]

        second = engine.import_activities(CLASS_ID, [row("1", "Welcome", "Hello Song", minutes="6")]).data[0]

        library = engine.activities(CLASS_ID)
        assert len(library) == 1
        assert library[0].duration == 6
        assert second.identifier == first.identifier

    def test_import_replaces_only_named_lessons(self, engine):
        add_lessons(engine, 3)
        engine.update_lesson_title(CLASS_ID, "2", "Keep Me")

        engine.import_activities(CLASS_ID, [row("2", "Welcome", "Replacement")])

        assert lesson_names(engine) == {
            "1": ["Activity 1"],
            "2": ["Replacement"],
            "3": ["Activity 3"],
        }
        assert engine.lesson(CLASS_ID, "2").title == "Keep Me"

    def test_gapped_import_is_compacted(self, engine):
        result = engine.import_activities(CLASS_ID, [
            row("2", "Welcome", "Two"),
            row("5", "Welcome", "Five"),
        ])

        assert result.success
        assert lesson_names(engine) == {"1": ["Two"], "2": ["Five"]}
        assert result.metadata["import"]["renumbered"] == {"2": "1", "5": "2"}
        assert result.metadata["import"]["lesson_numbers"] == ["1", "2"]
        assert sorted(a.lesson_number for a in result.data) == ["1", "2"]

    def test_import_keeps_half_term_assignments(self, engine):
        add_lessons(engine, 2)
        engine.assign_half_term(CLASS_ID, "2", "A1")

        engine.import_activities(CLASS_ID, [row("3", "Welcome", "Three")])

        assert half_term_lessons(engine)["A1"] == ["2"]
        assert engine.lesson_numbers(CLASS_ID) == ["1", "2", "3"]
