# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import copy
import pytest
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

from planner_core.config import PlannerSettings
from planner_core.errors import RemoteStoreError
from planner_core.models.activity import Activity
from planner_core.models.collections import CollectionKey


CLASS_ID = "year-1"


# =============================================================================
# FAKE REMOTE STORE
# =============================================================================

class FakeRemote:
    """In-memory stand-in for RemoteStoreClient."""

    def __init__(self):
        self.is_configured = True
        self.fail = False
        self.collections: Dict[Tuple[CollectionKey, str], Any] = {}
        self.pushes: List[Tuple[CollectionKey, str]] = []
        self.fetches: List[Tuple[CollectionKey, str]] = []

    def _check(self, key: Optional[CollectionKey], operation: str) -> None:
        if self.fail:
            raise RemoteStoreError(
                "remote store unreachable",
                table=key.table if key else None,
                operation=operation,
            )

    def fetch_collection(self, key, class_id):
        self._check(key, "fetch")
        self.fetches.append((key, class_id))
        if key.local_only:
            return None
        return copy.deepcopy(self.collections.get((key, class_id)))

    def push_collection(self, key, class_id, payload):
        self._check(key, "push")
        if key.local_only:
            raise RemoteStoreError(f"{key.value} is stored locally only", operation="push")
        self.collections[(key, class_id)] = copy.deepcopy(payload)
        self.pushes.append((key, class_id))
        return 1

    def ping(self):
        self._check(None, "ping")
        return True


# =============================================================================
# STORAGE FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite file"""
    return PlannerSettings(local_db_path=tmp_path / "planner.db")


@pytest.fixture
def local_store(settings):
    """Initialized local cache store"""
    from planner_core.offline.local_cache import LocalCacheStore

    store = LocalCacheStore(settings.local_db_path, settings.max_entry_bytes)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def coordinator(local_store, remote, settings):
    from planner_core.offline.persistence import PersistenceCoordinator

    return PersistenceCoordinator(local_store, remote, settings=settings)


@pytest.fixture
def local_coordinator(local_store, settings):
    """Coordinator with no remote store (local-only mode)"""
    from planner_core.offline.persistence import PersistenceCoordinator

    return PersistenceCoordinator(local_store, None, settings=settings)


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def engine(coordinator, settings):
    """Consistency engine backed by the temp cache and the fake remote"""
    from planner_core.services.consistency_engine import ConsistencyEngine

    return ConsistencyEngine(coordinator, settings)


@pytest.fixture
def local_engine(local_coordinator, settings):
    from planner_core.services.consistency_engine import ConsistencyEngine

    return ConsistencyEngine(local_coordinator, settings)


@pytest.fixture
def engine_with_lessons(engine):
    """Engine whose class has lessons 1..5, one activity each"""
    add_lessons(engine, 5)
    return engine


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Replace the Streamlit calls made by the error handlers"""
    mock_st = MagicMock()
    monkeypatch.setattr("planner_core.errors.handlers.st", mock_st)
    return mock_st


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.eq.return_value.range.return_value.execute.return_value.data = []
    return mock_client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_activity(name: str, category: str = "Welcome", duration: int = 5, **kwargs) -> Activity:
    return Activity(name=name, category=category, duration=duration, **kwargs)


def add_lessons(engine, count: int, class_id: str = CLASS_ID) -> None:
    """Create lessons 1..count, each holding one activity named after it."""
    for number in range(1, count + 1):
        result = engine.add_activity_to_lesson(
            class_id, str(number), make_activity(f"Activity {number}")
        )
        assert result.success, result.error


def lesson_names(engine, class_id: str = CLASS_ID) -> Dict[str, List[str]]:
    """Lesson number -> names of the activities it holds."""
    return {
        number: [a.name for a in record.activities]
        for number, record in engine.all_lessons_data(class_id).items()
    }


def half_term_lessons(engine, class_id: str = CLASS_ID) -> Dict[str, List[str]]:
    return {ht.id: ht.lessons for ht in engine.half_terms(class_id)}
