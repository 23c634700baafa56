# =============================================================================
# planner_core/services/__init__.py
# Service Layer for the Lesson Planner
# =============================================================================
"""
Service Layer for the Lesson Planner

The ConsistencyEngine is the only writer of a class's collections. Pages
call it and read its projections; they never edit collections directly.

Usage Example:
-------------
    from planner_core.services import get_consistency_engine

    engine = get_consistency_engine()
    result = engine.assign_half_term("year-1", "4", "A2")
    if not result:
        st.error(result.error)
"""

from planner_core.services.base_service import BaseService, ServiceResult
from planner_core.services.class_store import ClassStore
from planner_core.services.activity_import import ActivityImporter, ImportSummary
from planner_core.services.consistency_engine import (
    ConsistencyEngine,
    build_consistency_engine,
    get_consistency_engine,
)

__all__ = [
    # Base
    "BaseService",
    "ServiceResult",
    # State
    "ClassStore",
    # Import
    "ActivityImporter",
    "ImportSummary",
    # Engine
    "ConsistencyEngine",
    "build_consistency_engine",
    "get_consistency_engine",
]
