# =============================================================================
# planner_core/config/__init__.py
# Planner Configuration
# =============================================================================

from .settings import PlannerSettings, load_settings, get_settings

__all__ = ["PlannerSettings", "load_settings", "get_settings"]
