# =============================================================================
# planner_core/config/settings.py
# Runtime Settings for the Lesson Planner
# =============================================================================
"""
PlannerSettings - where the planner keeps its data and how it replicates.

Settings are resolved in this order:
1. Streamlit secrets (.streamlit/secrets.toml)
2. Environment variables
3. Built-in defaults

Expected secrets.toml format:
    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [planner]
    local_db_path = "local_data/planner.db"
    remote_timeout = 10
    replicate_inline = true
    sync_interval = 30
    max_retry_attempts = 5
    max_entry_bytes = 5242880
    offline_retry_delay = 5
    auto_assign_half_term = true

Missing Supabase credentials put the planner in local-only mode.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import streamlit as st

from planner_core.errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "local_data" / "planner.db"

# Environment variable -> settings field
ENV_OVERRIDES = {
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
    "PLANNER_DB_PATH": "local_db_path",
    "PLANNER_REMOTE_TIMEOUT": "remote_timeout",
    "PLANNER_REPLICATE_INLINE": "replicate_inline",
    "PLANNER_SYNC_INTERVAL": "sync_interval",
    "PLANNER_MAX_RETRY_ATTEMPTS": "max_retry_attempts",
    "PLANNER_MAX_ENTRY_BYTES": "max_entry_bytes",
    "PLANNER_OFFLINE_RETRY_DELAY": "offline_retry_delay",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class PlannerSettings:
    """Resolved planner configuration."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    local_db_path: Path = DEFAULT_DB_PATH
    remote_timeout: float = 10.0        # Seconds allowed per remote call
    replicate_inline: bool = True       # Drain the sync queue right after each save
    sync_interval: float = 30.0         # Seconds between background drains
    max_retry_attempts: int = 5         # Attempts before a sync operation stays failed
    max_entry_bytes: int = 5 * 1024 * 1024
    offline_after_failures: int = 3
    offline_retry_delay: float = 5.0    # Seconds before retrying once offline; doubles per failure
    auto_assign_half_term: bool = True
    category_order: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.local_db_path = Path(self.local_db_path)
        self.remote_timeout = _to_float("remote_timeout", self.remote_timeout)
        self.sync_interval = _to_float("sync_interval", self.sync_interval)
        self.offline_retry_delay = _to_float("offline_retry_delay", self.offline_retry_delay)
        self.replicate_inline = _to_bool("replicate_inline", self.replicate_inline)
        self.auto_assign_half_term = _to_bool("auto_assign_half_term", self.auto_assign_half_term)
        self.max_retry_attempts = _to_int("max_retry_attempts", self.max_retry_attempts)
        self.max_entry_bytes = _to_int("max_entry_bytes", self.max_entry_bytes)
        self.offline_after_failures = _to_int("offline_after_failures", self.offline_after_failures)

        if self.remote_timeout <= 0:
            raise ConfigurationError("remote_timeout must be positive", config_key="remote_timeout")
        if self.max_retry_attempts < 1:
            raise ConfigurationError("max_retry_attempts must be at least 1", config_key="max_retry_attempts")
        if self.max_entry_bytes < 1:
            raise ConfigurationError("max_entry_bytes must be positive", config_key="max_entry_bytes")
        if self.offline_retry_delay < 0:
            raise ConfigurationError("offline_retry_delay cannot be negative", config_key="offline_retry_delay")

    @property
    def remote_configured(self) -> bool:
        """True when both Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)

    def with_overrides(self, **changes: Any) -> PlannerSettings:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for {name}: {value!r}", config_key=name)


def _to_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid integer for {name}: {value!r}", config_key=name)


def _to_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid number for {name}: {value!r}", config_key=name)


def _secrets_section(name: str) -> Dict[str, Any]:
    """Read one section of Streamlit secrets, or {} when secrets are unavailable."""
    try:
        if hasattr(st, "secrets") and name in st.secrets:
            return dict(st.secrets[name])
    except Exception as e:
        # No secrets.toml, or not running under Streamlit
        logger.debug(f"Streamlit secrets unavailable for [{name}]: {e}")
    return {}


def load_settings(**overrides: Any) -> PlannerSettings:
    """
    Resolve settings from Streamlit secrets, environment variables and defaults.

    Args:
        **overrides: Explicit values that win over every other source

    Returns:
        PlannerSettings
    """
    values: Dict[str, Any] = {}

    supabase = _secrets_section("supabase")
    if supabase.get("url"):
        values["supabase_url"] = supabase["url"]
    if supabase.get("key"):
        values["supabase_key"] = supabase["key"]

    known = set(PlannerSettings.__dataclass_fields__)
    for key, value in _secrets_section("planner").items():
        if key in known:
            values[key] = value
        else:
            logger.warning(f"Ignoring unknown planner setting: {key}")

    for env_name, field_name in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value and field_name not in values:
            values[field_name] = env_value

    values.update(overrides)
    settings = PlannerSettings(**values)

    if not settings.remote_configured:
        logger.info("Supabase credentials not configured; running in local-only mode")

    return settings


# Singleton accessor
_settings: Optional[PlannerSettings] = None


def get_settings() -> PlannerSettings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
