# =============================================================================
# planner_core/models/unit.py
# Unit - a curriculum grouping of lessons
# =============================================================================

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from planner_core.errors import ValidationError


@dataclass
class Unit:
    """Named grouping of lesson numbers. References lessons, never owns them."""
    name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    lesson_numbers: List[str] = field(default_factory=list)
    color: str = "#3B82F6"
    term: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.name = (self.name or "").strip()
        if not self.name:
            raise ValidationError("Unit name is required", field="name")
        self.lesson_numbers = [str(n) for n in self.lesson_numbers]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "lesson_numbers": list(self.lesson_numbers),
            "color": self.color,
            "term": self.term,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Unit:
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            description=data.get("description") or "",
            lesson_numbers=list(data.get("lesson_numbers") or []),
            color=data.get("color") or "#3B82F6",
            term=data.get("term"),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            pass
    return datetime.now()
