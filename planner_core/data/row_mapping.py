# =============================================================================
# planner_core/data/row_mapping.py
# Collection snapshots <-> remote table rows
# =============================================================================
"""
Translate cache payloads to the rows of the remote tables and back.

Every row carries `class_id` so one table serves all classes.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from planner_core.errors import RemoteStoreError
from planner_core.models.activity import Activity
from planner_core.models.collections import CollectionKey
from planner_core.models.half_term import DEFAULT_HALF_TERMS, HalfTerm
from planner_core.models.lesson_plan import LessonPlan


def payload_to_rows(key: CollectionKey, class_id: str, payload: Any) -> List[Dict[str, Any]]:
    """Rows to upsert for a collection snapshot."""
    if key is CollectionKey.ACTIVITIES:
        rows = [Activity.from_dict(a).to_row() for a in payload or []]
        # One row per natural key, last one wins
        rows = list({(r["activity"], r["category"], r["lesson_number"]): r for r in rows}.values())
    elif key is CollectionKey.LESSONS:
        payload = payload or key.default_payload()
        rows = [{
            "id": class_id,
            "data": payload.get("lessons", {}),
            "lesson_numbers": list(payload.get("lesson_numbers", [])),
            "teaching_units": list(payload.get("teaching_units", [])),
        }]
    elif key is CollectionKey.STANDARDS:
        rows = [
            {"id": number, "standards": list(standards)}
            for number, standards in (payload or {}).items()
        ]
    elif key is CollectionKey.HALF_TERMS:
        rows = [HalfTerm.from_dict(ht).to_dict() for ht in payload or []]
    elif key is CollectionKey.LESSON_PLANS:
        rows = [LessonPlan.from_dict(p).to_row() for p in payload or []]
    else:
        raise RemoteStoreError(f"{key.value} has no remote table", operation="push")

    for row in rows:
        row["class_id"] = class_id
    return rows


def rows_to_payload(key: CollectionKey, rows: List[Dict[str, Any]]) -> Optional[Any]:
    """
    Collection snapshot for fetched rows, or None when there are none.

    Rows go through pandas so SQL NULLs and NaN both come out as None.
    """
    if not rows:
        return None

    df = pd.DataFrame(rows).drop(columns=["class_id"], errors="ignore")
    df = df.astype(object).replace({np.nan: None})
    records = df.to_dict(orient="records")

    if key is CollectionKey.ACTIVITIES:
        return [Activity.from_row(r).to_dict() for r in records]
    if key is CollectionKey.LESSONS:
        row = records[0]
        return {
            "lessons": row.get("data") or {},
            "lesson_numbers": list(row.get("lesson_numbers") or []),
            "teaching_units": list(row.get("teaching_units") or []),
        }
    if key is CollectionKey.STANDARDS:
        return {str(r["id"]): list(r.get("standards") or []) for r in records}
    if key is CollectionKey.HALF_TERMS:
        order = {ht_id: i for i, (ht_id, _, _) in enumerate(DEFAULT_HALF_TERMS)}
        records.sort(key=lambda r: order.get(r["id"], len(order)))
        return [HalfTerm.from_dict(r).to_dict() for r in records]
    if key is CollectionKey.LESSON_PLANS:
        return [LessonPlan.from_row(r).to_dict() for r in records]
    raise RemoteStoreError(f"{key.value} has no remote table", operation="fetch")
