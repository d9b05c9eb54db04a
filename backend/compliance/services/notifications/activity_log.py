"""
Activity Log

Append-only business audit trail. Entries are added to the caller's
session and committed together with the change they describe, so a
rolled-back transition leaves no log entry behind.
"""
import json
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import ActivityAction, ActivityLogDB


def describe_changes(old_values: Optional[Dict[str, Any]], new_values: Optional[Dict[str, Any]]) -> str:
    """Render 'field: old -> new' for every field whose value differs."""
    if not old_values or not new_values:
        return ""
    changes = []
    for key, new_val in new_values.items():
        old_val = old_values.get(key)
        if json.dumps(old_val, default=str, sort_keys=True) != json.dumps(new_val, default=str, sort_keys=True):
            changes.append(f"{key}: {json.dumps(old_val, default=str)} -> {json.dumps(new_val, default=str)}")
    return ", ".join(changes)


class ActivityLogger:
    """Writes ActivityLogDB rows into the current transaction."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def log(
        self,
        action: ActivityAction,
        entity_type: str,
        description: str,
        entity_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityLogDB:
        metadata = dict(metadata or {})

        changes = describe_changes(metadata.get("old_values"), metadata.get("new_values"))
        if changes:
            description = f"{description} | Changes: {changes}"

        entry = ActivityLogDB(
            id=str(uuid4()),
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            # Round-trip through JSON so dates and enums are stored as plain strings
            event_metadata=json.loads(json.dumps(metadata, default=str)) if metadata else None,
        )
        self.db.add(entry)
        return entry
