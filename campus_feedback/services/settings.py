"""
System settings. Every update appends a snapshot; the newest row is in force
and reading never writes.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from campus_feedback.errors import ValidationError
from campus_feedback.models import SystemSettings
from campus_feedback.observability import log_event

FLAGS = ("feedback_enabled", "maintenance_mode", "allow_anonymous_feedback")

DEFAULTS = {
    "feedback_enabled": True,
    "maintenance_mode": False,
    "allow_anonymous_feedback": False,
}

_ALIASES = {
    "feedbackEnabled": "feedback_enabled",
    "maintenanceMode": "maintenance_mode",
    "allowAnonymousFeedback": "allow_anonymous_feedback",
}


def get_settings(session: Session) -> dict:
    """Settings in force; defaults (id None) when nothing was saved yet."""
    row = SystemSettings.current(session)
    if row is None:
        return dict(DEFAULTS, id=None, updated_by_id=None, updated_at=None)
    return row.to_dict()


def update_settings(session: Session, updates: Mapping[str, Any], updated_by_id: Optional[int] = None) -> SystemSettings:
    """
    Append a new snapshot. Flags left out of `updates` carry over from the
    settings in force. Values must be real booleans.
    """
    if not isinstance(updates, Mapping):
        raise ValidationError("settings must be an object", field="settings")
    raw = {_ALIASES.get(k, k): v for k, v in updates.items()}
    unknown = sorted(set(raw) - set(FLAGS))
    if unknown:
        raise ValidationError(f"Unknown settings: {unknown}", field=unknown[0])
    if not raw:
        raise ValidationError("No settings to update", field="settings")
    for name, value in raw.items():
        if not isinstance(value, bool):
            raise ValidationError(f"{name} must be true or false", field=name)

    current = get_settings(session)
    values = {name: raw.get(name, current[name]) for name in FLAGS}
    row = SystemSettings(updated_by_id=updated_by_id, **values)
    session.add(row)
    session.flush()

    log_event("settings_updated", settings_id=row.id, updated_by_id=updated_by_id, changed=sorted(raw), **values)
    return row
