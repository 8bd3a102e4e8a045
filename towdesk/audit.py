from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import AuditLog, Profile

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = frozenset(
    {
        "report_created",
        "report_updated",
        "report_deleted",
        "report_assigned",
        "report_status_changed",
        "user_created",
        "user_updated",
        "user_deleted",
        "role_changed",
        "clock_in",
        "clock_out",
        "settings_updated",
        "application_reviewed",
    }
)


def _to_json_safe(value: Any) -> Any:
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_json_safe(v) for v in value]
    return value


def log_audit_event(
    db: Session,
    *,
    actor: Optional[Profile],
    action: str,
    entity_type: str,
    entity_id: str | int | None = None,
    old_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
    details: str | None = None,
) -> Optional[AuditLog]:
    """Append an audit entry after the audited change has been committed.

    Failures are logged and never propagate to the caller.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    entry = AuditLog(
        user_id=actor.user_id if actor else None,
        user_name=actor.name if actor else "SYSTEM",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_value=_to_json_safe(old_value) if old_value is not None else None,
        new_value=_to_json_safe(new_value) if new_value is not None else None,
        details=details,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to write audit entry %s for %s %s", action, entity_type, entity_id)
        return None
    logger.debug("Audit %s on %s %s by %s", action, entity_type, entity_id, entry.user_name)
    return entry
