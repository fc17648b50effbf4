from __future__ import annotations

import json
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockcontrol.logging_config import get_logger
from stockcontrol.models import AuditLog

logger = get_logger("audit")


def log_event(
    db: Session,
    actor_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[Any] = None,
    detail: Optional[dict[str, Any]] = None,
) -> None:
    row = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        detail=json.dumps(detail, ensure_ascii=False, default=str) if detail is not None else None,
    )
    db.add(row)
    try:
        db.commit()
    except SQLAlchemyError as e:
        # The audited operation already committed; losing its trail row is not fatal.
        db.rollback()
        logger.warning("Could not write audit event %s %s/%s: %s", action, entity_type, entity_id, e)
