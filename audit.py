"""Best-effort audit trail for deployment mutations.

Call after the primary write has committed. A failure here is rolled back
and logged, never raised: the caller's result is already final.
"""
from __future__ import annotations

import logging
from typing import Any, Literal, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from datetime_utils import utcnow
from orm import AuditLogORM

logger = logging.getLogger(__name__)

AuditSeverity = Literal["INFO", "WARN", "CRITICAL"]


def _jsonable(data: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if data is None:
        return None
    return {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in data.items()}


def write_audit_log(
    db: Session,
    *,
    action: str,
    table_name: str,
    record_id: str,
    user_id: Optional[str] = None,
    old_data: Optional[dict[str, Any]] = None,
    new_data: Optional[dict[str, Any]] = None,
    severity: AuditSeverity = "INFO",
) -> bool:
    try:
        db.add(
            AuditLogORM(
                id=str(uuid4()),
                user_id=user_id,
                action=action,
                table_name=table_name,
                record_id=record_id,
                old_data=_jsonable(old_data),
                new_data=_jsonable(new_data),
                severity=severity,
                created_at=utcnow(),
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "failed to write audit log action=%s table=%s record_id=%s: %s",
            action,
            table_name,
            record_id,
            exc,
        )
        return False
    return True
