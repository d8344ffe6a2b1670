"""
Admin audit log.

Writes are best-effort: a failed audit insert is logged and rolled back,
never surfaced to the caller. Callers commit their own change before
recording the audit entry so a rollback here cannot undo it.
"""
import time
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from dashboard.auth.permissions import require_admin
from dashboard.models import AdminLog
from dashboard.schemas import AdminAuditEntry, Identity

logger = structlog.get_logger()


def _entry_id(db: Session, admin_id: str) -> str:
    """'{timestamp_ms}-{admin_id}', suffixed when that key is already taken."""
    base = f"{int(time.time() * 1000)}-{admin_id}"
    entry_id = base
    suffix = 1
    while db.get(AdminLog, entry_id) is not None:
        entry_id = f"{base}-{suffix}"
        suffix += 1
    return entry_id


def record_admin_action(
    db: Session,
    admin_id: str,
    action: str,
    target_user_id: Optional[str] = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> Optional[AdminLog]:
    """Append an audit entry; returns None if the write failed."""
    try:
        entry = AdminLog(
            id=_entry_id(db, admin_id),
            admin_id=admin_id,
            action=action,
            target_user_id=target_user_id,
            timestamp=datetime.utcnow(),
            details=details or {},
            ip_address=ip_address,
        )
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("audit_log_write_failed", action=action, admin_id=admin_id,
                       target_user_id=target_user_id, error=str(e))
        return None

    logger.info("audit_log_created", action=action, admin_id=admin_id, target_user_id=target_user_id)
    return entry


async def list_admin_logs(
    db: Session,
    caller: Identity,
    action: Optional[str] = None,
    target_user_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AdminAuditEntry]:
    """Newest-first audit entries, admin only."""
    require_admin(caller)

    query = db.query(AdminLog)
    if action:
        query = query.filter(AdminLog.action == action)
    if target_user_id:
        query = query.filter(AdminLog.target_user_id == target_user_id)

    rows = query.order_by(AdminLog.timestamp.desc(), AdminLog.id.desc()).offset(offset).limit(limit).all()
    return [AdminAuditEntry.model_validate(row) for row in rows]
