"""
Audit log API routes.

Read-only, newest-first view of privileged actions (admin only).
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dashboard.auth.identity import get_current_identity
from dashboard.database import get_db
from dashboard.schemas import AdminAuditEntry, Identity
from dashboard.services.audit import list_admin_logs

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=List[AdminAuditEntry])
async def list_audit_logs(
    action: Optional[str] = None,
    target_user_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000, description="Number of entries to return"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await list_admin_logs(db, current, action=action, target_user_id=target_user_id,
                                 limit=limit, offset=offset)
