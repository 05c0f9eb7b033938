"""
AuditLog query routes.
Provides read-only access to the immutable audit trail.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import AuditLog

router = APIRouter()


@router.get("/audit")
def list_audit_logs(
    action:   Optional[str] = None,
    resource: Optional[str] = None,
    actor:    Optional[str] = None,
    limit:    int           = Query(default=50, le=500),
    offset:   int           = 0,
    db=Depends(get_db),
):
    """
    Query the audit log.
    Supports filtering by action (e.g. "detection_status_changed") and resource prefix (e.g. "detection:").
    """
    q = db.query(AuditLog)
    if action:
        q = q.filter(AuditLog.action == action)
    if resource:
        q = q.filter(AuditLog.resource.like(f"{resource}%"))
    if actor:
        q = q.filter(AuditLog.actor == actor)
    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
    return [
        {
            "id":        r.id,
            "actor":     r.actor,
            "action":    r.action,
            "resource":  r.resource,
            "detail":    r.detail,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
        }
        for r in rows
    ]
