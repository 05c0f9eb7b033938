"""
Detection API routes.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func

from academic_risk.services.analytics.status import InvalidTransitionError, transition_detection
from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import AnomalyType, AuditLog, Detection, DetectionStatus
from academic_risk.services.shared.schemas import DetectionOut, StatusChangeRequest

router = APIRouter()


@router.get("/detections", response_model=list[DetectionOut])
def list_detections(
    status:       Optional[DetectionStatus] = None,
    anomaly_type: Optional[AnomalyType]     = None,
    min_priority: Optional[int]             = None,
    student_id:   Optional[int]             = None,
    criterion_id: Optional[int]             = None,
    run_id:       Optional[int]             = None,
    since:        Optional[str]             = None,
    limit:        int                       = Query(default=200, le=1000),
    db=Depends(get_db),
):
    q = db.query(Detection)
    if status:
        q = q.filter(Detection.status == status)
    if anomaly_type:
        q = q.filter(Detection.anomaly_type == anomaly_type)
    if min_priority:
        q = q.filter(Detection.priority >= min_priority)
    if student_id:
        q = q.filter(Detection.student_id == student_id)
    if criterion_id:
        q = q.filter(Detection.criterion_id == criterion_id)
    if run_id:
        q = q.filter(Detection.run_id == run_id)
    if since:
        try:
            since_dt = datetime.fromisoformat(since.replace("Z", "+00:00"))
            q = q.filter(Detection.detected_at >= since_dt)
        except ValueError:
            pass
    rows = q.order_by(Detection.priority.desc(), Detection.detected_at.desc()).limit(limit).all()
    return [DetectionOut.model_validate(r) for r in rows]


@router.get("/detections/summary")
def detection_summary(db=Depends(get_db)):
    """Counts by status, anomaly type and priority for the dashboard header."""
    by_status = dict(
        db.query(Detection.status, func.count(Detection.id)).group_by(Detection.status).all()
    )
    by_type = dict(
        db.query(Detection.anomaly_type, func.count(Detection.id)).group_by(Detection.anomaly_type).all()
    )
    by_priority = dict(
        db.query(Detection.priority, func.count(Detection.id)).group_by(Detection.priority).all()
    )
    return {
        "total":       sum(by_status.values()),
        "by_status":   {s.value: by_status.get(s, 0) for s in DetectionStatus},
        "by_type":     {t.value: n for t, n in by_type.items()},
        "by_priority": {str(p): n for p, n in sorted(by_priority.items())},
    }


@router.get("/detections/{detection_id}", response_model=DetectionOut)
def get_detection(detection_id: int, db=Depends(get_db)):
    row = db.get(Detection, detection_id)
    if not row:
        raise HTTPException(status_code=404, detail="Detection not found")
    return DetectionOut.model_validate(row)


@router.post("/detections/{detection_id}/status", response_model=DetectionOut)
def change_status(detection_id: int, req: StatusChangeRequest, db=Depends(get_db)):
    """Move a detection through the review workflow. Returns 409 on an invalid transition."""
    detection = db.get(Detection, detection_id)
    if not detection:
        raise HTTPException(status_code=404, detail="Detection not found")
    try:
        transition_detection(db, detection, req.status, actor=req.reviewed_by, notes=req.notes)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    db.commit()
    db.refresh(detection)
    return DetectionOut.model_validate(detection)


@router.get("/detections/{detection_id}/history")
def detection_history(detection_id: int, db=Depends(get_db)):
    rows = (
        db.query(AuditLog)
          .filter(AuditLog.resource == f"detection:{detection_id}")
          .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
          .all()
    )
    return [
        {
            "actor":     r.actor,
            "action":    r.action,
            "detail":    r.detail,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
        }
        for r in rows
    ]
