"""
Alert routes: automatic alerts raised by the detection pipeline.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import Alert, AlertKind
from academic_risk.services.shared.schemas import AlertOut

router = APIRouter()


@router.get("/alerts", response_model=list[AlertOut])
def list_alerts(
    kind:        Optional[str] = None,
    unread_only: bool          = False,
    limit:       int           = Query(default=100, le=500),
    db=Depends(get_db),
):
    q = db.query(Alert).filter(Alert.active == True)  # noqa: E712
    if kind:
        try:
            q = q.filter(Alert.kind == AlertKind(kind))
        except ValueError:
            pass
    if unread_only:
        q = q.filter(Alert.read == False)  # noqa: E712
    rows = q.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit).all()
    return [AlertOut.model_validate(r) for r in rows]


@router.post("/alerts/{alert_id}/read", response_model=AlertOut)
def mark_alert_read(alert_id: int, db=Depends(get_db)):
    alert = db.get(Alert, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    alert.read = True
    db.commit()
    db.refresh(alert)
    return AlertOut.model_validate(alert)
