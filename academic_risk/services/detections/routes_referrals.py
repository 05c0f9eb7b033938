"""
Support office and referral routes.

Referral lifecycle:
  POST /api/detections/{id}/referrals → creates Referral(status=pending)
  POST /api/referrals/{id}/status     → processing | completed | cancelled
  GET  /api/referrals                 → list
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from academic_risk.services.analytics.referrals import ReferralError, create_referral, transition_referral
from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import Detection, Referral, ReferralStatus, SupportOffice
from academic_risk.services.shared.schemas import (
    ReferralCreate, ReferralOut, ReferralStatusRequest, SupportOfficeCreate, SupportOfficeOut,
)

router = APIRouter()


# ── Support offices ────────────────────────────────────────────────────────────

@router.post("/support-offices", response_model=SupportOfficeOut, status_code=201)
def create_support_office(req: SupportOfficeCreate, db=Depends(get_db)):
    office = SupportOffice(**req.model_dump())
    db.add(office)
    db.commit()
    db.refresh(office)
    return SupportOfficeOut.model_validate(office)


@router.get("/support-offices", response_model=list[SupportOfficeOut])
def list_support_offices(include_inactive: bool = False, db=Depends(get_db)):
    q = db.query(SupportOffice)
    if not include_inactive:
        q = q.filter(SupportOffice.active == True)  # noqa: E712
    return [SupportOfficeOut.model_validate(o) for o in q.order_by(SupportOffice.name).all()]


# ── Referrals ──────────────────────────────────────────────────────────────────

@router.post("/detections/{detection_id}/referrals", response_model=ReferralOut, status_code=201)
def refer_detection(detection_id: int, req: ReferralCreate, db=Depends(get_db)):
    detection = db.get(Detection, detection_id)
    if not detection:
        raise HTTPException(status_code=404, detail="Detection not found")
    office = db.get(SupportOffice, req.support_office_id)
    if not office:
        raise HTTPException(status_code=404, detail="Support office not found")
    try:
        referral = create_referral(
            db, detection, office,
            referred_by=req.referred_by,
            reason=req.reason,
            priority=req.priority,
            notes=req.notes,
        )
    except ReferralError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc))
    db.commit()
    db.refresh(referral)
    return ReferralOut.model_validate(referral)


@router.get("/referrals", response_model=list[ReferralOut])
def list_referrals(
    status:       Optional[str] = None,
    detection_id: Optional[int] = None,
    office_id:    Optional[int] = None,
    limit:        int           = Query(default=100, le=500),
    db=Depends(get_db),
):
    q = db.query(Referral)
    if status:
        try:
            q = q.filter(Referral.status == ReferralStatus(status))
        except ValueError:
            pass
    if detection_id:
        q = q.filter(Referral.detection_id == detection_id)
    if office_id:
        q = q.filter(Referral.support_office_id == office_id)
    rows = q.order_by(Referral.created_at.desc(), Referral.id.desc()).limit(limit).all()
    return [ReferralOut.model_validate(r) for r in rows]


@router.post("/referrals/{referral_id}/status", response_model=ReferralOut)
def change_referral_status(referral_id: int, req: ReferralStatusRequest, db=Depends(get_db)):
    referral = db.get(Referral, referral_id)
    if not referral:
        raise HTTPException(status_code=404, detail="Referral not found")
    try:
        transition_referral(db, referral, req.status, actor=req.actor, response=req.response)
    except ReferralError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    db.commit()
    db.refresh(referral)
    return ReferralOut.model_validate(referral)
