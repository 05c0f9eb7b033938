"""
Criterion routes.

  POST   /api/criteria            → create
  GET    /api/criteria            → list (active only by default)
  GET    /api/criteria/{id}       → detail
  PATCH  /api/criteria/{id}       → edit (audited)
  DELETE /api/criteria/{id}       → soft-disable (active=False); past detections keep it
  POST   /api/criteria/{id}/run   → run detection synchronously, return a summary
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from academic_risk.services.analytics.pipeline import run_detection
from academic_risk.services.shared.audit import emit_audit
from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import Criterion, Program
from academic_risk.services.shared.schemas import (
    CriterionCreate, CriterionOut, CriterionUpdate, RunRequest, RunResultOut,
)

router = APIRouter()

# PATCH with an explicit null on these widens the criterion back to all programs / semesters
CLEARABLE_FILTERS = frozenset({"program_id", "semester"})


def _get_or_404(db, criterion_id: int) -> Criterion:
    criterion = db.get(Criterion, criterion_id)
    if not criterion:
        raise HTTPException(status_code=404, detail="Criterion not found")
    return criterion


@router.post("/criteria", response_model=CriterionOut, status_code=201)
def create_criterion(req: CriterionCreate, db=Depends(get_db)):
    if req.program_id and not db.get(Program, req.program_id):
        raise HTTPException(status_code=404, detail="Program not found")
    criterion = Criterion(**req.model_dump())
    db.add(criterion)
    db.flush()
    emit_audit(
        db,
        actor=req.created_by,
        action="criterion_created",
        resource=f"criterion:{criterion.id}",
        detail={"name": req.name, "contamination_rate": req.contamination_rate, "n_estimators": req.n_estimators},
    )
    db.commit()
    db.refresh(criterion)
    return CriterionOut.model_validate(criterion)


@router.get("/criteria", response_model=list[CriterionOut])
def list_criteria(include_inactive: bool = False, program_id: Optional[int] = None, db=Depends(get_db)):
    q = db.query(Criterion)
    if not include_inactive:
        q = q.filter(Criterion.active == True)  # noqa: E712
    if program_id:
        q = q.filter(Criterion.program_id == program_id)
    return [CriterionOut.model_validate(c) for c in q.order_by(Criterion.id).all()]


@router.get("/criteria/{criterion_id}", response_model=CriterionOut)
def get_criterion(criterion_id: int, db=Depends(get_db)):
    return CriterionOut.model_validate(_get_or_404(db, criterion_id))


@router.patch("/criteria/{criterion_id}", response_model=CriterionOut)
def update_criterion(criterion_id: int, req: CriterionUpdate, db=Depends(get_db)):
    criterion = _get_or_404(db, criterion_id)
    changes = {
        key: value
        for key, value in req.model_dump(exclude_unset=True, exclude={"updated_by"}).items()
        if value is not None or key in CLEARABLE_FILTERS
    }
    if changes.get("program_id") and not db.get(Program, changes["program_id"]):
        raise HTTPException(status_code=404, detail="Program not found")
    for key, value in changes.items():
        setattr(criterion, key, value)
    emit_audit(
        db,
        actor=req.updated_by,
        action="criterion_updated",
        resource=f"criterion:{criterion_id}",
        detail=changes,
    )
    db.commit()
    db.refresh(criterion)
    return CriterionOut.model_validate(criterion)


@router.delete("/criteria/{criterion_id}", response_model=CriterionOut)
def disable_criterion(criterion_id: int, actor: str = "admin", db=Depends(get_db)):
    criterion = _get_or_404(db, criterion_id)
    criterion.active = False
    emit_audit(db, actor=actor, action="criterion_disabled", resource=f"criterion:{criterion_id}", detail={})
    db.commit()
    db.refresh(criterion)
    return CriterionOut.model_validate(criterion)


@router.post("/criteria/{criterion_id}/run", response_model=RunResultOut)
def run_criterion(criterion_id: int, req: RunRequest, db=Depends(get_db)):
    """
    Runs the detection pipeline synchronously for one active criterion.
    Pipeline failures are reported in the body (success=false), not as HTTP errors.
    """
    criterion = _get_or_404(db, criterion_id)
    if not criterion.active:
        raise HTTPException(status_code=409, detail="Criterion is disabled")
    name = criterion.name

    result = run_detection(criterion, req.executed_by, db=db)
    if result.success:
        message = (
            f"Criterion '{name}': {result.anomalies_detected} new anomalies among "
            f"{result.total_students} students ({result.percentage:.1f}%)"
        )
    else:
        message = f"Criterion '{name}' failed: {result.error_message}"
    return RunResultOut(message=message, **result.as_dict())
