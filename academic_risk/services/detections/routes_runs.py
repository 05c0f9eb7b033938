"""
ExecutionLog routes: read-only access to the pipeline's run history.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import ExecutionLog
from academic_risk.services.shared.schemas import ExecutionLogOut

router = APIRouter()


@router.get("/runs", response_model=list[ExecutionLogOut])
def list_runs(
    criterion_id: Optional[int]  = None,
    success:      Optional[bool] = None,
    limit:        int            = Query(default=50, le=500),
    db=Depends(get_db),
):
    q = db.query(ExecutionLog)
    if criterion_id:
        q = q.filter(ExecutionLog.criterion_id == criterion_id)
    if success is not None:
        q = q.filter(ExecutionLog.success == success)
    rows = q.order_by(ExecutionLog.executed_at.desc(), ExecutionLog.id.desc()).limit(limit).all()
    return [ExecutionLogOut.model_validate(r) for r in rows]


@router.get("/runs/{run_id}", response_model=ExecutionLogOut)
def get_run(run_id: int, db=Depends(get_db)):
    row = db.get(ExecutionLog, run_id)
    if not row:
        raise HTTPException(status_code=404, detail="Run not found")
    return ExecutionLogOut.model_validate(row)
