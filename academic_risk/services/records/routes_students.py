"""
Program and Student routes.
Students are deactivated, never deleted: detections keep referencing them.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError

from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import Program, Student
from academic_risk.services.shared.schemas import ProgramCreate, ProgramOut, StudentCreate, StudentOut

router = APIRouter()


@router.post("/programs", response_model=ProgramOut, status_code=201)
def create_program(req: ProgramCreate, db=Depends(get_db)):
    program = Program(**req.model_dump())
    db.add(program)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Program code '{req.code}' already exists")
    db.refresh(program)
    return ProgramOut.model_validate(program)


@router.get("/programs", response_model=list[ProgramOut])
def list_programs(db=Depends(get_db)):
    return [ProgramOut.model_validate(p) for p in db.query(Program).order_by(Program.name).all()]


@router.post("/students", response_model=StudentOut, status_code=201)
def create_student(req: StudentCreate, db=Depends(get_db)):
    if not db.get(Program, req.program_id):
        raise HTTPException(status_code=404, detail="Program not found")
    student = Student(**req.model_dump())
    db.add(student)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Student number '{req.student_number}' already exists")
    db.refresh(student)
    return StudentOut.model_validate(student)


@router.get("/students", response_model=list[StudentOut])
def list_students(
    program_id: Optional[int]  = None,
    active:     Optional[bool] = None,
    limit:      int            = Query(default=200, le=1000),
    offset:     int            = 0,
    db=Depends(get_db),
):
    q = db.query(Student)
    if program_id:
        q = q.filter(Student.program_id == program_id)
    if active is not None:
        q = q.filter(Student.active == active)
    rows = q.order_by(Student.id).offset(offset).limit(limit).all()
    return [StudentOut.model_validate(r) for r in rows]


@router.get("/students/{student_id}", response_model=StudentOut)
def get_student(student_id: int, db=Depends(get_db)):
    student = db.get(Student, student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return StudentOut.model_validate(student)


@router.post("/students/{student_id}/deactivate", response_model=StudentOut)
def deactivate_student(student_id: int, db=Depends(get_db)):
    student = db.get(Student, student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    student.active = False
    db.commit()
    db.refresh(student)
    return StudentOut.model_validate(student)
