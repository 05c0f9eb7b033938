"""
Course and AcademicRecord routes.

One record per (student, course); a second POST for the same pair returns 409.
Records are changed only through the explicit PUT; `average` is recomputed by the
model listener on every save, so it is never accepted from the client.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError

from academic_risk.services.shared.database import get_db
from academic_risk.services.shared.models import AcademicRecord, Course, Student
from academic_risk.services.shared.schemas import (
    AcademicRecordCreate, AcademicRecordOut, AcademicRecordUpdate, CourseCreate, CourseOut,
)

router = APIRouter()


@router.post("/courses", response_model=CourseOut, status_code=201)
def create_course(req: CourseCreate, db=Depends(get_db)):
    course = Course(**req.model_dump())
    db.add(course)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Course code '{req.code}' already exists")
    db.refresh(course)
    return CourseOut.model_validate(course)


@router.get("/courses", response_model=list[CourseOut])
def list_courses(
    semester:   Optional[int] = None,
    program_id: Optional[int] = None,
    db=Depends(get_db),
):
    q = db.query(Course)
    if semester:
        q = q.filter(Course.semester == semester)
    if program_id:
        q = q.filter(Course.program_id == program_id)
    return [CourseOut.model_validate(c) for c in q.order_by(Course.semester, Course.code).all()]


@router.post("/records", response_model=AcademicRecordOut, status_code=201)
def create_record(req: AcademicRecordCreate, db=Depends(get_db)):
    if not db.get(Student, req.student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    if not db.get(Course, req.course_id):
        raise HTTPException(status_code=404, detail="Course not found")

    record = AcademicRecord(**req.model_dump())
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"Record for student {req.student_id} in course {req.course_id} already exists",
        )
    db.refresh(record)
    return AcademicRecordOut.model_validate(record)


@router.get("/records", response_model=list[AcademicRecordOut])
def list_records(
    student_id: Optional[int] = None,
    course_id:  Optional[int] = None,
    limit:      int           = Query(default=500, le=5000),
    db=Depends(get_db),
):
    q = db.query(AcademicRecord)
    if student_id:
        q = q.filter(AcademicRecord.student_id == student_id)
    if course_id:
        q = q.filter(AcademicRecord.course_id == course_id)
    rows = q.order_by(AcademicRecord.id).limit(limit).all()
    return [AcademicRecordOut.model_validate(r) for r in rows]


@router.put("/records/{record_id}", response_model=AcademicRecordOut)
def update_record(record_id: int, req: AcademicRecordUpdate, db=Depends(get_db)):
    record = db.get(AcademicRecord, record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")
    for key, value in req.model_dump(exclude_none=True).items():
        setattr(record, key, value)
    db.commit()
    db.refresh(record)
    return AcademicRecordOut.model_validate(record)
