"""
Unit tests for the academic data model: derived average and value bounds.
Uses SQLite in-memory database - no docker required.
"""

import pytest

from academic_risk.services.shared.models import AcademicRecord, Course, Program, Student


def _student_and_course(db):
    program = Program(code="MED", name="Medicine")
    db.add(program)
    db.flush()
    student = Student(student_number="M001", name="Ana", program_id=program.id, enrollment_year=2022)
    course = Course(code="MED101", name="Anatomy", semester=1, program_id=program.id)
    db.add_all([student, course])
    db.flush()
    return student, course


# ── average ────────────────────────────────────────────────────────────────────

def test_average_computed_on_insert(db):
    student, course = _student_and_course(db)
    rec = AcademicRecord(student_id=student.id, course_id=course.id,
                         score1=6.1, score2=5.3, score3=4.45, score4=3.9,
                         attendance_pct=90.0, platform_use_pct=80.0)
    db.add(rec)
    db.commit()
    db.refresh(rec)
    assert rec.average == round((6.1 + 5.3 + 4.45 + 3.9) / 4, 2)


def test_average_recomputed_on_update(db):
    student, course = _student_and_course(db)
    rec = AcademicRecord(student_id=student.id, course_id=course.id,
                         score1=4.0, score2=4.0, score3=4.0, score4=4.0,
                         attendance_pct=90.0, platform_use_pct=80.0)
    db.add(rec)
    db.commit()
    assert rec.average == 4.0

    rec.score1 = 7.0
    db.commit()
    db.refresh(rec)
    assert rec.average == 4.75


def test_client_supplied_average_is_overwritten(db):
    student, course = _student_and_course(db)
    rec = AcademicRecord(student_id=student.id, course_id=course.id,
                         score1=2.0, score2=2.0, score3=2.0, score4=2.0,
                         attendance_pct=50.0, platform_use_pct=50.0, average=6.9)
    db.add(rec)
    db.commit()
    assert rec.average == 2.0


# ── bounds ─────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("score", [0.9, 7.1, None])
def test_score_out_of_range_rejected(score):
    with pytest.raises(ValueError):
        AcademicRecord(score1=score)


@pytest.mark.parametrize("field", ["attendance_pct", "platform_use_pct"])
def test_percentage_out_of_range_rejected(field):
    with pytest.raises(ValueError):
        AcademicRecord(**{field: 100.5})
    with pytest.raises(ValueError):
        AcademicRecord(**{field: -1.0})


def test_boundary_values_accepted():
    rec = AcademicRecord(score1=1.0, score2=7.0, score3=1.0, score4=7.0,
                         attendance_pct=0.0, platform_use_pct=100.0)
    assert rec.compute_average() == 4.0
