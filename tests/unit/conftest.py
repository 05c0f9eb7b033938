"""
Shared fixtures for Academic Risk unit tests.

Points DATABASE_URL at SQLite before any service module is imported, so
database.py builds an engine without a running postgres. Every test gets its
own in-memory database through make_db() / the `db` fixture.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from academic_risk.services.shared.database import Base  # noqa: E402
from academic_risk.services.shared.models import (  # noqa: E402
    AcademicRecord, Course, Criterion, Program, Student,
)

# (scores, attendance %, platform use %) per course
TYPICAL_RECORDS = [
    ((5.5, 5.5, 5.5, 5.5), 85.0, 70.0),
    ((5.5, 5.5, 5.5, 5.5), 85.0, 70.0),
    ((5.5, 5.5, 5.5, 5.5), 85.0, 70.0),
]
OUTLIER_RECORDS = [
    ((3.0, 3.0, 3.0, 3.0), 40.0, 20.0),
    ((2.0, 3.0, 2.0, 3.0), 35.0, 25.0),
    ((4.0, 4.0, 3.0, 3.0), 45.0, 15.0),
]


def make_engine():
    # StaticPool keeps one connection so the in-memory DB survives across sessions/threads
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def engine():
    eng = make_engine()
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()
    yield session
    session.close()


def _add_student(db, program, number, rows, courses):
    student = Student(student_number=number, name=f"Student {number}",
                      program_id=program.id, enrollment_year=2023)
    db.add(student)
    db.flush()
    for course, ((s1, s2, s3, s4), attendance, platform) in zip(courses, rows):
        db.add(AcademicRecord(
            student_id=student.id, course_id=course.id,
            score1=s1, score2=s2, score3=s3, score4=s4,
            attendance_pct=attendance, platform_use_pct=platform,
        ))
    db.flush()
    return student


@pytest.fixture
def seed_cohort():
    """
    Factory: `typical` identical students plus (optionally) one clear outlier, each with
    one record in three courses (two in semester 1, one in semester 2), and a default criterion.
    """
    def _seed(db, typical=11, outlier=True, contamination_rate=0.05, n_estimators=100):
        program = Program(code="INF", name="Informatics")
        db.add(program)
        db.flush()
        courses = [
            Course(code=f"INF10{i}", name=f"Course {i}", semester=1 if i < 2 else 2, program_id=program.id)
            for i in range(3)
        ]
        db.add_all(courses)
        db.flush()

        students = [
            _add_student(db, program, f"S{n:03d}", TYPICAL_RECORDS, courses)
            for n in range(typical)
        ]
        outlier_student = _add_student(db, program, "S999", OUTLIER_RECORDS, courses) if outlier else None

        criterion = Criterion(
            name="Default",
            contamination_rate=contamination_rate,
            n_estimators=n_estimators,
        )
        db.add(criterion)
        db.commit()
        return SimpleNamespace(
            program=program,
            courses=courses,
            students=students,
            outlier=outlier_student,
            criterion=criterion,
        )

    return _seed
