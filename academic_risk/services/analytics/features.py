"""
Feature Extraction
--------------------
Aggregates AcademicRecords into one feature vector per active student matching a
Criterion's optional program / semester filter.

Per student (records in insertion order):
  avg_grade            - mean of per-record averages
  avg_attendance       - mean attendance %
  avg_platform_use     - mean platform-usage %
  grade_variation      - population std of per-record averages (0 with < 2 records)
  attendance_variation - population std of attendance (0 with < 2 records)
  grade_trend          - OLS slope of (index, average), only with >= 3 records
  record_count         - number of matching records

Criticality inputs (always over all of the student's records, ignoring the semester filter):
  score_variation      - population std of every partial score (score1..score4 of each record)
  failing_share        - share of records with an average below FAILING_AVERAGE

Students without records, or whose aggregates fail the validity filter, are
skipped and logged. An empty result is not an error; the pipeline reports it as
insufficient data.
"""

import math
from dataclasses import dataclass

import numpy as np
import structlog

from academic_risk.services.shared.models import AcademicRecord, Course, Student

logger = structlog.get_logger()

MODEL_COLUMNS = (
    "avg_grade",
    "avg_attendance",
    "avg_platform_use",
    "grade_variation",
    "attendance_variation",
    "grade_trend",
    "record_count",
)

FAILING_AVERAGE = 4.0
MIN_TREND_RECORDS = 3


@dataclass
class FeatureVector:
    student_id:           int
    student_number:       str
    avg_grade:            float
    avg_attendance:       float
    avg_platform_use:     float
    grade_variation:      float = 0.0
    attendance_variation: float = 0.0
    grade_trend:          float = 0.0
    record_count:         int   = 0
    # not model columns; feed the criticality tier
    score_variation:      float = 0.0
    failing_share:        float = 0.0

    def as_row(self) -> dict[str, float]:
        return {col: float(getattr(self, col)) for col in MODEL_COLUMNS}

    def snapshot(self) -> dict[str, float]:
        """The four metrics copied onto a Detection."""
        return {
            "avg_grade":        self.avg_grade,
            "avg_attendance":   self.avg_attendance,
            "avg_platform_use": self.avg_platform_use,
            "grade_variation":  self.grade_variation,
        }


def _grade_trend(averages: list[float]) -> float:
    if len(averages) < MIN_TREND_RECORDS:
        return 0.0
    x = np.arange(len(averages))
    try:
        slope = float(np.polyfit(x, averages, 1)[0])
    except (np.linalg.LinAlgError, ValueError, TypeError):
        return 0.0
    return slope if math.isfinite(slope) else 0.0


def _partial_scores(records: list) -> list[float]:
    return [float(s) for r in records for s in (r.score1, r.score2, r.score3, r.score4)]


def build_vector(student, records: list, all_records: list | None = None) -> FeatureVector | None:
    """
    Compute the feature vector for one student from its (already filtered, ordered) records.
    all_records is every record of the student and feeds the criticality inputs;
    it defaults to `records` when no filter was applied.
    Returns None when there are no records or the aggregates fail the validity filter.
    """
    if not records:
        return None
    all_records = all_records or records
    overall = [float(r.average) for r in all_records]
    scores = _partial_scores(all_records)

    averages    = [float(r.average) for r in records]
    attendances = [float(r.attendance_pct) for r in records]
    platform    = [float(r.platform_use_pct) for r in records]

    avg_grade      = float(np.mean(averages))
    avg_attendance = float(np.mean(attendances))
    avg_platform   = float(np.mean(platform))

    if math.isnan(avg_grade) or not (avg_grade > 0 and avg_attendance >= 0 and avg_platform >= 0):
        return None

    multi = len(records) > 1
    return FeatureVector(
        student_id=student.id,
        student_number=student.student_number,
        avg_grade=avg_grade,
        avg_attendance=avg_attendance,
        avg_platform_use=avg_platform,
        grade_variation=float(np.std(averages)) if multi else 0.0,
        attendance_variation=float(np.std(attendances)) if multi else 0.0,
        grade_trend=_grade_trend(averages),
        record_count=len(records),
        score_variation=float(np.std(scores)) if scores else 0.0,
        failing_share=sum(1 for a in overall if a < FAILING_AVERAGE) / len(overall),
    )


def _student_query(criterion, db):
    q = db.query(Student).filter(Student.active == True)  # noqa: E712
    if criterion.program_id:
        q = q.filter(Student.program_id == criterion.program_id)
    if criterion.semester:
        q = q.filter(
            Student.records.any(AcademicRecord.course.has(Course.semester == criterion.semester))
        )
    return q.order_by(Student.id)


def _records_for(student_id: int, semester: int | None, db) -> list[AcademicRecord]:
    q = db.query(AcademicRecord).filter(AcademicRecord.student_id == student_id)
    if semester:
        q = q.join(Course, AcademicRecord.course_id == Course.id).filter(Course.semester == semester)
    return q.order_by(AcademicRecord.id.asc()).all()


def extract_features(criterion, db) -> list[FeatureVector]:
    """Feature vectors for every active student matching the criterion that has records."""
    students = _student_query(criterion, db).all()
    if not students:
        logger.info("features_no_students", criterion_id=criterion.id,
                    program_id=criterion.program_id, semester=criterion.semester)
        return []

    vectors: list[FeatureVector] = []
    without_records = 0
    invalid = 0

    for student in students:
        try:
            records = _records_for(student.id, criterion.semester, db)
            if not records:
                without_records += 1
                continue
            all_records = _records_for(student.id, None, db) if criterion.semester else records
            vector = build_vector(student, records, all_records)
            if vector is None:
                invalid += 1
                logger.info("features_invalid_metrics", student_id=student.id)
                continue
            vectors.append(vector)
            if criterion.debug_logging:
                logger.info("feature_vector_built", student_id=student.id, **vector.as_row())
        except Exception as exc:
            logger.warning("features_student_error", student_id=student.id, error=str(exc))
            continue

    logger.info(
        "features_extracted",
        criterion_id=criterion.id,
        students=len(students),
        valid=len(vectors),
        without_records=without_records,
        invalid=invalid,
    )
    return vectors
