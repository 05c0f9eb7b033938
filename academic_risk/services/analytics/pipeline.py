"""
Anomaly detection pipeline
----------------------------
run_detection(criterion, executed_by) is the single entry point used by the web
action and the CLI. Steps:

1. extract_features()  - per-student vectors; < MIN_STUDENTS -> insufficient data,
                         returned as a failure result without an ExecutionLog row.
2. score_students()    - seeded Isolation Forest; ModelFitError aborts the run.
3. persist             - one transaction per run. The ExecutionLog row is flushed first
                         (its id is the run_id), then every flagged student is handled
                         in its own SAVEPOINT: lock the student row, skip if a Detection of
                         the same type exists within DEDUP_WINDOW_DAYS, insert otherwise.
                         A failing row only rolls back its savepoint.
4. alerts              - critical_anomaly per new priority >= 4 Detection, critical_course
                         when a course's students pile up detections.
5. commit              - Detections, Alerts and the ExecutionLog land together.

Any unhandled exception rolls the run back, writes a failure ExecutionLog
(best effort) and returns a failure result.
"""

import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import func, select

from academic_risk.services.analytics.classifier import criticality_tier, priority_for_score
from academic_risk.services.analytics.features import extract_features
from academic_risk.services.analytics.isolation_model import ScoredStudent, score_students
from academic_risk.services.shared.database import SessionLocal
from academic_risk.services.shared.models import (
    AcademicRecord, Alert, AlertKind, Course, Criterion, Detection,
    DetectionStatus, ExecutionLog, Student,
)

logger = structlog.get_logger()

MIN_STUDENTS = 10
DEDUP_WINDOW_DAYS = 7
STALE_AFTER_HOURS = 24

CRITICAL_PRIORITY = 4
COURSE_ALERT_MIN_DETECTIONS = 5
COURSE_ALERT_WINDOW_DAYS = 30
COURSE_ALERT_COOLDOWN_DAYS = 7


@dataclass
class DetectionRunResult:
    success:            bool
    anomalies_detected: int             = 0
    total_students:     int             = 0
    percentage:         float           = 0.0
    duration_seconds:   float           = 0.0
    run_id:             Optional[int]   = None
    error_message:      Optional[str]   = None

    def as_dict(self) -> dict:
        data = asdict(self)
        if self.success:
            data.pop("error_message")
        else:
            data.pop("run_id")
        return data


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Persistence ───────────────────────────────────────────────────────────────

def _lock_student(db, student_id: int) -> None:
    # Serialises concurrent runs on the same student so check-then-insert is atomic
    db.query(Student.id).filter(Student.id == student_id).with_for_update().first()


def _has_recent_detection(db, student_id: int, anomaly_type, cutoff: datetime) -> bool:
    return (
        db.query(Detection.id)
          .filter(
              Detection.student_id   == student_id,
              Detection.anomaly_type == anomaly_type,
              Detection.detected_at  >= cutoff,
          )
          .first()
        is not None
    )


def _critical_alert(detection: Detection, item: ScoredStudent) -> Alert:
    return Alert(
        kind=AlertKind.critical_anomaly,
        title=f"Critical anomaly: student {item.vector.student_number}",
        message=(
            f"Detection {detection.id} for student {item.vector.student_number} has priority "
            f"{detection.priority} ({detection.anomaly_type.value}, score {detection.score:.1f}, "
            f"confidence {detection.confidence:.2f}). Immediate follow-up required."
        ),
        detection_id=detection.id,
    )


def persist_detections(
    db,
    anomalies: list[ScoredStudent],
    criterion_id: Optional[int],
    run_id: Optional[int],
) -> list[Detection]:
    cutoff = _now() - timedelta(days=DEDUP_WINDOW_DAYS)
    saved: list[Detection] = []

    for item in anomalies:
        vector = item.vector
        try:
            with db.begin_nested():
                _lock_student(db, vector.student_id)
                if _has_recent_detection(db, vector.student_id, item.anomaly_type, cutoff):
                    logger.info(
                        "detection_deduplicated",
                        student_id=vector.student_id,
                        anomaly_type=item.anomaly_type.value,
                    )
                    continue

                detection = Detection(
                    student_id=vector.student_id,
                    criterion_id=criterion_id,
                    run_id=run_id,
                    anomaly_type=item.anomaly_type,
                    raw_score=item.raw_score,
                    score=item.score,
                    confidence=item.confidence,
                    priority=priority_for_score(item.score),
                    status=DetectionStatus.detected,
                    criticality=criticality_tier(vector),
                    **vector.snapshot(),
                )
                db.add(detection)
                db.flush()

                if detection.priority >= CRITICAL_PRIORITY:
                    db.add(_critical_alert(detection, item))
                saved.append(detection)
        except Exception as exc:
            logger.error("detection_persist_error", student_id=vector.student_id, error=str(exc))
            continue

    return saved


def _raise_course_alerts(db, detections: list[Detection]) -> int:
    """critical_course alert for courses whose students collected many recent detections."""
    student_ids = {d.student_id for d in detections}
    course_ids = [
        row[0] for row in
        db.query(AcademicRecord.course_id)
          .filter(AcademicRecord.student_id.in_(sorted(student_ids)))
          .distinct()
          .all()
    ]
    since = _now() - timedelta(days=COURSE_ALERT_WINDOW_DAYS)
    cooldown = _now() - timedelta(days=COURSE_ALERT_COOLDOWN_DAYS)
    raised = 0

    for course_id in course_ids:
        try:
            with db.begin_nested():
                count = (
                    db.query(func.count(Detection.id))
                      .join(AcademicRecord, AcademicRecord.student_id == Detection.student_id)
                      .filter(AcademicRecord.course_id == course_id, Detection.detected_at >= since)
                      .scalar()
                ) or 0
                if count < COURSE_ALERT_MIN_DETECTIONS:
                    continue
                already = (
                    db.query(Alert.id)
                      .filter(
                          Alert.kind == AlertKind.critical_course,
                          Alert.course_id == course_id,
                          Alert.created_at >= cooldown,
                      )
                      .first()
                )
                if already:
                    continue
                course = db.get(Course, course_id)
                db.add(Alert(
                    kind=AlertKind.critical_course,
                    title=f"Critical course: {course.name}",
                    message=(
                        f"Course '{course.name}' has {count} anomaly detections among its "
                        f"students in the last {COURSE_ALERT_WINDOW_DAYS} days."
                    ),
                    course_id=course_id,
                ))
                raised += 1
        except Exception as exc:
            logger.warning("course_alert_error", course_id=course_id, error=str(exc))
    return raised


# ── Run log ───────────────────────────────────────────────────────────────────

def _record_failure(db, criterion_id, executed_by: str, duration: float, exc: Exception) -> None:
    try:
        db.add(ExecutionLog(
            criterion_id=criterion_id,
            executed_by=executed_by,
            total_students=0,
            anomalies_detected=0,
            anomaly_percentage=0.0,
            parameters={},
            metrics={},
            duration_seconds=duration,
            success=False,
            error_message=str(exc),
        ))
        db.commit()
    except Exception as log_exc:
        logger.error("execution_log_write_failed", criterion_id=criterion_id, error=str(log_exc))
        db.rollback()


# ── Entry points ──────────────────────────────────────────────────────────────

def run_detection(criterion: Criterion, executed_by: str = "system", db=None) -> DetectionRunResult:
    """Run one criterion end to end. Opens its own session when none is given."""
    owns_session = db is None
    if owns_session:
        db = SessionLocal()

    started = time.perf_counter()
    criterion_id = criterion.id
    logger.info("detection_run_started", criterion_id=criterion_id, executed_by=executed_by)

    try:
        vectors = extract_features(criterion, db)
        if len(vectors) < MIN_STUDENTS:
            logger.info("detection_insufficient_data", criterion_id=criterion_id, students=len(vectors))
            return DetectionRunResult(
                success=False,
                total_students=len(vectors),
                duration_seconds=time.perf_counter() - started,
                error_message=(
                    f"Insufficient data for analysis: {len(vectors)} valid students "
                    f"(minimum {MIN_STUDENTS})"
                ),
            )

        outcome = score_students(
            vectors, criterion.contamination_rate, criterion.n_estimators, criterion_id,
        )

        run = ExecutionLog(
            criterion_id=criterion_id,
            executed_by=executed_by,
            total_students=len(vectors),
            parameters=outcome.parameters,
            metrics=outcome.metrics,
            success=True,
            error_message="",
        )
        db.add(run)
        db.flush()

        saved = persist_detections(db, outcome.anomalies, criterion_id, run.id)
        if saved:
            _raise_course_alerts(db, saved)
        else:
            logger.info("detection_no_new_anomalies", criterion_id=criterion_id,
                        flagged=len(outcome.anomalies))

        duration = time.perf_counter() - started
        percentage = round(len(saved) / len(vectors) * 100, 2)
        run.anomalies_detected = len(saved)
        run.anomaly_percentage = percentage
        run.duration_seconds = duration
        db.commit()

        logger.info(
            "detection_run_complete",
            criterion_id=criterion_id,
            run_id=run.id,
            students=len(vectors),
            flagged=len(outcome.anomalies),
            saved=len(saved),
            duration_seconds=round(duration, 3),
        )
        return DetectionRunResult(
            success=True,
            anomalies_detected=len(saved),
            total_students=len(vectors),
            percentage=percentage,
            duration_seconds=duration,
            run_id=run.id,
        )

    except Exception as exc:
        db.rollback()
        duration = time.perf_counter() - started
        logger.exception("detection_run_failed", criterion_id=criterion_id, error=str(exc))
        _record_failure(db, criterion_id, executed_by, duration, exc)
        return DetectionRunResult(success=False, duration_seconds=duration, error_message=str(exc))

    finally:
        if owns_session:
            db.close()


def select_criteria(db, criterion_id: Optional[int] = None, run_all: bool = False) -> list[Criterion]:
    """
    Active criteria to run: one by id, all of them, or (default) those without an
    ExecutionLog in the last STALE_AFTER_HOURS.
    """
    q = db.query(Criterion).filter(Criterion.active == True)  # noqa: E712
    if criterion_id is not None:
        return q.filter(Criterion.id == criterion_id).all()
    if run_all:
        return q.order_by(Criterion.id).all()

    cutoff = _now() - timedelta(hours=STALE_AFTER_HOURS)
    recent = (
        select(ExecutionLog.criterion_id)
        .where(ExecutionLog.executed_at >= cutoff, ExecutionLog.criterion_id.is_not(None))
    )
    return q.filter(Criterion.id.not_in(recent)).order_by(Criterion.id).all()
