"""
Academic Risk SQLAlchemy ORM models - all data models in one file.
Uses SQLAlchemy 2.0 Mapped + mapped_column for full type-checker support.

  Program, Student, Course, AcademicRecord   - academic data (records service)
  Criterion, ExecutionLog, Detection, Alert  - anomaly detection (detections service)
  SupportOffice, Referral                    - referral workflow
  AuditLog                                   - append-only trail of staff actions

Lifecycle notes:
  Students are deactivated, never hard-deleted while referenced.
  Criteria are soft-disabled (active=False); past Detections keep their reference,
  and the FK is SET NULL if a criterion row is ever removed by data-reset tooling.
  Detections are only created by the detection pipeline.
"""

import enum
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    Boolean, DateTime, Enum as SAEnum, Float, ForeignKey,
    Index, Integer, JSON, String, Text, UniqueConstraint, event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from academic_risk.services.shared.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────────────────────

class AnomalyType(str, enum.Enum):
    low_performance          = "low_performance"
    low_attendance           = "low_attendance"
    high_variability         = "high_variability"
    inefficient_platform_use = "inefficient_platform_use"
    semester_drop            = "semester_drop"     # reserved; not produced by the classifier
    multiple                 = "multiple"


class DetectionStatus(str, enum.Enum):
    detected            = "detected"
    in_review           = "in_review"
    active_intervention = "active_intervention"
    resolved            = "resolved"
    false_positive      = "false_positive"


class CriticalityTier(str, enum.Enum):
    low    = "low"
    medium = "medium"
    high   = "high"


class SupportKind(str, enum.Enum):
    tutoring        = "tutoring"
    learning_clinic = "learning_clinic"
    psychopedagogy  = "psychopedagogy"
    guidance        = "guidance"
    wellbeing       = "wellbeing"


class ReferralStatus(str, enum.Enum):
    pending    = "pending"
    processing = "processing"
    completed  = "completed"
    cancelled  = "cancelled"


class AlertKind(str, enum.Enum):
    critical_anomaly = "critical_anomaly"
    critical_course  = "critical_course"


# ── Academic data ─────────────────────────────────────────────────────────────

class Program(Base):
    """A degree program (career). Criteria may be scoped to one program."""
    __tablename__ = "programs"

    id:          Mapped[int]            = mapped_column(Integer, primary_key=True, index=True)
    code:        Mapped[str]            = mapped_column(String(16), nullable=False, unique=True)
    name:        Mapped[str]            = mapped_column(String(255), nullable=False)
    coordinator: Mapped[Optional[str]]  = mapped_column(String(255), nullable=True)

    students: Mapped[List["Student"]] = relationship("Student", back_populates="program")


class Student(Base):
    """
    A student enrolled in a program.
    student_number is the institution's identifier, used by imports and exports.
    """
    __tablename__ = "students"

    id:              Mapped[int]       = mapped_column(Integer, primary_key=True, index=True)
    student_number:  Mapped[str]       = mapped_column(String(32), nullable=False, unique=True, index=True)
    name:            Mapped[str]       = mapped_column(String(255), nullable=False)
    program_id:      Mapped[int]       = mapped_column(Integer, ForeignKey("programs.id"), nullable=False)
    enrollment_year: Mapped[int]       = mapped_column(Integer, nullable=False)
    active:          Mapped[bool]      = mapped_column(Boolean, default=True, index=True)
    created_at:      Mapped[datetime]  = mapped_column(DateTime, default=_utcnow)

    program: Mapped["Program"]              = relationship("Program", back_populates="students")
    records: Mapped[List["AcademicRecord"]] = relationship("AcademicRecord", back_populates="student")


class Course(Base):
    __tablename__ = "courses"

    id:         Mapped[int]            = mapped_column(Integer, primary_key=True, index=True)
    code:       Mapped[str]            = mapped_column(String(32), nullable=False, unique=True)
    name:       Mapped[str]            = mapped_column(String(255), nullable=False)
    semester:   Mapped[int]            = mapped_column(Integer, nullable=False, index=True)
    program_id: Mapped[Optional[int]]  = mapped_column(Integer, ForeignKey("programs.id"), nullable=True)


SCORE_MIN, SCORE_MAX = 1.0, 7.0


class AcademicRecord(Base):
    """
    One row per (student, course): four partial scores, attendance and platform usage.
    `average` is derived and recomputed on every insert/update (see listener below).
    """
    __tablename__ = "academic_records"

    id:               Mapped[int]       = mapped_column(Integer, primary_key=True, index=True)
    student_id:       Mapped[int]       = mapped_column(Integer, ForeignKey("students.id"), nullable=False)
    course_id:        Mapped[int]       = mapped_column(Integer, ForeignKey("courses.id"), nullable=False)
    score1:           Mapped[float]     = mapped_column(Float, nullable=False)
    score2:           Mapped[float]     = mapped_column(Float, nullable=False)
    score3:           Mapped[float]     = mapped_column(Float, nullable=False)
    score4:           Mapped[float]     = mapped_column(Float, nullable=False)
    average:          Mapped[float]     = mapped_column(Float, nullable=False, default=0.0)
    attendance_pct:   Mapped[float]     = mapped_column(Float, nullable=False)
    platform_use_pct: Mapped[float]     = mapped_column(Float, nullable=False)
    recorded_at:      Mapped[datetime]  = mapped_column(DateTime, default=_utcnow)

    student: Mapped["Student"] = relationship("Student", back_populates="records")
    course:  Mapped["Course"]  = relationship("Course")

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_record_student_course"),
        Index("ix_record_student", "student_id"),
    )

    @validates("score1", "score2", "score3", "score4")
    def _validate_score(self, key, value):
        if value is None or not (SCORE_MIN <= value <= SCORE_MAX):
            raise ValueError(f"{key} must be between {SCORE_MIN} and {SCORE_MAX}, got {value}")
        return value

    @validates("attendance_pct", "platform_use_pct")
    def _validate_pct(self, key, value):
        if value is None or not (0.0 <= value <= 100.0):
            raise ValueError(f"{key} must be between 0 and 100, got {value}")
        return value

    def compute_average(self) -> float:
        return round((self.score1 + self.score2 + self.score3 + self.score4) / 4, 2)


@event.listens_for(AcademicRecord, "before_insert")
@event.listens_for(AcademicRecord, "before_update")
def _recompute_average(mapper, connection, target: AcademicRecord) -> None:
    target.average = target.compute_average()


# ── Detection configuration ───────────────────────────────────────────────────

class Criterion(Base):
    """
    A named, reusable detection configuration: optional program/semester filter plus
    Isolation Forest hyperparameters. The threshold_* columns are kept for the UI and
    are not read by the pipeline. debug_logging turns on per-student diagnostic logs.
    """
    __tablename__ = "criteria"

    id:                  Mapped[int]            = mapped_column(Integer, primary_key=True, index=True)
    name:                Mapped[str]            = mapped_column(String(255), nullable=False)
    description:         Mapped[str]            = mapped_column(Text, nullable=False, default="")
    program_id:          Mapped[Optional[int]]  = mapped_column(Integer, ForeignKey("programs.id"), nullable=True)
    semester:            Mapped[Optional[int]]  = mapped_column(Integer, nullable=True)
    contamination_rate:  Mapped[float]          = mapped_column(Float, default=0.1)
    n_estimators:        Mapped[int]            = mapped_column(Integer, default=100)
    threshold_grade:     Mapped[float]          = mapped_column(Float, default=3.0)
    threshold_attendance: Mapped[float]         = mapped_column(Float, default=70.0)
    threshold_platform:  Mapped[float]          = mapped_column(Float, default=60.0)
    threshold_variation: Mapped[float]          = mapped_column(Float, default=1.5)
    debug_logging:       Mapped[bool]           = mapped_column(Boolean, default=False)
    active:              Mapped[bool]           = mapped_column(Boolean, default=True, index=True)
    created_by:          Mapped[Optional[str]]  = mapped_column(String(255), nullable=True)
    created_at:          Mapped[datetime]       = mapped_column(DateTime, default=_utcnow)

    program: Mapped[Optional["Program"]] = relationship("Program")


class ExecutionLog(Base):
    """
    One row per pipeline invocation (success or failure). Append-only.
    parameters / metrics hold the resolved hyperparameters and batch score summary.
    """
    __tablename__ = "execution_logs"

    id:                 Mapped[int]             = mapped_column(Integer, primary_key=True, index=True)
    criterion_id:       Mapped[Optional[int]]   = mapped_column(Integer, ForeignKey("criteria.id", ondelete="SET NULL"), nullable=True, index=True)
    executed_by:        Mapped[str]             = mapped_column(String(255), nullable=False, default="system")
    executed_at:        Mapped[datetime]        = mapped_column(DateTime, default=_utcnow, index=True)
    total_students:     Mapped[int]             = mapped_column(Integer, default=0)
    anomalies_detected: Mapped[int]             = mapped_column(Integer, default=0)
    anomaly_percentage: Mapped[float]           = mapped_column(Float, default=0.0)
    parameters:         Mapped[dict[str, Any]]  = mapped_column(JSON, default=dict)
    metrics:            Mapped[dict[str, Any]]  = mapped_column(JSON, default=dict)
    duration_seconds:   Mapped[float]           = mapped_column(Float, default=0.0)
    success:            Mapped[bool]            = mapped_column(Boolean, default=True)
    error_message:      Mapped[str]             = mapped_column(Text, default="")


class Detection(Base):
    """
    One flagged student per (criterion, run). Created by the pipeline with status=detected;
    staff move it through the status state machine in analytics/status.py.
    The four metric columns are a snapshot taken at detection time.
    """
    __tablename__ = "detections"

    id:               Mapped[int]               = mapped_column(Integer, primary_key=True, index=True)
    student_id:       Mapped[int]               = mapped_column(Integer, ForeignKey("students.id"), nullable=False)
    criterion_id:     Mapped[Optional[int]]     = mapped_column(Integer, ForeignKey("criteria.id", ondelete="SET NULL"), nullable=True)
    run_id:           Mapped[Optional[int]]     = mapped_column(Integer, ForeignKey("execution_logs.id", ondelete="SET NULL"), nullable=True)
    anomaly_type:     Mapped[AnomalyType]       = mapped_column(SAEnum(AnomalyType), nullable=False)
    raw_score:        Mapped[float]             = mapped_column(Float, default=0.0)
    score:            Mapped[float]             = mapped_column(Float, nullable=False)
    confidence:       Mapped[float]             = mapped_column(Float, nullable=False)
    avg_grade:        Mapped[float]             = mapped_column(Float, nullable=False)
    avg_attendance:   Mapped[float]             = mapped_column(Float, nullable=False)
    avg_platform_use: Mapped[float]             = mapped_column(Float, nullable=False)
    grade_variation:  Mapped[float]             = mapped_column(Float, nullable=False)
    priority:         Mapped[int]               = mapped_column(Integer, default=1)
    status:           Mapped[DetectionStatus]   = mapped_column(SAEnum(DetectionStatus), default=DetectionStatus.detected)
    criticality:      Mapped[CriticalityTier]   = mapped_column(SAEnum(CriticalityTier), default=CriticalityTier.medium)
    notes:            Mapped[str]               = mapped_column(Text, default="")
    reviewed_by:      Mapped[Optional[str]]     = mapped_column(String(255), nullable=True)
    detected_at:      Mapped[datetime]          = mapped_column(DateTime, default=_utcnow, index=True)
    updated_at:       Mapped[datetime]          = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    student:   Mapped["Student"]             = relationship("Student")
    criterion: Mapped[Optional["Criterion"]] = relationship("Criterion")
    referrals: Mapped[List["Referral"]]      = relationship("Referral", back_populates="detection")

    __table_args__ = (
        Index("ix_detection_dedup", "student_id", "anomaly_type", "detected_at"),
        Index("ix_detection_status", "status"),
    )


class Alert(Base):
    """Automatic alert raised by the pipeline (critical detection, critical course)."""
    __tablename__ = "alerts"

    id:           Mapped[int]            = mapped_column(Integer, primary_key=True, index=True)
    kind:         Mapped[AlertKind]      = mapped_column(SAEnum(AlertKind), nullable=False)
    title:        Mapped[str]            = mapped_column(String(255), nullable=False)
    message:      Mapped[str]            = mapped_column(Text, nullable=False)
    detection_id: Mapped[Optional[int]]  = mapped_column(Integer, ForeignKey("detections.id", ondelete="CASCADE"), nullable=True)
    course_id:    Mapped[Optional[int]]  = mapped_column(Integer, ForeignKey("courses.id"), nullable=True)
    created_at:   Mapped[datetime]       = mapped_column(DateTime, default=_utcnow, index=True)
    read:         Mapped[bool]           = mapped_column(Boolean, default=False)
    active:       Mapped[bool]           = mapped_column(Boolean, default=True)


# ── Referral workflow ─────────────────────────────────────────────────────────

class SupportOffice(Base):
    """A support unit (tutoring, wellbeing, ...) that flagged students can be referred to."""
    __tablename__ = "support_offices"

    id:      Mapped[int]            = mapped_column(Integer, primary_key=True, index=True)
    name:    Mapped[str]            = mapped_column(String(255), nullable=False)
    kind:    Mapped[SupportKind]    = mapped_column(SAEnum(SupportKind), nullable=False)
    contact: Mapped[str]            = mapped_column(String(255), nullable=False, default="")
    email:   Mapped[Optional[str]]  = mapped_column(String(255), nullable=True)
    active:  Mapped[bool]           = mapped_column(Boolean, default=True)


class Referral(Base):
    """
    Staff-created link from a Detection to a SupportOffice.
    Lifecycle is independent of the detection pipeline (see analytics/referrals.py).
    """
    __tablename__ = "referrals"

    id:                Mapped[int]                 = mapped_column(Integer, primary_key=True, index=True)
    detection_id:      Mapped[int]                 = mapped_column(Integer, ForeignKey("detections.id", ondelete="CASCADE"), nullable=False)
    support_office_id: Mapped[int]                 = mapped_column(Integer, ForeignKey("support_offices.id"), nullable=False)
    referred_by:       Mapped[str]                 = mapped_column(String(255), nullable=False)
    status:            Mapped[ReferralStatus]      = mapped_column(SAEnum(ReferralStatus), default=ReferralStatus.pending)
    reason:            Mapped[str]                 = mapped_column(Text, nullable=False)
    notes:             Mapped[str]                 = mapped_column(Text, default="")
    response:          Mapped[str]                 = mapped_column(Text, default="")
    priority:          Mapped[int]                 = mapped_column(Integer, default=2)
    created_at:        Mapped[datetime]            = mapped_column(DateTime, default=_utcnow, index=True)
    responded_at:      Mapped[Optional[datetime]]  = mapped_column(DateTime, nullable=True)

    detection: Mapped["Detection"]     = relationship("Detection", back_populates="referrals")
    office:    Mapped["SupportOffice"] = relationship("SupportOffice")


# ── Audit Log ──────────────────────────────────────────────────────────────────

class AuditLog(Base):
    """
    Immutable audit trail for staff actions (status changes, referrals, criteria edits).
    Actor is the human user or service that triggered the action.
    Resource is a short "type:id" reference (e.g. "detection:42", "referral:7").
    """
    __tablename__ = "audit_logs"

    id:        Mapped[int]             = mapped_column(Integer, primary_key=True, index=True)
    actor:     Mapped[str]             = mapped_column(String(255), nullable=False)
    action:    Mapped[str]             = mapped_column(String(255), nullable=False)
    resource:  Mapped[Optional[str]]   = mapped_column(String(255), nullable=True)
    detail:    Mapped[dict[str, Any]]  = mapped_column(JSON, default=dict)
    timestamp: Mapped[datetime]        = mapped_column(DateTime, default=_utcnow, index=True)

    __table_args__ = (
        Index("ix_audit_log_resource_ts", "resource", "timestamp"),
    )
