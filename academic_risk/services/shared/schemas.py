"""
Pydantic request/response schemas for the Academic Risk services.
All API responses use these schemas for type safety and documentation.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from academic_risk.services.shared.models import (
    AlertKind, AnomalyType, CriticalityTier, DetectionStatus,
    ReferralStatus, SupportKind,
)


# ── Programs / Students / Courses ─────────────────────────────────────────────

class ProgramCreate(BaseModel):
    code: str = Field(..., max_length=16)
    name: str
    coordinator: Optional[str] = None


class ProgramOut(BaseModel):
    id: int
    code: str
    name: str
    coordinator: Optional[str]

    class Config:
        from_attributes = True


class StudentCreate(BaseModel):
    student_number: str
    name: str
    program_id: int
    enrollment_year: int = Field(..., ge=1950, le=2100)
    active: bool = True


class StudentOut(BaseModel):
    id: int
    student_number: str
    name: str
    program_id: int
    enrollment_year: int
    active: bool

    class Config:
        from_attributes = True


class CourseCreate(BaseModel):
    code: str
    name: str
    semester: int = Field(..., ge=1, le=8)
    program_id: Optional[int] = None


class CourseOut(BaseModel):
    id: int
    code: str
    name: str
    semester: int
    program_id: Optional[int]

    class Config:
        from_attributes = True


# ── Academic records ──────────────────────────────────────────────────────────

class AcademicRecordCreate(BaseModel):
    student_id: int
    course_id: int
    score1: float = Field(..., ge=1.0, le=7.0)
    score2: float = Field(..., ge=1.0, le=7.0)
    score3: float = Field(..., ge=1.0, le=7.0)
    score4: float = Field(..., ge=1.0, le=7.0)
    attendance_pct: float = Field(..., ge=0.0, le=100.0)
    platform_use_pct: float = Field(..., ge=0.0, le=100.0)


class AcademicRecordUpdate(BaseModel):
    score1: Optional[float] = Field(None, ge=1.0, le=7.0)
    score2: Optional[float] = Field(None, ge=1.0, le=7.0)
    score3: Optional[float] = Field(None, ge=1.0, le=7.0)
    score4: Optional[float] = Field(None, ge=1.0, le=7.0)
    attendance_pct: Optional[float] = Field(None, ge=0.0, le=100.0)
    platform_use_pct: Optional[float] = Field(None, ge=0.0, le=100.0)


class AcademicRecordOut(BaseModel):
    id: int
    student_id: int
    course_id: int
    score1: float
    score2: float
    score3: float
    score4: float
    average: float
    attendance_pct: float
    platform_use_pct: float
    recorded_at: datetime

    class Config:
        from_attributes = True


# ── Criteria ──────────────────────────────────────────────────────────────────

class CriterionCreate(BaseModel):
    name: str
    description: str = ""
    program_id: Optional[int] = None
    semester: Optional[int] = Field(None, ge=1, le=8)
    contamination_rate: float = Field(0.1, ge=0.01, le=0.5)
    n_estimators: int = Field(100, ge=10, le=500)
    threshold_grade: float = 3.0
    threshold_attendance: float = 70.0
    threshold_platform: float = 60.0
    threshold_variation: float = 1.5
    debug_logging: bool = False
    created_by: str = "admin"


class CriterionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    program_id: Optional[int] = None
    semester: Optional[int] = Field(None, ge=1, le=8)
    contamination_rate: Optional[float] = Field(None, ge=0.01, le=0.5)
    n_estimators: Optional[int] = Field(None, ge=10, le=500)
    debug_logging: Optional[bool] = None
    active: Optional[bool] = None
    updated_by: str = "admin"


class CriterionOut(BaseModel):
    id: int
    name: str
    description: str
    program_id: Optional[int]
    semester: Optional[int]
    contamination_rate: float
    n_estimators: int
    threshold_grade: float
    threshold_attendance: float
    threshold_platform: float
    threshold_variation: float
    debug_logging: bool
    active: bool
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class RunRequest(BaseModel):
    executed_by: str = "admin"


class RunResultOut(BaseModel):
    success: bool
    anomalies_detected: int
    total_students: int
    percentage: float
    duration_seconds: float
    run_id: Optional[int] = None
    error_message: Optional[str] = None
    message: str


class ExecutionLogOut(BaseModel):
    id: int
    criterion_id: Optional[int]
    executed_by: str
    executed_at: datetime
    total_students: int
    anomalies_detected: int
    anomaly_percentage: float
    parameters: dict[str, Any]
    metrics: dict[str, Any]
    duration_seconds: float
    success: bool
    error_message: str

    class Config:
        from_attributes = True


# ── Detections ────────────────────────────────────────────────────────────────

class DetectionOut(BaseModel):
    id: int
    student_id: int
    criterion_id: Optional[int]
    run_id: Optional[int]
    anomaly_type: AnomalyType
    raw_score: float
    score: float
    confidence: float
    avg_grade: float
    avg_attendance: float
    avg_platform_use: float
    grade_variation: float
    priority: int
    status: DetectionStatus
    criticality: CriticalityTier
    notes: str
    reviewed_by: Optional[str]
    detected_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StatusChangeRequest(BaseModel):
    status: DetectionStatus
    reviewed_by: str
    notes: Optional[str] = None


# ── Referrals ─────────────────────────────────────────────────────────────────

class SupportOfficeCreate(BaseModel):
    name: str
    kind: SupportKind
    contact: str = ""
    email: Optional[str] = None


class SupportOfficeOut(BaseModel):
    id: int
    name: str
    kind: SupportKind
    contact: str
    email: Optional[str]
    active: bool

    class Config:
        from_attributes = True


class ReferralCreate(BaseModel):
    support_office_id: int
    referred_by: str
    reason: str
    priority: int = Field(2, ge=1, le=5)
    notes: str = ""


class ReferralStatusRequest(BaseModel):
    status: ReferralStatus
    actor: str
    response: Optional[str] = None


class ReferralOut(BaseModel):
    id: int
    detection_id: int
    support_office_id: int
    referred_by: str
    status: ReferralStatus
    reason: str
    notes: str
    response: str
    priority: int
    created_at: datetime
    responded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ── Alerts ────────────────────────────────────────────────────────────────────

class AlertOut(BaseModel):
    id: int
    kind: AlertKind
    title: str
    message: str
    detection_id: Optional[int]
    course_id: Optional[int]
    created_at: datetime
    read: bool
    active: bool

    class Config:
        from_attributes = True
