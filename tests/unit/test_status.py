"""
Unit tests for the detection status state machine and the referral workflow.
"""

import pytest

from academic_risk.services.analytics.referrals import ReferralError, create_referral, transition_referral
from academic_risk.services.analytics.status import (
    InvalidTransitionError, can_transition, transition_detection,
)
from academic_risk.services.shared.models import (
    AnomalyType, AuditLog, Detection, DetectionStatus, Program, ReferralStatus,
    Student, SupportKind, SupportOffice,
)

S = DetectionStatus


def _detection(db, status=S.detected):
    program = Program(code="ENG", name="Engineering")
    db.add(program)
    db.flush()
    student = Student(student_number="E001", name="Luis", program_id=program.id, enrollment_year=2021)
    db.add(student)
    db.flush()
    detection = Detection(
        student_id=student.id, anomaly_type=AnomalyType.low_performance, status=status,
        score=85.0, confidence=0.85, avg_grade=3.2, avg_attendance=80.0,
        avg_platform_use=60.0, grade_variation=0.3, priority=5,
    )
    db.add(detection)
    db.commit()
    return detection


def _office(db, active=True):
    office = SupportOffice(name="Tutoring Center", kind=SupportKind.tutoring, active=active)
    db.add(office)
    db.commit()
    return office


# ── State machine ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("current,target,allowed", [
    (S.detected, S.in_review, True),
    (S.detected, S.false_positive, True),
    (S.detected, S.resolved, False),
    (S.detected, S.active_intervention, False),
    (S.in_review, S.resolved, True),
    (S.in_review, S.active_intervention, True),
    (S.in_review, S.false_positive, True),
    (S.in_review, S.detected, False),
    (S.active_intervention, S.resolved, True),
    (S.active_intervention, S.false_positive, False),
    (S.resolved, S.in_review, False),
    (S.false_positive, S.detected, False),
])
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_valid_transition_updates_and_audits(db):
    detection = _detection(db)
    transition_detection(db, detection, "in_review", actor="counselor", notes="checking grades")
    db.commit()

    assert detection.status == S.in_review
    assert detection.reviewed_by == "counselor"
    assert detection.notes == "checking grades"

    entry = db.query(AuditLog).one()
    assert entry.action == "detection_status_changed"
    assert entry.resource == f"detection:{detection.id}"
    assert entry.actor == "counselor"
    assert entry.detail["old_status"] == "detected"
    assert entry.detail["new_status"] == "in_review"


def test_invalid_transition_leaves_detection_untouched(db):
    detection = _detection(db)
    with pytest.raises(InvalidTransitionError) as exc:
        transition_detection(db, detection, S.resolved, actor="counselor")

    assert exc.value.current == S.detected
    assert exc.value.target == S.resolved
    assert detection.status == S.detected
    assert detection.reviewed_by is None
    assert db.query(AuditLog).count() == 0


def test_terminal_status_cannot_move(db):
    detection = _detection(db, status=S.false_positive)
    with pytest.raises(InvalidTransitionError):
        transition_detection(db, detection, S.in_review)


def test_unknown_status_rejected(db):
    detection = _detection(db)
    with pytest.raises(ValueError):
        transition_detection(db, detection, "archived")


# ── Referrals ──────────────────────────────────────────────────────────────────

def test_create_referral_for_open_detection(db):
    detection = _detection(db)
    office = _office(db)
    referral = create_referral(db, detection, office, referred_by="counselor",
                               reason="Low grades in three courses", priority=4)
    db.commit()

    assert referral.id is not None
    assert referral.status == ReferralStatus.pending
    assert referral.priority == 4
    entry = db.query(AuditLog).filter(AuditLog.action == "referral_created").one()
    assert entry.resource == f"referral:{referral.id}"
    assert entry.detail["detection_id"] == detection.id


def test_referral_rejected_for_closed_detection(db):
    detection = _detection(db, status=S.resolved)
    office = _office(db)
    with pytest.raises(ReferralError):
        create_referral(db, detection, office, referred_by="counselor", reason="late")


def test_referral_rejected_for_inactive_office(db):
    detection = _detection(db)
    office = _office(db, active=False)
    with pytest.raises(ReferralError, match="inactive"):
        create_referral(db, detection, office, referred_by="counselor", reason="x")


def test_referral_lifecycle(db):
    detection = _detection(db)
    referral = create_referral(db, detection, _office(db), referred_by="counselor", reason="x")
    db.commit()

    transition_referral(db, referral, "processing", actor="tutor")
    assert referral.responded_at is None
    transition_referral(db, referral, ReferralStatus.completed, actor="tutor", response="Weekly sessions")
    db.commit()

    assert referral.status == ReferralStatus.completed
    assert referral.response == "Weekly sessions"
    assert referral.responded_at is not None

    with pytest.raises(ReferralError):
        transition_referral(db, referral, ReferralStatus.cancelled, actor="tutor")


def test_referral_cannot_skip_processing(db):
    detection = _detection(db)
    referral = create_referral(db, detection, _office(db), referred_by="counselor", reason="x")
    with pytest.raises(ReferralError):
        transition_referral(db, referral, ReferralStatus.completed, actor="tutor")
