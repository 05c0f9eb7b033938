"""
Referral workflow: staff send a flagged student to a support office.

  pending    -> processing | cancelled
  processing -> completed | cancelled
  completed, cancelled are terminal

Referrals are only accepted for detections that are still open
(detected, in_review, active_intervention) and for active support offices.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from academic_risk.services.analytics.status import is_referable
from academic_risk.services.shared.audit import emit_audit
from academic_risk.services.shared.models import Detection, Referral, ReferralStatus, SupportOffice

logger = structlog.get_logger()

R = ReferralStatus

REFERRAL_TRANSITIONS: dict[ReferralStatus, frozenset[ReferralStatus]] = {
    R.pending:    frozenset({R.processing, R.cancelled}),
    R.processing: frozenset({R.completed, R.cancelled}),
    R.completed:  frozenset(),
    R.cancelled:  frozenset(),
}

_CLOSING = frozenset({R.completed, R.cancelled})


class ReferralError(ValueError):
    """A referral could not be created or moved to the requested status."""


def create_referral(
    db,
    detection: Detection,
    office: SupportOffice,
    referred_by: str,
    reason: str,
    priority: int = 2,
    notes: str = "",
) -> Referral:
    if not is_referable(detection):
        raise ReferralError(
            f"Detection {detection.id} in status '{detection.status.value}' cannot be referred"
        )
    if not office.active:
        raise ReferralError(f"Support office '{office.name}' is inactive")

    referral = Referral(
        detection_id=detection.id,
        support_office_id=office.id,
        referred_by=referred_by,
        reason=reason,
        priority=priority,
        notes=notes,
        status=ReferralStatus.pending,
    )
    db.add(referral)
    db.flush()

    emit_audit(
        db,
        actor=referred_by,
        action="referral_created",
        resource=f"referral:{referral.id}",
        detail={
            "detection_id": detection.id,
            "student_id":   detection.student_id,
            "office_id":    office.id,
            "priority":     priority,
        },
    )
    logger.info("referral_created", referral_id=referral.id, detection_id=detection.id, office_id=office.id)
    return referral


def transition_referral(
    db,
    referral: Referral,
    new_status: ReferralStatus | str,
    actor: str,
    response: Optional[str] = None,
) -> Referral:
    target = ReferralStatus(new_status)
    current = ReferralStatus(referral.status)
    if target not in REFERRAL_TRANSITIONS[current]:
        raise ReferralError(f"Cannot change referral status from '{current.value}' to '{target.value}'")

    referral.status = target
    if response is not None:
        referral.response = response
    if target in _CLOSING:
        referral.responded_at = datetime.now(timezone.utc)

    emit_audit(
        db,
        actor=actor,
        action="referral_status_changed",
        resource=f"referral:{referral.id}",
        detail={"old_status": current.value, "new_status": target.value},
    )
    return referral
