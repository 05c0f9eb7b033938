"""
Detection status state machine.

  detected            -> in_review | false_positive
  in_review           -> resolved | active_intervention | false_positive
  active_intervention -> resolved
  resolved, false_positive are terminal

Any other move raises InvalidTransitionError and leaves the Detection untouched.
Valid moves stamp updated_at, optionally reviewed_by / notes, and append an AuditLog row.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from academic_risk.services.shared.audit import emit_audit
from academic_risk.services.shared.models import Detection, DetectionStatus

logger = structlog.get_logger()

S = DetectionStatus

TRANSITIONS: dict[DetectionStatus, frozenset[DetectionStatus]] = {
    S.detected:            frozenset({S.in_review, S.false_positive}),
    S.in_review:           frozenset({S.resolved, S.active_intervention, S.false_positive}),
    S.active_intervention: frozenset({S.resolved}),
    S.resolved:            frozenset(),
    S.false_positive:      frozenset(),
}

REFERABLE = frozenset({S.detected, S.in_review, S.active_intervention})


class InvalidTransitionError(ValueError):
    def __init__(self, current: DetectionStatus, target: DetectionStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change detection status from '{current.value}' to '{target.value}'")


def can_transition(current: DetectionStatus, target: DetectionStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def is_referable(detection: Detection) -> bool:
    return detection.status in REFERABLE


def transition_detection(
    db,
    detection: Detection,
    new_status: DetectionStatus | str,
    actor: Optional[str] = None,
    notes: Optional[str] = None,
) -> Detection:
    """Apply a status change and record it in the audit trail. The caller commits."""
    target = DetectionStatus(new_status)
    current = DetectionStatus(detection.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)

    detection.status = target
    detection.updated_at = datetime.now(timezone.utc)
    if notes is not None:
        detection.notes = notes
    if actor:
        detection.reviewed_by = actor

    emit_audit(
        db,
        actor=actor or "system",
        action="detection_status_changed",
        resource=f"detection:{detection.id}",
        detail={"old_status": current.value, "new_status": target.value, "notes": notes or ""},
    )
    logger.info(
        "detection_status_changed",
        detection_id=detection.id,
        old_status=current.value,
        new_status=target.value,
        actor=actor or "system",
    )
    return detection
