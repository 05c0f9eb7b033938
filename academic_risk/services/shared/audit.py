"""
Audit helper shared by the status state machine, the referral workflow and the
criteria routes. Rows are added to the caller's session; the caller commits.
"""

from academic_risk.services.shared.models import AuditLog


def emit_audit(db, actor: str, action: str, resource: str, detail: dict) -> AuditLog:
    entry = AuditLog(
        actor=actor or "system",
        action=action,
        resource=resource,
        detail=detail,
    )
    db.add(entry)
    return entry
