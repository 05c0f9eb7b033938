"""
Anomaly classification, priority and criticality.

classify_anomaly() is an ordered decision list; first match wins:
  1. grade < 4.0 and attendance < 60  -> multiple
  2. grade < 4.0                      -> low_performance
  3. attendance < 60                  -> low_attendance
  4. platform use < 30                -> inefficient_platform_use
  5. grade variation > 1.5            -> high_variability
  6. otherwise                        -> multiple
"""

import structlog

from academic_risk.services.shared.models import AnomalyType, CriticalityTier

logger = structlog.get_logger()

PASSING_GRADE       = 4.0
MIN_ATTENDANCE      = 60.0
MIN_PLATFORM_USE    = 30.0
MAX_GRADE_VARIATION = 1.5

# (min score, priority), checked top-down
_PRIORITY_BREAKPOINTS = (
    (80.0, 5),
    (60.0, 4),
    (40.0, 3),
    (20.0, 2),
)


def classify_anomaly(
    avg_grade: float,
    avg_attendance: float,
    avg_platform_use: float,
    grade_variation: float,
) -> AnomalyType:
    try:
        low_grade = avg_grade < PASSING_GRADE
        low_attendance = avg_attendance < MIN_ATTENDANCE
        if low_grade and low_attendance:
            return AnomalyType.multiple
        if low_grade:
            return AnomalyType.low_performance
        if low_attendance:
            return AnomalyType.low_attendance
        if avg_platform_use < MIN_PLATFORM_USE:
            return AnomalyType.inefficient_platform_use
        if grade_variation > MAX_GRADE_VARIATION:
            return AnomalyType.high_variability
        return AnomalyType.multiple
    except Exception as exc:
        logger.warning("anomaly_type_fallback", error=str(exc))
        return AnomalyType.multiple


def priority_for_score(score: float) -> int:
    """Map a normalised 0-100 score to priority 1 (very low) .. 5 (critical)."""
    for threshold, priority in _PRIORITY_BREAKPOINTS:
        if score >= threshold:
            return priority
    return 1


def _points(value: float, steps: tuple[tuple[float, int], ...], below: bool) -> int:
    for limit, pts in steps:
        if (value < limit) if below else (value > limit):
            return pts
    return 0


def criticality_tier(vector) -> CriticalityTier:
    """
    Points-based severity of a flagged student's situation, independent of the model score.
    Grade, attendance, platform use, the spread of all partial scores and the share of
    failed courses each contribute; >= 8 points is high, >= 4 medium, anything else low.
    Score spread and failing share come from every record of the student (see features.py).
    """
    try:
        points = 0
        points += _points(vector.avg_grade,        ((3.5, 3), (4.0, 2), (4.5, 1)), below=True)
        points += _points(vector.avg_attendance,   ((60, 3), (75, 2), (85, 1)),    below=True)
        points += _points(vector.avg_platform_use, ((50, 2), (70, 1)),             below=True)
        points += _points(vector.score_variation,  ((1.5, 2), (1.0, 1)),           below=False)
        points += _points(vector.failing_share * 100, ((50, 3), (30, 2), (10, 1)), below=False)
    except Exception as exc:
        logger.warning("criticality_fallback", error=str(exc))
        return CriticalityTier.medium

    if points >= 8:
        return CriticalityTier.high
    if points >= 4:
        return CriticalityTier.medium
    return CriticalityTier.low
