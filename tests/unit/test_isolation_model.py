"""
Unit tests for Isolation Forest scoring.
Works on in-memory FeatureVectors - no database involved.
"""

from unittest.mock import patch

import numpy as np
import pytest

from academic_risk.services.analytics.features import FeatureVector
from academic_risk.services.analytics.isolation_model import (
    RANDOM_STATE, ModelFitError, normalize_scores, resolve_hyperparameters, score_students,
)
from academic_risk.services.shared.models import AnomalyType


def _typical(i):
    return FeatureVector(student_id=i, student_number=f"S{i:03d}",
                         avg_grade=5.5, avg_attendance=85.0, avg_platform_use=70.0,
                         record_count=3)


def _outlier(i=99):
    return FeatureVector(student_id=i, student_number=f"S{i:03d}",
                         avg_grade=3.0, avg_attendance=40.0, avg_platform_use=20.0,
                         grade_variation=0.41, attendance_variation=4.1, grade_trend=0.25,
                         record_count=3, failing_share=1.0)


# ── resolve_hyperparameters ────────────────────────────────────────────────────

@pytest.mark.parametrize("contamination,estimators,expected", [
    (0.1, 100, (0.1, 100)),
    (0.01, 10, (0.05, 50)),
    (0.5, 500, (0.25, 200)),
    (None, None, (0.1, 100)),
])
def test_hyperparameters_clamped(contamination, estimators, expected):
    assert resolve_hyperparameters(contamination, estimators) == expected


# ── normalize_scores ───────────────────────────────────────────────────────────

def test_normalize_scores_min_max():
    out = normalize_scores([-0.2, 0.0, 0.3])
    assert out[0] == pytest.approx(0.0)
    assert out[1] == pytest.approx(40.0)
    assert out[2] == pytest.approx(100.0)


def test_normalize_scores_uniform_batch_is_neutral():
    assert list(normalize_scores([0.1, 0.1, 0.1])) == [50.0, 50.0, 50.0]


# ── score_students ─────────────────────────────────────────────────────────────

def test_single_outlier_is_the_only_flagged_student():
    vectors = [_typical(i) for i in range(11)] + [_outlier()]
    outcome = score_students(vectors, 0.05, 100, criterion_id=3)

    assert [a.vector.student_id for a in outcome.anomalies] == [99]
    flagged = outcome.anomalies[0]
    assert flagged.score == pytest.approx(100.0)
    assert flagged.confidence == pytest.approx(1.0)
    assert flagged.anomaly_type == AnomalyType.multiple
    assert flagged.raw_score > 0

    assert outcome.parameters == {
        "contamination":  0.05,
        "n_estimators":   100,
        "criterion_id":   3,
        "total_students": 12,
        "random_state":   RANDOM_STATE,
    }
    assert outcome.metrics["anomalies_detected"] == 1
    assert outcome.metrics["score_max"] == pytest.approx(100.0)
    assert outcome.metrics["score_min"] == pytest.approx(0.0)
    assert len(outcome.scores) == 12


def test_scores_are_deterministic():
    vectors = [_typical(i) for i in range(11)] + [_outlier()]
    first = score_students(vectors, 0.1, 120)
    second = score_students(vectors, 0.1, 120)
    assert first.scores == second.scores
    assert [a.vector.student_id for a in first.anomalies] == [a.vector.student_id for a in second.anomalies]


def test_identical_batch_flags_nobody():
    vectors = [_typical(i) for i in range(12)]
    outcome = score_students(vectors, 0.25, 100)
    assert outcome.anomalies == []
    assert outcome.scores == [50.0] * 12
    assert outcome.metrics["anomalies_detected"] == 0


def test_nan_features_are_filled():
    vectors = [_typical(i) for i in range(11)] + [_outlier()]
    vectors[0].grade_trend = float("nan")
    outcome = score_students(vectors, 0.05, 100)
    assert all(np.isfinite(outcome.scores))


def test_empty_batch_returns_empty_outcome():
    outcome = score_students([], 0.1, 100)
    assert outcome.anomalies == []
    assert outcome.parameters["total_students"] == 0


def test_model_failure_raises_model_fit_error():
    vectors = [_typical(i) for i in range(11)] + [_outlier()]
    with patch("academic_risk.services.analytics.isolation_model.IsolationForest") as forest:
        forest.return_value.fit_predict.side_effect = ValueError("bad input")
        with pytest.raises(ModelFitError, match="bad input"):
            score_students(vectors, 0.1, 100)
