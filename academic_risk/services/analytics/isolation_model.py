"""
Isolation Forest scoring
--------------------------
1. Assemble FeatureVectors into a 7-column frame (MODEL_COLUMNS); NaN -> 0.
2. Standardise columns (zero mean / unit variance).
3. Clamp the criterion's hyperparameters: contamination to [0.05, 0.25],
   n_estimators to [50, 200].
4. Fit IsolationForest with a fixed random_state; identical inputs always give
   identical flagged sets and scores.
5. Label each sample (-1 outlier / 1 inlier) and take -decision_function as the
   continuous anomaly score (higher = more anomalous). sklearn's decision_function
   is positive for inliers and negative for outliers; normalising it unnegated would
   give the most typical student score 100 and invert the priority scale.
6. Min-max the scores to 0-100 across the batch; a uniform batch scores 50.0.

The contamination threshold is sklearn's: the `contamination` percentile of the
training scores. A sample is flagged only when strictly past it, so nothing is
rounded and a batch of identical students flags nobody.
"""

from dataclasses import dataclass, field

import numpy as np
import pandas as pd
import structlog
from sklearn.ensemble import IsolationForest
from sklearn.preprocessing import StandardScaler

from academic_risk.services.analytics.classifier import classify_anomaly
from academic_risk.services.analytics.features import MODEL_COLUMNS, FeatureVector
from academic_risk.services.shared.models import AnomalyType

logger = structlog.get_logger()

RANDOM_STATE = 42
CONTAMINATION_BOUNDS = (0.05, 0.25)
ESTIMATOR_BOUNDS = (50, 200)
NEUTRAL_SCORE = 50.0


class ModelFitError(RuntimeError):
    """The outlier model failed to fit or score the batch."""


@dataclass
class ScoredStudent:
    vector:       FeatureVector
    raw_score:    float
    score:        float            # 0-100, higher = more anomalous
    confidence:   float
    anomaly_type: AnomalyType


@dataclass
class ModelOutcome:
    anomalies:  list[ScoredStudent] = field(default_factory=list)
    parameters: dict                = field(default_factory=dict)
    metrics:    dict                = field(default_factory=dict)
    scores:     list[float]         = field(default_factory=list)   # every sample, input order


def resolve_hyperparameters(contamination_rate, n_estimators) -> tuple[float, int]:
    lo, hi = CONTAMINATION_BOUNDS
    contamination = min(max(float(contamination_rate if contamination_rate is not None else 0.1), lo), hi)
    lo_n, hi_n = ESTIMATOR_BOUNDS
    estimators = min(max(int(n_estimators if n_estimators is not None else 100), lo_n), hi_n)
    return contamination, estimators


def normalize_scores(raw) -> np.ndarray:
    raw = np.asarray(raw, dtype=float)
    lo, hi = np.min(raw), np.max(raw)
    if hi == lo:
        return np.full(len(raw), NEUTRAL_SCORE)
    return (raw - lo) / (hi - lo) * 100.0


def build_frame(vectors: list[FeatureVector]) -> pd.DataFrame:
    df = pd.DataFrame([v.as_row() for v in vectors], columns=list(MODEL_COLUMNS))
    if df.isnull().any().any():
        logger.warning("model_nan_features_filled", rows=int(df.isnull().any(axis=1).sum()))
        df = df.fillna(0)
    return df


def score_students(
    vectors: list[FeatureVector],
    contamination_rate: float,
    n_estimators: int,
    criterion_id: int | None = None,
) -> ModelOutcome:
    contamination, estimators = resolve_hyperparameters(contamination_rate, n_estimators)
    parameters = {
        "contamination":  contamination,
        "n_estimators":   estimators,
        "criterion_id":   criterion_id,
        "total_students": len(vectors),
        "random_state":   RANDOM_STATE,
    }
    if not vectors:
        return ModelOutcome(parameters=parameters)

    try:
        X = StandardScaler().fit_transform(build_frame(vectors))
        forest = IsolationForest(
            contamination=contamination,
            n_estimators=estimators,
            random_state=RANDOM_STATE,
            n_jobs=-1,
        )
        labels = forest.fit_predict(X)
        raw = -forest.decision_function(X)
    except Exception as exc:
        raise ModelFitError(f"Isolation Forest failed: {exc}") from exc

    normalized = normalize_scores(raw)
    logger.info(
        "isoforest_scored",
        criterion_id=criterion_id,
        samples=len(vectors),
        outliers=int(np.sum(labels == -1)),
        contamination=contamination,
        n_estimators=estimators,
    )

    anomalies: list[ScoredStudent] = []
    for vector, label, raw_score, score in zip(vectors, labels, raw, normalized):
        if label != -1:
            continue
        anomalies.append(ScoredStudent(
            vector=vector,
            raw_score=float(raw_score),
            score=float(score),
            confidence=min(float(score) / 100.0, 1.0),
            anomaly_type=classify_anomaly(
                vector.avg_grade, vector.avg_attendance,
                vector.avg_platform_use, vector.grade_variation,
            ),
        ))

    metrics = {
        "anomalies_detected":  len(anomalies),
        "anomaly_percentage":  len(anomalies) / len(vectors) * 100,
        "score_min":           float(np.min(normalized)),
        "score_max":           float(np.max(normalized)),
        "score_mean":          float(np.mean(normalized)),
    }
    return ModelOutcome(
        anomalies=anomalies,
        parameters=parameters,
        metrics=metrics,
        scores=[float(s) for s in normalized],
    )
