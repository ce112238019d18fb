"""
Calibration quality metrics.

Predictions are grouped into ten deciles by predicted probability
(bucket = min(9, floor(p / 10))). Per populated bucket the gap between the
mean predicted probability and the observed win rate (both in percent)
feeds:

- ECE: gap averaged with bucket counts as weights
- MCE: largest single-bucket gap
- Brier: mean (p/100 - label)^2 over all predictions

Pure function of its input; empty input yields zeros.
"""

from typing import Sequence

import numpy as np

from core.calibration.models import (
    CalibrationReport,
    LabeledPrediction,
    ReliabilityBin,
)

NUM_BUCKETS = 10


def evaluate_calibration(predictions: Sequence[LabeledPrediction]) -> CalibrationReport:
    if len(predictions) == 0:
        return CalibrationReport()

    probabilities = np.array([p.probability for p in predictions], dtype=float)
    labels = np.array([p.label for p in predictions], dtype=float)
    buckets = np.minimum(NUM_BUCKETS - 1, np.floor(probabilities / 10)).astype(int)
    buckets = np.maximum(buckets, 0)

    ece = 0.0
    mce = 0.0
    diagram = []
    for i in range(NUM_BUCKETS):
        mask = buckets == i
        count = int(mask.sum())
        if count == 0:
            continue
        avg_predicted = float(probabilities[mask].mean())
        avg_actual = float(labels[mask].mean() * 100)
        gap = abs(avg_predicted - avg_actual)
        ece += gap * count / len(predictions)
        mce = max(mce, gap)
        diagram.append(ReliabilityBin(
            bucket=f"{i * 10}-{(i + 1) * 10}%",
            avg_predicted=avg_predicted,
            avg_actual=avg_actual,
            count=count,
        ))

    brier = float(np.mean((probabilities / 100 - labels) ** 2))

    return CalibrationReport(
        expected_calibration_error=float(ece),
        max_calibration_error=float(mce),
        brier_score=brier,
        reliability_diagram=tuple(diagram),
        sample_count=len(predictions),
    )
