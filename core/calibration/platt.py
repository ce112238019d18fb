"""
Platt scaling.

Fits p = 1 / (1 + exp(a*x + b)) by batch gradient descent on squared error
against Bayesian-smoothed targets: positives aim at (P+1)/(P+2), negatives
at 1/(N+2). The smoothing keeps a rare class from pushing the fit to 0/1.
"""

import logging
from typing import Sequence

import numpy as np

from core.calibration.models import LabeledPrediction, PlattParameters

logger = logging.getLogger(__name__)


def platt_calibrate(probability: float, params: PlattParameters) -> float:
    """Calibrated probability (0-100) for a raw probability (0-100)."""
    z = params.a * (probability / 100) + params.b
    return float(100.0 / (1.0 + np.exp(np.clip(z, -500, 500))))


def fit_platt_scaling(
    predictions: Sequence[LabeledPrediction],
    iterations: int = 1000,
    learning_rate: float = 0.01,
) -> PlattParameters:
    """
    Fit Platt parameters. Returns PlattParameters(a=1, b=0) for empty input.

    Starts from a = -1 (increasing map), b = 0.
    """
    if len(predictions) == 0:
        return PlattParameters(a=1.0, b=0.0)

    x = np.array([p.probability for p in predictions], dtype=float) / 100
    labels = np.array([p.label for p in predictions], dtype=float)

    positives = labels.sum()
    negatives = len(labels) - positives
    target_pos = (positives + 1) / (positives + 2)
    target_neg = 1 / (negatives + 2)
    targets = np.where(labels == 1, target_pos, target_neg)

    a, b = -1.0, 0.0
    for _ in range(iterations):
        z = np.clip(a * x + b, -500, 500)
        p = 1 / (1 + np.exp(z))
        # d/dz of p is -p(1-p)
        slope = (p - targets) * -p * (1 - p)
        a -= learning_rate * np.mean(slope * x)
        b -= learning_rate * np.mean(slope)

    logger.debug(f"Platt fit on {len(labels)} predictions: a={a:.4f} b={b:.4f}")
    return PlattParameters(a=float(a), b=float(b))
