"""
Temperature scaling.

A single scalar T divides the logit of the raw probability before the
sigmoid. T > 1 softens predictions toward 50%, T < 1 sharpens them.
"""

import logging
import math
from typing import Sequence

import numpy as np

from core.calibration.models import LabeledPrediction

logger = logging.getLogger(__name__)

LOGIT_EPSILON = 1e-10
NLL_CLAMP = 1e-10


def temperature_scale(probability: float, temperature: float) -> float:
    """Rescale a probability (0-100) by ``temperature``."""
    if temperature <= 0:
        raise ValueError(f"temperature must be positive, got {temperature}")
    ratio = probability / (100 - probability + LOGIT_EPSILON)
    if ratio <= 0:
        return 0.0
    scaled = math.log(ratio) / temperature
    return float(100.0 / (1.0 + np.exp(-np.clip(scaled, -500, 500))))


def _negative_log_likelihood(predictions: Sequence[LabeledPrediction], temperature: float) -> float:
    nll = 0.0
    for pred in predictions:
        p = temperature_scale(pred.probability, temperature) / 100
        p = min(max(p, NLL_CLAMP), 1 - NLL_CLAMP)
        nll -= math.log(p) if pred.label == 1 else math.log(1 - p)
    return nll


def find_optimal_temperature(predictions: Sequence[LabeledPrediction]) -> float:
    """
    Grid search T over 0.1..5.0 (step 0.1) minimizing negative log-likelihood.

    Returns 1.0 for empty input. Ties keep the smaller temperature.
    """
    if len(predictions) == 0:
        return 1.0

    best_temperature, best_nll = 1.0, math.inf
    for step in range(1, 51):
        temperature = round(step * 0.1, 1)
        nll = _negative_log_likelihood(predictions, temperature)
        if nll < best_nll:
            best_temperature, best_nll = temperature, nll

    logger.debug(f"Optimal temperature {best_temperature} (nll={best_nll:.4f}, n={len(predictions)})")
    return best_temperature
