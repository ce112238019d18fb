"""
Isotonic regression via Pool-Adjacent-Violators.

Points are sorted by predicted probability and start as unit blocks.
Adjacent blocks whose means are out of order are merged until block means
are non-decreasing. Each block contributes a breakpoint at its first point
and, when it spans several points, another at its last point, both at the
block mean (in percent).
"""

import bisect
import logging
from typing import List, Sequence

from core.calibration.models import IsotonicModel, LabeledPrediction

logger = logging.getLogger(__name__)


def fit_isotonic_regression(predictions: Sequence[LabeledPrediction]) -> IsotonicModel:
    """Fit an isotonic lookup table (empty model for empty input)."""
    if len(predictions) == 0:
        return IsotonicModel()

    ordered = sorted(predictions, key=lambda p: p.probability)

    # Stack-based PAV: each block is [label_sum, weight, start, end]
    blocks: List[List[float]] = []
    for i, pred in enumerate(ordered):
        blocks.append([float(pred.label), 1.0, i, i])
        while len(blocks) > 1 and blocks[-2][0] / blocks[-2][1] > blocks[-1][0] / blocks[-1][1]:
            label_sum, weight, _, end = blocks.pop()
            blocks[-1][0] += label_sum
            blocks[-1][1] += weight
            blocks[-1][3] = end

    x, y = [], []
    for label_sum, weight, start, end in blocks:
        calibrated = label_sum / weight * 100
        x.append(ordered[int(start)].probability)
        y.append(calibrated)
        if end != start:
            x.append(ordered[int(end)].probability)
            y.append(calibrated)

    logger.debug(f"Isotonic fit: {len(predictions)} points -> {len(blocks)} blocks")
    return IsotonicModel(x=x, y=y)


def isotonic_calibrate(probability: float, model: IsotonicModel) -> float:
    """
    Interpolate ``probability`` through the lookup table.

    Empty model returns the input; values outside the fitted range clamp to
    the first/last calibrated value.
    """
    if model.is_empty:
        return probability
    xs, ys = model.x, model.y
    if probability <= xs[0]:
        return ys[0]
    if probability >= xs[-1]:
        return ys[-1]

    right = bisect.bisect_right(xs, probability)
    left = right - 1
    x0, x1 = xs[left], xs[right]
    y0, y1 = ys[left], ys[right]
    if x1 == x0:
        return y0
    t = (probability - x0) / (x1 - x0)
    return y0 + t * (y1 - y0)
