"""
Platt + isotonic ensemble.

Weights are fixed at fit time (0.5 / 0.5 by default) and are not
re-optimized.
"""

from typing import Sequence

from core.calibration.isotonic import fit_isotonic_regression, isotonic_calibrate
from core.calibration.models import EnsembleCalibrator, LabeledPrediction
from core.calibration.platt import fit_platt_scaling, platt_calibrate


def fit_ensemble_calibrator(
    predictions: Sequence[LabeledPrediction],
    platt_weight: float = 0.5,
    isotonic_weight: float = 0.5,
) -> EnsembleCalibrator:
    """Fit both calibrators on the same predictions."""
    if platt_weight < 0 or isotonic_weight < 0 or platt_weight + isotonic_weight <= 0:
        raise ValueError(f"Invalid ensemble weights {platt_weight}/{isotonic_weight}")
    return EnsembleCalibrator(
        platt=fit_platt_scaling(predictions),
        isotonic=fit_isotonic_regression(predictions),
        platt_weight=platt_weight,
        isotonic_weight=isotonic_weight,
    )


def ensemble_calibrate(probability: float, calibrator: EnsembleCalibrator) -> float:
    """Weighted blend of the Platt and isotonic outputs (0-100)."""
    total = calibrator.platt_weight + calibrator.isotonic_weight
    blended = (
        platt_calibrate(probability, calibrator.platt) * calibrator.platt_weight
        + isotonic_calibrate(probability, calibrator.isotonic) * calibrator.isotonic_weight
    )
    return blended / total
