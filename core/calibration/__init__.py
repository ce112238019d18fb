"""
Probability Calibration

Platt scaling, isotonic regression (PAV), their ensemble, temperature
scaling, and calibration quality metrics (ECE / MCE / Brier).
All probabilities are in percent (0-100).
"""

from core.calibration.models import (
    CalibrationReport,
    EnsembleCalibrator,
    IsotonicModel,
    LabeledPrediction,
    PlattParameters,
    ReliabilityBin,
)
from core.calibration.platt import fit_platt_scaling, platt_calibrate
from core.calibration.isotonic import fit_isotonic_regression, isotonic_calibrate
from core.calibration.ensemble import ensemble_calibrate, fit_ensemble_calibrator
from core.calibration.temperature import find_optimal_temperature, temperature_scale
from core.calibration.evaluation import evaluate_calibration

__all__ = [
    "CalibrationReport",
    "EnsembleCalibrator",
    "IsotonicModel",
    "LabeledPrediction",
    "PlattParameters",
    "ReliabilityBin",
    "fit_platt_scaling",
    "platt_calibrate",
    "fit_isotonic_regression",
    "isotonic_calibrate",
    "ensemble_calibrate",
    "fit_ensemble_calibrator",
    "find_optimal_temperature",
    "temperature_scale",
    "evaluate_calibration",
]
