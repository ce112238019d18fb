"""
Exit Model

Fixed-schema feature extraction, logistic scoring with injected
coefficients, and offline training.
"""

from core.exit_model.features import (
    FEATURE_NAMES,
    ExitFeatureVector,
    calculate_atr,
    calculate_rsi,
    calculate_sma,
    extract_exit_features,
)
from core.exit_model.coefficients import (
    ModelCoefficients,
    load_coefficients,
    save_coefficients,
)
from core.exit_model.scorer import ExitSignal, LogisticScorer, sigmoid
from core.exit_model.training import (
    TrainingExample,
    evaluate_model,
    label_exit_points,
    train_exit_model,
)

__all__ = [
    "FEATURE_NAMES",
    "ExitFeatureVector",
    "calculate_atr",
    "calculate_rsi",
    "calculate_sma",
    "extract_exit_features",
    "ModelCoefficients",
    "load_coefficients",
    "save_coefficients",
    "ExitSignal",
    "LogisticScorer",
    "sigmoid",
    "TrainingExample",
    "evaluate_model",
    "label_exit_points",
    "train_exit_model",
]
