"""
Prediction reconciliation, calibration drift and threshold recommendations.
"""

from core.monitoring.matching import MatchedTrade, match_trades_to_predictions
from core.monitoring.buckets import (
    CALIBRATION_BUCKETS,
    CalibrationBucket,
    compute_calibration_metrics,
)
from core.monitoring.drift import DriftDetection, detect_drift
from core.monitoring.thresholds import ThresholdRecommendation, recommend_threshold
from core.monitoring.reconciliation import ReconciliationEngine, ReconciliationSummary

__all__ = [
    "MatchedTrade",
    "match_trades_to_predictions",
    "CALIBRATION_BUCKETS",
    "CalibrationBucket",
    "compute_calibration_metrics",
    "DriftDetection",
    "detect_drift",
    "ThresholdRecommendation",
    "recommend_threshold",
    "ReconciliationEngine",
    "ReconciliationSummary",
]
