"""
Calibration drift detection.

Compares the trade-weighted calibration error of a recent window with the
historical window before it. Drift is flagged when the two differ by more
than 0.10, or when any recent bucket is off by more than 0.15.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Sequence

from core.monitoring.buckets import CalibrationBucket, weighted_calibration_error

logger = logging.getLogger(__name__)

DRIFT_THRESHOLD = 0.10
MAX_BUCKET_ERROR_THRESHOLD = 0.15

INSUFFICIENT_DATA_MESSAGE = 'Insufficient recent data for drift detection'
WITHIN_LIMITS_MESSAGE = 'Model calibration is within acceptable limits.'


@dataclass(frozen=True)
class DriftDetection:
    period: str
    overall_calibration_error: float
    historical_calibration_error: float
    max_bucket_error: float
    brier_score: float
    has_significant_drift: bool
    recommendation: str
    recent_trade_count: int = 0

    def to_dict(self) -> Dict:
        return {
            'period': self.period,
            'overall_calibration_error': round(self.overall_calibration_error, 4),
            'historical_calibration_error': round(self.historical_calibration_error, 4),
            'max_bucket_error': round(self.max_bucket_error, 4),
            'brier_score': round(self.brier_score, 4),
            'has_significant_drift': self.has_significant_drift,
            'recommendation': self.recommendation,
            'recent_trade_count': self.recent_trade_count,
        }


def detect_drift(
    recent: Sequence[CalibrationBucket],
    historical: Sequence[CalibrationBucket],
    period: str = 'Last 30 days',
) -> DriftDetection:
    """
    Drift report from recent vs historical buckets.

    Never raises for thin data: with no recent buckets the report is
    neutral (no drift, zero errors).
    """
    total = sum(b.trade_count for b in recent)
    if total == 0:
        return DriftDetection(
            period=period,
            overall_calibration_error=0.0,
            historical_calibration_error=0.0,
            max_bucket_error=0.0,
            brier_score=0.0,
            has_significant_drift=False,
            recommendation=INSUFFICIENT_DATA_MESSAGE,
        )

    recent_error = weighted_calibration_error(recent)
    historical_error = weighted_calibration_error(historical)
    max_bucket_error = max(abs(b.calibration_error) for b in recent)
    brier = sum(
        (b.expected_win_rate - b.actual_win_rate) ** 2 * b.trade_count for b in recent
    ) / total

    drift_amount = abs(recent_error - historical_error)
    has_drift = drift_amount > DRIFT_THRESHOLD or max_bucket_error > MAX_BUCKET_ERROR_THRESHOLD

    recommendation = WITHIN_LIMITS_MESSAGE
    if has_drift:
        over = sum(1 for b in recent if b.is_overconfident)
        under = sum(1 for b in recent if b.is_underconfident)
        if over > under:
            recommendation = (
                f"Model appears overconfident. Consider raising entry threshold by "
                f"{max_bucket_error * 100:.0f}% or retraining with recent data."
            )
        elif under > over:
            recommendation = (
                "Model appears underconfident. Consider lowering entry threshold "
                "or expanding universe criteria."
            )
        else:
            recommendation = (
                "Mixed calibration issues detected. Review model features and consider retraining."
            )
        logger.warning(
            f"Calibration drift ({period}): recent={recent_error:+.3f} "
            f"historical={historical_error:+.3f} max_bucket={max_bucket_error:.3f}"
        )

    return DriftDetection(
        period=period,
        overall_calibration_error=recent_error,
        historical_calibration_error=historical_error,
        max_bucket_error=max_bucket_error,
        brier_score=brier,
        has_significant_drift=has_drift,
        recommendation=recommendation,
        recent_trade_count=total,
    )
