"""
Entry threshold recommendation from calibration buckets.

- Under 20 matched trades: keep the current threshold (low confidence).
- Otherwise, if some bucket is well calibrated (|error| <= 0.05 with at
  least 5 trades), recommend the lowest such bucket's lower bound.
- Otherwise shift the current threshold by the trade-weighted calibration
  error, clamped to [0.50, 0.90].

Confidence follows matched trade count: low < 20 <= medium < 50 <= high.
"""

from dataclasses import dataclass
from typing import Dict, Sequence

from core.monitoring.buckets import (
    CALIBRATION_TOLERANCE,
    CalibrationBucket,
    weighted_calibration_error,
)

MIN_TRADES = 20
HIGH_CONFIDENCE_TRADES = 50
MIN_BUCKET_TRADES = 5
THRESHOLD_FLOOR = 0.50
THRESHOLD_CEILING = 0.90


@dataclass(frozen=True)
class ThresholdRecommendation:
    current_threshold: float
    recommended_threshold: float
    expected_win_rate_change: float
    expected_trade_count_change: float
    confidence: str
    rationale: str

    def to_dict(self) -> Dict:
        return {
            'current_threshold': self.current_threshold,
            'recommended_threshold': round(self.recommended_threshold, 4),
            'expected_win_rate_change': round(self.expected_win_rate_change, 4),
            'expected_trade_count_change': round(self.expected_trade_count_change, 2),
            'confidence': self.confidence,
            'rationale': self.rationale,
        }


def confidence_for(trade_count: int) -> str:
    if trade_count < MIN_TRADES:
        return 'low'
    if trade_count < HIGH_CONFIDENCE_TRADES:
        return 'medium'
    return 'high'


def _trades_and_win_rate(buckets: Sequence[CalibrationBucket], threshold: float):
    above = [b for b in buckets if b.min_probability >= threshold]
    trades = sum(b.trade_count for b in above)
    if trades == 0:
        return 0, None
    return trades, sum(b.actual_win_rate * b.trade_count for b in above) / trades


def recommend_threshold(
    buckets: Sequence[CalibrationBucket],
    current_threshold: float = 0.50,
) -> ThresholdRecommendation:
    """Threshold recommendation; never raises for thin data."""
    total = sum(b.trade_count for b in buckets)
    confidence = confidence_for(total)

    if total < MIN_TRADES:
        return ThresholdRecommendation(
            current_threshold=current_threshold,
            recommended_threshold=current_threshold,
            expected_win_rate_change=0.0,
            expected_trade_count_change=0.0,
            confidence=confidence,
            rationale=(
                f"Insufficient trade history ({total} matched). Need at least "
                f"{MIN_TRADES} completed trades for reliable recommendations."
            ),
        )

    well_calibrated = sorted(
        (b for b in buckets
         if abs(b.calibration_error) <= CALIBRATION_TOLERANCE and b.trade_count >= MIN_BUCKET_TRADES),
        key=lambda b: b.min_probability,
    )

    if not well_calibrated:
        avg_error = weighted_calibration_error(buckets)
        adjusted = min(THRESHOLD_CEILING, max(THRESHOLD_FLOOR, current_threshold - avg_error))
        direction = 'raising' if avg_error < 0 else 'lowering'
        return ThresholdRecommendation(
            current_threshold=current_threshold,
            recommended_threshold=adjusted,
            expected_win_rate_change=avg_error,
            expected_trade_count_change=-10.0 if avg_error < 0 else 10.0,
            confidence=confidence,
            rationale=f"Calibration error of {avg_error * 100:.1f}% suggests {direction} threshold.",
        )

    best = well_calibrated[0]
    recommended = best.min_probability

    trades_recommended, win_rate_recommended = _trades_and_win_rate(buckets, recommended)
    trades_current, win_rate_current = _trades_and_win_rate(buckets, current_threshold)
    if win_rate_current is None:
        win_rate_current = 0.5
    trade_count_change = (
        (trades_recommended - trades_current) / trades_current * 100 if trades_current else 0.0
    )

    return ThresholdRecommendation(
        current_threshold=current_threshold,
        recommended_threshold=recommended,
        expected_win_rate_change=(win_rate_recommended or 0.0) - win_rate_current,
        expected_trade_count_change=trade_count_change,
        confidence=confidence,
        rationale=(
            f"Based on {total} trades, bucket {best.label} shows reliable calibration "
            f"with {best.actual_win_rate * 100:.0f}% actual win rate."
        ),
    )
