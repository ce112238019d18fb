"""
Calibration buckets over matched trades.

Predicted probabilities (0-1) are grouped into 5-point buckets from 50% to
90% plus a final 90-100% bucket. Membership is min <= p < max, except that
p == 1.0 belongs to the last bucket. Predictions under 50% are not
bucketed.

Per bucket:
    expected_win_rate  = bucket midpoint
    actual_win_rate    = share of trades with realized P&L > 0
    calibration_error  = actual - expected
    overconfident      = error < -0.05
    underconfident     = error > +0.05
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from core.monitoring.matching import MatchedTrade, realized_pnl

CALIBRATION_TOLERANCE = 0.05

CALIBRATION_BUCKETS: Tuple[Tuple[str, float, float], ...] = (
    ('50-55%', 0.50, 0.55),
    ('55-60%', 0.55, 0.60),
    ('60-65%', 0.60, 0.65),
    ('65-70%', 0.65, 0.70),
    ('70-75%', 0.70, 0.75),
    ('75-80%', 0.75, 0.80),
    ('80-85%', 0.80, 0.85),
    ('85-90%', 0.85, 0.90),
    ('90-100%', 0.90, 1.00),
)


@dataclass(frozen=True)
class CalibrationBucket:
    label: str
    min_probability: float
    max_probability: float
    trade_count: int
    expected_win_rate: float
    actual_win_rate: float

    @property
    def calibration_error(self) -> float:
        return self.actual_win_rate - self.expected_win_rate

    @property
    def is_overconfident(self) -> bool:
        return self.calibration_error < -CALIBRATION_TOLERANCE

    @property
    def is_underconfident(self) -> bool:
        return self.calibration_error > CALIBRATION_TOLERANCE

    def to_dict(self) -> Dict:
        return {
            'bucket': self.label,
            'predicted_probability_range': {'min': self.min_probability, 'max': self.max_probability},
            'trade_count': self.trade_count,
            'expected_win_rate': round(self.expected_win_rate, 4),
            'actual_win_rate': round(self.actual_win_rate, 4),
            'calibration_error': round(self.calibration_error, 4),
            'is_overconfident': self.is_overconfident,
            'is_underconfident': self.is_underconfident,
        }


def bucket_for(probability: float) -> int:
    """Index into CALIBRATION_BUCKETS, or -1 if unbucketed."""
    for i, (_, low, high) in enumerate(CALIBRATION_BUCKETS):
        is_last = i == len(CALIBRATION_BUCKETS) - 1
        if low <= probability < high or (is_last and probability == high):
            return i
    return -1


def compute_calibration_metrics(matched: Sequence[MatchedTrade]) -> List[CalibrationBucket]:
    """Populated buckets only, in probability order. Empty input gives []."""
    counts = [0] * len(CALIBRATION_BUCKETS)
    wins = [0] * len(CALIBRATION_BUCKETS)

    for m in matched:
        if m.prediction is None or m.prediction.predicted_probability is None:
            continue
        idx = bucket_for(m.prediction.predicted_probability)
        if idx < 0:
            continue
        counts[idx] += 1
        if realized_pnl(m.trade) > 0:
            wins[idx] += 1

    buckets = []
    for (label, low, high), count, win_count in zip(CALIBRATION_BUCKETS, counts, wins):
        if count == 0:
            continue
        buckets.append(CalibrationBucket(
            label=label,
            min_probability=low,
            max_probability=high,
            trade_count=count,
            expected_win_rate=(low + high) / 2,
            actual_win_rate=win_count / count,
        ))
    return buckets


def weighted_calibration_error(buckets: Sequence[CalibrationBucket]) -> float:
    """Trade-weighted mean calibration error (0 for no trades)."""
    total = sum(b.trade_count for b in buckets)
    if total == 0:
        return 0.0
    return sum(b.calibration_error * b.trade_count for b in buckets) / total
