"""
Reconciliation of model predictions against realized trade outcomes.

Works on a point-in-time snapshot of settled trades so reports are
consistent even while trades are being closed concurrently.

Usage:
    engine = ReconciliationEngine(store)
    summary = engine.get_summary(current_threshold=0.55)
    if summary.drift.has_significant_drift:
        ...
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional

from core.calibration.ensemble import fit_ensemble_calibrator
from core.calibration.models import EnsembleCalibrator, LabeledPrediction
from core.errors import ValidationError
from core.monitoring.buckets import CalibrationBucket, compute_calibration_metrics
from core.monitoring.drift import DriftDetection, detect_drift
from core.monitoring.matching import (
    MATCH_WINDOW_DAYS,
    MatchedTrade,
    match_trades_to_predictions,
    realized_pnl,
)
from core.monitoring.thresholds import ThresholdRecommendation, recommend_threshold
from core.trade_lifecycle.trade_store import TradeStore

logger = logging.getLogger(__name__)

HISTORICAL_WINDOW_DAYS = 90


@dataclass(frozen=True)
class ReconciliationSummary:
    total_trades: int
    matched_trades: int
    match_rate: float
    calibration: List[CalibrationBucket]
    drift: DriftDetection
    threshold_recommendation: ThresholdRecommendation

    def to_dict(self) -> Dict:
        return {
            'total_trades': self.total_trades,
            'matched_trades': self.matched_trades,
            'match_rate': round(self.match_rate, 4),
            'calibration': [b.to_dict() for b in self.calibration],
            'drift': self.drift.to_dict(),
            'threshold_recommendation': self.threshold_recommendation.to_dict(),
        }


class ReconciliationEngine:
    """Calibration, drift and threshold reporting over a TradeStore."""

    def __init__(self, store: TradeStore, clock: Callable[[], date] = date.today):
        self.store = store
        self.clock = clock

    def match(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[MatchedTrade]:
        """Settled trades entered in [start, end] matched to their predictions."""
        if start and end and start > end:
            raise ValidationError(f"start {start} is after end {end}")
        trades = self.store.snapshot_closed_trades(entry_after=start, entry_before=end)
        # Widen the log window so close matches across the boundary are found.
        log_start = start - timedelta(days=MATCH_WINDOW_DAYS) if start else None
        log_end = end + timedelta(days=MATCH_WINDOW_DAYS) if end else None
        logs = self.store.get_prediction_logs(log_start, log_end)
        return match_trades_to_predictions(trades, logs)

    def get_calibration_metrics(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CalibrationBucket]:
        return compute_calibration_metrics(self.match(start, end))

    def detect_drift(self, recent_days: int = 30) -> DriftDetection:
        """
        Compare the last ``recent_days`` with the 90 days before them.

        Recent window: [today - recent_days, today]
        Historical window: [recent_start - 90d, recent_start)
        """
        if recent_days <= 0:
            raise ValidationError(f"recent_days must be positive, got {recent_days}")
        today = self.clock()
        recent_start = today - timedelta(days=recent_days)
        historical_start = recent_start - timedelta(days=HISTORICAL_WINDOW_DAYS)
        historical_end = recent_start - timedelta(days=1)

        recent = self.get_calibration_metrics(recent_start, today)
        historical = self.get_calibration_metrics(historical_start, historical_end)
        return detect_drift(recent, historical, period=f"Last {recent_days} days")

    def get_threshold_recommendation(self, current_threshold: float = 0.50) -> ThresholdRecommendation:
        return recommend_threshold(self.get_calibration_metrics(), current_threshold)

    def get_summary(self, current_threshold: float = 0.50, recent_days: int = 30) -> ReconciliationSummary:
        matched = self.match()
        total = len(matched)
        matched_count = sum(1 for m in matched if m.is_matched)
        calibration = compute_calibration_metrics(matched)

        summary = ReconciliationSummary(
            total_trades=total,
            matched_trades=matched_count,
            match_rate=matched_count / total if total else 0.0,
            calibration=calibration,
            drift=self.detect_drift(recent_days),
            threshold_recommendation=recommend_threshold(calibration, current_threshold),
        )
        logger.info(
            f"Reconciliation: {matched_count}/{total} trades matched, "
            f"{len(calibration)} populated buckets"
        )
        return summary

    def fit_calibrator(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> EnsembleCalibrator:
        """
        Fit an ensemble calibrator on matched (prediction, outcome) pairs.

        Probabilities are passed in 0-100 units; label is realized P&L > 0.
        """
        pairs = [
            LabeledPrediction(m.prediction.predicted_probability * 100, int(realized_pnl(m.trade) > 0))
            for m in self.match(start, end)
            if m.is_matched
        ]
        logger.info(f"Fitting calibrator on {len(pairs)} matched predictions")
        return fit_ensemble_calibrator(pairs)
