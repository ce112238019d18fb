"""
Exit Feature Extraction

Turns a trade's daily bars into the fixed 22-field ExitFeatureVector the
exit model is trained and scored on. Only bars up to and including the
evaluation day are read, so there is no look-ahead.

The field order of ExitFeatureVector is the schema: FEATURE_NAMES is derived
from it and trained coefficients are validated against it at load time.

Usage:
    features = extract_exit_features(bars, entry_idx=50, current_idx=62,
                                     entry_price=100.0, stop_loss=95.0)
    features.rsi_14
    features.to_array()
"""

from dataclasses import dataclass, fields, asdict
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from core.errors import ValidationError
from core.trade_lifecycle.models import PriceBar


@dataclass(frozen=True)
class ExitFeatureVector:
    """Feature snapshot of an open position on one day."""
    # Position state
    holding_days: float
    unrealized_r: float
    unrealized_pct: float
    return_from_entry: float
    return_from_high: float          # Close vs max high since entry (%)

    # Momentum
    return_last_5d: float
    return_last_3d: float
    return_last_1d: float

    # Volatility / technicals
    atr_percent: float
    daily_range_percent: float
    rsi_14: float
    price_vs_20sma: float
    price_vs_50sma: float
    volume_vs_avg: float

    # Market context
    spy_return_5d: float
    spy_return_10d: float

    # Calendar
    day_of_week: float               # 0 = Sunday
    is_month_end: float              # Day of month >= 25

    # Profit flags
    in_profit: float
    above_1r: float
    above_15r: float
    above_2r: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def to_array(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in FEATURE_NAMES], dtype=float)

    @classmethod
    def from_dict(cls, data: Mapping[str, float]) -> 'ExitFeatureVector':
        """
        Strict construction from a mapping.

        Raises:
            ValidationError: unknown or missing feature names
        """
        unknown = sorted(set(data) - set(FEATURE_NAMES))
        missing = sorted(set(FEATURE_NAMES) - set(data))
        if unknown or missing:
            raise ValidationError(
                f"Feature mapping does not match schema (unknown={unknown}, missing={missing})"
            )
        return cls(**{name: float(data[name]) for name in FEATURE_NAMES})


FEATURE_NAMES = tuple(f.name for f in fields(ExitFeatureVector))


# =============================================================================
# Indicators
# =============================================================================

def calculate_sma(closes: Sequence[float], period: int) -> float:
    """Simple moving average of the last ``period`` closes (last close if short)."""
    if len(closes) == 0:
        return 0.0
    if len(closes) < period:
        return float(closes[-1])
    return float(np.mean(closes[-period:]))


def calculate_rsi(bars: Sequence[PriceBar], period: int = 14) -> float:
    """
    RSI from summed gains/losses over the last ``period`` changes.

    50 when there are fewer than period + 1 bars, 100 when there were no losses.
    """
    if len(bars) < period + 1:
        return 50.0
    closes = np.array([b.close for b in bars[-(period + 1):]], dtype=float)
    changes = np.diff(closes)
    gains = changes[changes > 0].sum()
    losses = -changes[changes < 0].sum()
    if losses == 0:
        return 100.0
    rs = gains / losses
    return float(100 - (100 / (1 + rs)))


def calculate_atr(bars: Sequence[PriceBar], period: int = 14) -> float:
    """Mean true range over the last ``period`` bars (0 when too short)."""
    if len(bars) < period + 1:
        return 0.0
    window = bars[-(period + 1):]
    highs = np.array([b.high for b in window[1:]])
    lows = np.array([b.low for b in window[1:]])
    prev_closes = np.array([b.close for b in window[:-1]])
    true_range = np.maximum.reduce([
        highs - lows,
        np.abs(highs - prev_closes),
        np.abs(lows - prev_closes),
    ])
    return float(true_range.mean())


def _pct_change(current: float, previous: float) -> float:
    return (current - previous) / previous * 100 if previous else 0.0


def _lookback_return(closes: Sequence[float], idx: int, days: int) -> float:
    return _pct_change(closes[idx], closes[idx - days]) if idx >= days else 0.0


def _benchmark_returns(benchmark_bars: Optional[Sequence[PriceBar]], as_of) -> Dict[str, float]:
    """SPY 5/10 day returns as of the last benchmark bar on or before ``as_of``."""
    result = {'spy_return_5d': 0.0, 'spy_return_10d': 0.0}
    if not benchmark_bars:
        return result
    idx = -1
    for i, bar in enumerate(benchmark_bars):
        if bar.date > as_of:
            break
        idx = i
    if idx < 0:
        return result
    closes = [b.close for b in benchmark_bars]
    result['spy_return_5d'] = _lookback_return(closes, idx, 5)
    result['spy_return_10d'] = _lookback_return(closes, idx, 10)
    return result


def extract_exit_features(
    bars: Sequence[PriceBar],
    entry_idx: int,
    current_idx: int,
    entry_price: float,
    stop_loss: Optional[float] = None,
    benchmark_bars: Optional[Sequence[PriceBar]] = None,
) -> ExitFeatureVector:
    """
    Feature vector for the position as of ``bars[current_idx]``.

    Args:
        bars: Daily bars ascending; may include pre-entry history for warm-up
        entry_idx: Index of the entry bar
        current_idx: Evaluation day (entry_idx <= current_idx < len(bars))
        entry_price: Fill price at entry
        stop_loss: Initial stop; without one every R-based feature is 0
        benchmark_bars: Optional SPY bars for market context

    Raises:
        ValidationError: indices out of range or non-positive entry price
    """
    if entry_price <= 0:
        raise ValidationError(f"entry_price must be positive, got {entry_price}")
    if not 0 <= entry_idx <= current_idx < len(bars):
        raise ValidationError(
            f"Invalid indices entry_idx={entry_idx} current_idx={current_idx} for {len(bars)} bars"
        )

    visible: List[PriceBar] = list(bars[:current_idx + 1])
    today = visible[-1]
    closes = [b.close for b in visible]
    price = today.close

    risk = entry_price - stop_loss if stop_loss is not None else 0.0
    unrealized_r = (price - entry_price) / risk if risk > 0 else 0.0
    unrealized_pct = _pct_change(price, entry_price)

    max_high = max([entry_price] + [b.high for b in visible[entry_idx:]])

    sma20 = calculate_sma(closes, 20)
    sma50 = calculate_sma(closes, 50)
    atr = calculate_atr(visible, 14)

    volumes = np.array([b.volume for b in visible[-20:]], dtype=float)
    avg_volume = volumes.mean() if len(volumes) else 0.0
    volume_vs_avg = today.volume / avg_volume if avg_volume > 0 else 1.0

    return ExitFeatureVector(
        holding_days=float(current_idx - entry_idx),
        unrealized_r=unrealized_r,
        unrealized_pct=unrealized_pct,
        return_from_entry=unrealized_pct,
        return_from_high=_pct_change(price, max_high),
        return_last_5d=_lookback_return(closes, current_idx, 5),
        return_last_3d=_lookback_return(closes, current_idx, 3),
        return_last_1d=_lookback_return(closes, current_idx, 1),
        atr_percent=atr / price * 100 if price else 0.0,
        daily_range_percent=_pct_change(today.high, today.low),
        rsi_14=calculate_rsi(visible, 14),
        price_vs_20sma=_pct_change(price, sma20),
        price_vs_50sma=_pct_change(price, sma50),
        volume_vs_avg=float(volume_vs_avg),
        day_of_week=float((today.date.weekday() + 1) % 7),
        is_month_end=1.0 if today.date.day >= 25 else 0.0,
        in_profit=1.0 if unrealized_r > 0 else 0.0,
        above_1r=1.0 if unrealized_r > 1 else 0.0,
        above_15r=1.0 if unrealized_r > 1.5 else 0.0,
        above_2r=1.0 if unrealized_r > 2 else 0.0,
        **_benchmark_returns(benchmark_bars, today.date),
    )
