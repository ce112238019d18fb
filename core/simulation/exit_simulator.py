"""
Exit Rule Simulator

Replays daily bars against an exit rule-set and returns the first exit that
triggers. Bars are numbered d = 1, 2, ... from the first bar passed in.

Precedence on each day (first match wins, no intraday ordering):

    1. MAX_HOLDING_DAYS  d >= max_holding_days        fill at close
    2. STOP_LOSS         low <= stop_loss             fill at stop_loss
    3. TRAILING_STOP     low <= trailing stop         fill at trailing stop
    4. MODEL_EXIT        P(exit) >= threshold         fill at close
    5. TP3, TP2, TP1     high >= target               fill at target

The trailing stop becomes active once (high - entry) / entry reaches
trailing_stop_activation percent (immediately when no activation is set),
sits trailing_stop_percent below the highest high since entry, and only
moves up. Nothing triggered by the last bar gives STILL_OPEN at the last
close.

simulate_exit is a pure function and safe to call from many threads.

Usage:
    rules = ExitRules(stop_loss=95.0, tp1=110.0, max_holding_days=20)
    result = simulate_exit(bars, entry_price=100.0, rules=rules)
    result.exit_reason, result.exit_price, result.holding_days
"""

from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, Optional, Sequence

from core.errors import DataUnavailableError, ValidationError
from core.exit_model.features import extract_exit_features
from core.trade_lifecycle.models import ExitReason, PriceBar


@dataclass(frozen=True)
class ExitRules:
    """
    Exit rule-set for one simulation. Every rule is optional.

    Attributes:
        stop_loss: Fixed stop price (must be below entry)
        tp1, tp2, tp3: Take-profit prices
        trailing_stop_percent: Distance below the peak high, in percent
        trailing_stop_activation: Gain (percent, from the day's high) that arms the trail
        max_holding_days: Exit at the close of this day index
        model_exit_threshold: Exit probability (0-1) that triggers a model exit
    """
    stop_loss: Optional[float] = None
    tp1: Optional[float] = None
    tp2: Optional[float] = None
    tp3: Optional[float] = None
    trailing_stop_percent: Optional[float] = None
    trailing_stop_activation: Optional[float] = None
    max_holding_days: Optional[int] = None
    model_exit_threshold: Optional[float] = None

    def validate(self, entry_price: float, has_scorer: bool = False) -> None:
        """
        Raises:
            ValidationError: any rule is malformed for ``entry_price``
        """
        if entry_price <= 0:
            raise ValidationError(f"entry_price must be positive, got {entry_price}")
        if self.stop_loss is not None and entry_price - self.stop_loss <= 0:
            raise ValidationError(
                f"Non-positive risk distance: stop_loss {self.stop_loss} >= entry {entry_price}"
            )
        for name in ('tp1', 'tp2', 'tp3'):
            target = getattr(self, name)
            if target is not None and target <= 0:
                raise ValidationError(f"{name} must be positive, got {target}")
        if self.trailing_stop_percent is not None and not 0 < self.trailing_stop_percent < 100:
            raise ValidationError(
                f"trailing_stop_percent must be in (0, 100), got {self.trailing_stop_percent}"
            )
        if self.trailing_stop_activation is not None:
            if self.trailing_stop_percent is None:
                raise ValidationError("trailing_stop_activation requires trailing_stop_percent")
            if self.trailing_stop_activation < 0:
                raise ValidationError(
                    f"trailing_stop_activation must be >= 0, got {self.trailing_stop_activation}"
                )
        if self.max_holding_days is not None and self.max_holding_days < 1:
            raise ValidationError(f"max_holding_days must be >= 1, got {self.max_holding_days}")
        if self.model_exit_threshold is not None:
            if not 0 <= self.model_exit_threshold <= 1:
                raise ValidationError(
                    f"model_exit_threshold must be in [0, 1], got {self.model_exit_threshold}"
                )
            if not has_scorer:
                raise ValidationError("model_exit_threshold set but no scorer supplied")

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExitRules':
        unknown = sorted(set(data) - set(cls.__dataclass_fields__))
        if unknown:
            raise ValidationError(f"Unknown exit rule fields: {unknown}")
        return cls(**data)


@dataclass(frozen=True)
class SimulatedExit:
    """First exit produced by the simulator."""
    exit_date: date
    exit_price: float
    exit_reason: ExitReason
    holding_days: int
    exit_probability: Optional[float] = None

    @property
    def still_open(self) -> bool:
        return self.exit_reason == ExitReason.STILL_OPEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            'exit_date': self.exit_date.isoformat(),
            'exit_price': round(self.exit_price, 4),
            'exit_reason': self.exit_reason.value,
            'holding_days': self.holding_days,
            'exit_probability': self.exit_probability,
        }


def simulate_exit(
    bars: Sequence[PriceBar],
    entry_price: float,
    rules: ExitRules,
    scorer=None,
    history: Optional[Sequence[PriceBar]] = None,
    benchmark_bars: Optional[Sequence[PriceBar]] = None,
) -> SimulatedExit:
    """
    Run ``rules`` over ``bars`` and return the first exit.

    Args:
        bars: Bars from entry onward, ascending by date
        entry_price: Fill price at entry
        rules: Exit rule-set
        scorer: LogisticScorer, required when rules.model_exit_threshold is set
        history: Bars before entry, used only to warm up model features
        benchmark_bars: SPY bars for model features

    Raises:
        DataUnavailableError: no bars
        ValidationError: malformed rules
    """
    if not bars:
        raise DataUnavailableError("No price bars to simulate")
    rules.validate(entry_price, has_scorer=scorer is not None)

    history = list(history or [])
    feature_bars = history + list(bars) if rules.model_exit_threshold is not None else None
    entry_idx = len(history)

    peak_high = entry_price
    trailing_stop: Optional[float] = None
    trailing_active = rules.trailing_stop_activation is None
    take_profits = [(ExitReason.TP3, rules.tp3), (ExitReason.TP2, rules.tp2), (ExitReason.TP1, rules.tp1)]

    for d, bar in enumerate(bars, start=1):
        # 1. Max holding period
        if rules.max_holding_days is not None and d >= rules.max_holding_days:
            return SimulatedExit(bar.date, bar.close, ExitReason.MAX_HOLDING_DAYS, d)

        # 2. Fixed stop
        if rules.stop_loss is not None and bar.low <= rules.stop_loss:
            return SimulatedExit(bar.date, rules.stop_loss, ExitReason.STOP_LOSS, d)

        # 3. Trailing stop
        if rules.trailing_stop_percent is not None:
            peak_high = max(peak_high, bar.high)
            if not trailing_active:
                gain_pct = (bar.high - entry_price) / entry_price * 100
                trailing_active = gain_pct >= rules.trailing_stop_activation
            if trailing_active:
                candidate = peak_high * (1 - rules.trailing_stop_percent / 100)
                trailing_stop = candidate if trailing_stop is None else max(trailing_stop, candidate)
                if bar.low <= trailing_stop:
                    return SimulatedExit(bar.date, trailing_stop, ExitReason.TRAILING_STOP, d)

        # 4. Model exit
        if rules.model_exit_threshold is not None:
            features = extract_exit_features(
                feature_bars, entry_idx, entry_idx + d - 1, entry_price,
                rules.stop_loss, benchmark_bars,
            )
            probability = scorer.predict_probability(features)
            if probability >= rules.model_exit_threshold:
                return SimulatedExit(bar.date, bar.close, ExitReason.MODEL_EXIT, d, probability)

        # 5. Take profits, highest first
        for reason, target in take_profits:
            if target is not None and bar.high >= target:
                return SimulatedExit(bar.date, target, reason, d)

    last = bars[-1]
    return SimulatedExit(last.date, last.close, ExitReason.STILL_OPEN, len(bars))
