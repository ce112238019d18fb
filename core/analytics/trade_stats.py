"""
Trade Statistics - summary numbers and outcome distributions

Answers the questions the journal is kept for:
- "What's my win rate and expectancy?"
- "Where do my R multiples land?"
- "How much of the best price do I actually capture?"
- "How deep do trades go against me?"
- "Win rate by exit reason / ticker?"

Everything runs over ``TradeStore.snapshot_closed_trades()`` (CLOSED and
PARTIALLY_CLOSED trades). A partially closed trade contributes its realized
fills to P&L counts; per-trade figures that only exist on close (R,
realized P&L %, holding days, MFE utilization) come from CLOSED trades.

Distribution buckets are half-open on the left: a value v lands in the
bucket with lower < v <= upper.
"""

import logging
import math
import statistics
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from core.monitoring.matching import realized_pnl
from core.trade_lifecycle.models import Trade, TradeStatus
from core.trade_lifecycle.trade_store import TradeStore

logger = logging.getLogger(__name__)

INF = float('inf')

R_BUCKETS: Tuple[Tuple[str, float, float], ...] = (
    ('< -2R', -INF, -2.0),
    ('-2R to -1R', -2.0, -1.0),
    ('-1R to 0', -1.0, 0.0),
    ('0 to 1R', 0.0, 1.0),
    ('1R to 2R', 1.0, 2.0),
    ('2R to 3R', 2.0, 3.0),
    ('3R to 5R', 3.0, 5.0),
    ('> 5R', 5.0, INF),
)

PNL_PERCENT_BUCKETS: Tuple[Tuple[str, float, float], ...] = (
    ('< -20%', -INF, -20.0),
    ('-20% to -10%', -20.0, -10.0),
    ('-10% to -5%', -10.0, -5.0),
    ('-5% to 0', -5.0, 0.0),
    ('0 to 5%', 0.0, 5.0),
    ('5% to 10%', 5.0, 10.0),
    ('10% to 20%', 10.0, 20.0),
    ('20% to 50%', 20.0, 50.0),
    ('> 50%', 50.0, INF),
)

HOLDING_DAY_BUCKETS: Tuple[Tuple[str, float, float], ...] = (
    ('1 Day', 0.0, 1.0),
    ('2-3 Days', 1.0, 3.0),
    ('4-5 Days', 3.0, 5.0),
    ('1-2 Weeks', 5.0, 10.0),
    ('2-3 Weeks', 10.0, 15.0),
    ('3-4 Weeks', 15.0, 20.0),
    ('1-2 Months', 20.0, 40.0),
    ('> 2 Months', 40.0, INF),
)

MFE_UTILIZATION_BUCKETS: Tuple[Tuple[str, float, float], ...] = (
    ('< 0% (Loss)', -INF, 0.0),
    ('0-25%', 0.0, 25.0),
    ('25-50%', 25.0, 50.0),
    ('50-75%', 50.0, 75.0),
    ('75-100%', 75.0, 100.0),
    ('> 100%', 100.0, INF),
)

MAE_BUCKETS: Tuple[Tuple[str, float, float], ...] = (
    ('0-2%', -INF, 2.0),
    ('2-5%', 2.0, 5.0),
    ('5-8%', 5.0, 8.0),
    ('8-10%', 8.0, 10.0),
    ('10-15%', 10.0, 15.0),
    ('15-20%', 15.0, 20.0),
    ('> 20%', 20.0, INF),
)


@dataclass(frozen=True)
class DistributionBucket:
    label: str
    lower: float
    upper: float
    count: int
    percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.label,
            'count': self.count,
            'percent': round(self.percent, 2),
        }


@dataclass(frozen=True)
class Distribution:
    """Descriptive statistics plus bucket counts for one measure."""
    name: str
    count: int
    mean: float
    median: float
    std_dev: float
    skewness: float
    p10: float
    p25: float
    p75: float
    p90: float
    buckets: Tuple[DistributionBucket, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'count': self.count,
            'mean': round(self.mean, 4),
            'median': round(self.median, 4),
            'std_dev': round(self.std_dev, 4),
            'skewness': round(self.skewness, 4),
            'percentiles': {
                'p10': round(self.p10, 4),
                'p25': round(self.p25, 4),
                'p75': round(self.p75, 4),
                'p90': round(self.p90, 4),
            },
            'buckets': [b.to_dict() for b in self.buckets],
        }


@dataclass
class TradeSummary:
    """
    Headline numbers for a set of trades.

    win_rate is a 0-1 fraction. profit_factor is None when there are no
    losing trades. expectancy is the expected P&L per trade in dollars:
    avg_win * win_rate - avg_loss * (1 - win_rate).
    """
    total_trades: int = 0
    closed_trades: int = 0
    partially_closed_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: Optional[float] = None
    expectancy: float = 0.0
    avg_r: float = 0.0
    best_r: float = 0.0
    worst_r: float = 0.0
    avg_holding_days: float = 0.0
    max_holding_days: int = 0
    min_holding_days: int = 0
    avg_mfe_capture: float = 0.0
    avg_mae_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_trades': self.total_trades,
            'closed_trades': self.closed_trades,
            'partially_closed_trades': self.partially_closed_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'win_rate': round(self.win_rate, 4),
            'total_pnl': round(self.total_pnl, 2),
            'avg_pnl': round(self.avg_pnl, 2),
            'avg_win': round(self.avg_win, 2),
            'avg_loss': round(self.avg_loss, 2),
            'profit_factor': round(self.profit_factor, 2) if self.profit_factor is not None else None,
            'expectancy': round(self.expectancy, 2),
            'avg_r': round(self.avg_r, 2),
            'best_r': round(self.best_r, 2),
            'worst_r': round(self.worst_r, 2),
            'avg_holding_days': round(self.avg_holding_days, 1),
            'max_holding_days': self.max_holding_days,
            'min_holding_days': self.min_holding_days,
            'avg_mfe_capture': round(self.avg_mfe_capture, 2),
            'avg_mae_percent': round(self.avg_mae_percent, 2),
        }


@dataclass
class SegmentStats:
    """Win/loss statistics for the trades sharing one factor value."""
    segment_name: str
    segment_value: str
    trades: int
    wins: int
    losses: int
    win_rate: float
    total_pnl: float
    avg_r: float
    profit_factor: Optional[float] = None
    tickers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'segment': self.segment_name,
            'value': self.segment_value,
            'trades': self.trades,
            'wins': self.wins,
            'losses': self.losses,
            'win_rate': round(self.win_rate, 4),
            'total_pnl': round(self.total_pnl, 2),
            'avg_r': round(self.avg_r, 2),
            'profit_factor': round(self.profit_factor, 2) if self.profit_factor is not None else None,
        }


# =============================================================================
# PER-TRADE MEASURES
# =============================================================================

def mfe_utilization(trade: Trade) -> Optional[float]:
    """
    Percent of the best favourable move captured at exit.

    (blended_exit - entry) / (mfe - entry) * 100. None unless the trade is
    CLOSED and price ever traded above entry.
    """
    if trade.status != TradeStatus.CLOSED or trade.blended_exit_price is None:
        return None
    max_move = trade.mfe - trade.entry_price
    if max_move <= 0:
        return None
    return (trade.blended_exit_price - trade.entry_price) / max_move * 100


def mae_percent(trade: Trade) -> Optional[float]:
    """Drawdown from entry to the worst low, in percent. None if never tracked."""
    if not trade.mae:
        return None
    return (trade.entry_price - trade.mae) / trade.entry_price * 100


def build_distribution(
    name: str,
    values: Sequence[float],
    bucket_ranges: Sequence[Tuple[str, float, float]],
) -> Optional[Distribution]:
    """
    Describe ``values`` and count them into ``bucket_ranges``.

    Returns None for an empty sequence. Percentiles use the nearest-rank
    index floor(p * n) clamped to the last element.
    """
    if not values:
        return None

    ordered = sorted(values)
    count = len(ordered)
    mean = statistics.fmean(ordered)
    std_dev = statistics.pstdev(ordered, mu=mean)
    if std_dev > 0:
        skewness = sum(((v - mean) / std_dev) ** 3 for v in ordered) / count
    else:
        skewness = 0.0

    def percentile(p: float) -> float:
        return ordered[min(int(math.floor(p * count)), count - 1)]

    buckets = []
    for label, lower, upper in bucket_ranges:
        in_bucket = sum(1 for v in ordered if lower < v <= upper)
        buckets.append(DistributionBucket(
            label=label,
            lower=lower,
            upper=upper,
            count=in_bucket,
            percent=in_bucket / count * 100,
        ))

    return Distribution(
        name=name,
        count=count,
        mean=mean,
        median=statistics.median(ordered),
        std_dev=std_dev,
        skewness=skewness,
        p10=percentile(0.10),
        p25=percentile(0.25),
        p75=percentile(0.75),
        p90=percentile(0.90),
        buckets=tuple(buckets),
    )


def summarize_trades(trades: Sequence[Trade]) -> TradeSummary:
    """Headline statistics for ``trades``; all zeros for an empty list."""
    if not trades:
        return TradeSummary()

    pnls = [realized_pnl(t) for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    total_wins = sum(wins)
    total_losses = abs(sum(losses))
    avg_win = total_wins / len(wins) if wins else 0.0
    avg_loss = total_losses / len(losses) if losses else 0.0
    win_rate = len(wins) / len(trades)

    r_values = [t.realized_r for t in trades if t.realized_r is not None]
    holding = [t.holding_days for t in trades if t.holding_days is not None]
    captures = [c for c in (mfe_utilization(t) for t in trades) if c is not None]
    drawdowns = [d for d in (mae_percent(t) for t in trades) if d is not None]

    return TradeSummary(
        total_trades=len(trades),
        closed_trades=sum(1 for t in trades if t.status == TradeStatus.CLOSED),
        partially_closed_trades=sum(1 for t in trades if t.status == TradeStatus.PARTIALLY_CLOSED),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=win_rate,
        total_pnl=sum(pnls),
        avg_pnl=sum(pnls) / len(trades),
        avg_win=avg_win,
        avg_loss=avg_loss,
        profit_factor=total_wins / total_losses if total_losses > 0 else None,
        expectancy=avg_win * win_rate - avg_loss * (1 - win_rate),
        avg_r=statistics.fmean(r_values) if r_values else 0.0,
        best_r=max(r_values) if r_values else 0.0,
        worst_r=min(r_values) if r_values else 0.0,
        avg_holding_days=statistics.fmean(holding) if holding else 0.0,
        max_holding_days=max(holding) if holding else 0,
        min_holding_days=min(holding) if holding else 0,
        avg_mfe_capture=statistics.fmean(captures) if captures else 0.0,
        avg_mae_percent=statistics.fmean(drawdowns) if drawdowns else 0.0,
    )


class TradeStatsEngine:
    """
    Summary statistics and distributions over the settled trades in a store.

    Usage:
        stats = TradeStatsEngine(store)
        summary = stats.summary()
        r_dist = stats.r_distribution()
        by_reason = stats.win_rate_by_factor('exit_reason')

    Every method takes an optional ``trades`` list; without one it reads a
    fresh ``snapshot_closed_trades()`` restricted to the engine's entry window.
    """

    def __init__(
        self,
        store: TradeStore,
        entry_after: Optional[date] = None,
        entry_before: Optional[date] = None,
    ):
        self.store = store
        self.entry_after = entry_after
        self.entry_before = entry_before

    def snapshot(self, trades: Optional[List[Trade]] = None) -> List[Trade]:
        """``trades`` if given, otherwise the settled trades in the entry window."""
        if trades is not None:
            return trades
        return self.store.snapshot_closed_trades(
            entry_after=self.entry_after,
            entry_before=self.entry_before,
        )

    # =========================================================================
    # SUMMARY
    # =========================================================================

    def summary(self, trades: Optional[List[Trade]] = None) -> TradeSummary:
        trades = self.snapshot(trades)
        summary = summarize_trades(trades)
        logger.debug(
            f"Summary over {summary.total_trades} trades: "
            f"win_rate={summary.win_rate:.2f}, expectancy={summary.expectancy:.2f}"
        )
        return summary

    # =========================================================================
    # DISTRIBUTIONS
    # =========================================================================

    def _distribution(
        self,
        name: str,
        measure: Callable[[Trade], Optional[float]],
        bucket_ranges: Sequence[Tuple[str, float, float]],
        trades: Optional[List[Trade]],
    ) -> Optional[Distribution]:
        values = [v for v in (measure(t) for t in self.snapshot(trades)) if v is not None]
        if not values:
            logger.info(f"No trades with {name} data")
        return build_distribution(name, values, bucket_ranges)

    def r_distribution(self, trades: Optional[List[Trade]] = None) -> Optional[Distribution]:
        """Realized R of closed trades with a stop."""
        return self._distribution('realized_r', lambda t: t.realized_r, R_BUCKETS, trades)

    def pnl_percent_distribution(self, trades: Optional[List[Trade]] = None) -> Optional[Distribution]:
        return self._distribution(
            'pnl_percent', lambda t: t.realized_pnl_percent, PNL_PERCENT_BUCKETS, trades,
        )

    def holding_period_distribution(self, trades: Optional[List[Trade]] = None) -> Optional[Distribution]:
        """Holding days of closed trades; same-day round trips are left out."""
        return self._distribution(
            'holding_days',
            lambda t: t.holding_days if t.holding_days else None,
            HOLDING_DAY_BUCKETS,
            trades,
        )

    def mfe_utilization_distribution(self, trades: Optional[List[Trade]] = None) -> Optional[Distribution]:
        return self._distribution('mfe_utilization', mfe_utilization, MFE_UTILIZATION_BUCKETS, trades)

    def mae_distribution(self, trades: Optional[List[Trade]] = None) -> Optional[Distribution]:
        return self._distribution('mae_percent', mae_percent, MAE_BUCKETS, trades)

    def all_distributions(self, trades: Optional[List[Trade]] = None) -> Dict[str, Optional[Distribution]]:
        """Every distribution computed over one snapshot."""
        trades = self.snapshot(trades)
        return {
            'realized_r': self.r_distribution(trades),
            'pnl_percent': self.pnl_percent_distribution(trades),
            'holding_days': self.holding_period_distribution(trades),
            'mfe_utilization': self.mfe_utilization_distribution(trades),
            'mae_percent': self.mae_distribution(trades),
        }

    # =========================================================================
    # SEGMENTED WIN RATE
    # =========================================================================

    def win_rate_by_factor(
        self,
        factor: str,
        trades: Optional[List[Trade]] = None,
    ) -> List[SegmentStats]:
        """
        Win rate grouped by a trade attribute ("exit_reason", "ticker",
        "status", "user_id", ...). Trades without the attribute fall under
        "Unknown". Segments come back sorted by value.
        """
        trades = self.snapshot(trades)
        segments: Dict[str, List[Trade]] = {}
        for trade in trades:
            value = getattr(trade, factor, None)
            if isinstance(value, TradeStatus):
                value = value.value
            key = str(value) if value is not None else 'Unknown'
            segments.setdefault(key, []).append(trade)

        results = []
        for key, members in segments.items():
            summary = summarize_trades(members)
            results.append(SegmentStats(
                segment_name=factor,
                segment_value=key,
                trades=summary.total_trades,
                wins=summary.winning_trades,
                losses=summary.losing_trades,
                win_rate=summary.win_rate,
                total_pnl=summary.total_pnl,
                avg_r=summary.avg_r,
                profit_factor=summary.profit_factor,
                tickers=sorted({t.ticker for t in members}),
            ))

        results.sort(key=lambda s: s.segment_value)
        return results
