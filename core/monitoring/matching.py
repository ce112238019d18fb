"""
Trade <-> prediction log matching.

A settled trade is linked to the prediction made for it:
- exact: same ticker, prediction_date == entry_date
- close: same ticker, nearest prediction within 3 days of entry
- none: no prediction found (kept for match-rate reporting)
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from core.trade_lifecycle.models import PredictionLog, Trade

MATCH_WINDOW_DAYS = 3


@dataclass(frozen=True)
class MatchedTrade:
    trade: Trade
    prediction: Optional[PredictionLog]
    match_confidence: str     # 'exact' | 'close' | 'none'

    @property
    def is_matched(self) -> bool:
        return self.prediction is not None


def realized_pnl(trade: Trade) -> float:
    """Total realized P&L (sum of fills for partially closed trades)."""
    if trade.total_realized_pnl is not None:
        return trade.total_realized_pnl
    return sum(e.pnl for e in trade.partial_exits)


def find_prediction(trade: Trade, logs_for_ticker: Sequence[PredictionLog]) -> MatchedTrade:
    """Best prediction for ``trade`` among logs of the same ticker."""
    best: Optional[PredictionLog] = None
    best_gap = None
    for log in logs_for_ticker:
        gap = abs((log.prediction_date - trade.entry_date).days)
        if gap == 0:
            return MatchedTrade(trade, log, 'exact')
        if gap <= MATCH_WINDOW_DAYS and (best_gap is None or gap < best_gap):
            best, best_gap = log, gap
    if best is not None:
        return MatchedTrade(trade, best, 'close')
    return MatchedTrade(trade, None, 'none')


def match_trades_to_predictions(
    trades: Sequence[Trade],
    logs: Sequence[PredictionLog],
) -> List[MatchedTrade]:
    """Match every trade; unmatched trades come back with match_confidence 'none'."""
    by_ticker: Dict[str, List[PredictionLog]] = defaultdict(list)
    for log in logs:
        by_ticker[log.ticker.upper()].append(log)
    for ticker_logs in by_ticker.values():
        ticker_logs.sort(key=lambda p: p.prediction_date)

    return [find_prediction(trade, by_ticker.get(trade.ticker.upper(), [])) for trade in trades]
