"""
Price Tracker - daily marks and price history backfill

Pulls daily bars from a PriceSeriesProvider and records them as PricePoints
against each trade, folding highs/lows into the trade's MFE/MAE. The stored
history is what the counterfactual engine replays.

One failing ticker or trade never aborts a batch: its error is collected in
the BatchReport and the remaining work continues.

Usage:
    tracker = PriceTracker(store, provider, manager)
    report = tracker.update_open_trades()
    report = tracker.backfill_all()
    print(report.errors)
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from core.errors import DataUnavailableError
from core.trade_lifecycle.lifecycle import TradeLifecycleManager
from core.trade_lifecycle.models import PriceBar, PricePoint, Trade, TradeStatus
from core.trade_lifecycle.trade_store import TradeStore

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Outcome of a batch price operation."""
    processed: int = 0
    points_recorded: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def add_error(self, entity: str, message: str) -> None:
        self.errors.append({'entity': entity, 'error': message})

    def to_dict(self) -> Dict:
        return {
            'processed': self.processed,
            'points_recorded': self.points_recorded,
            'errors': list(self.errors),
        }


def build_price_point(trade: Trade, bar: PriceBar, shares: Optional[float] = None) -> PricePoint:
    """
    Mark ``trade`` at ``bar``'s close.

    Args:
        shares: Position size for unrealized P&L (defaults to remaining shares)
    """
    shares = trade.remaining_shares if shares is None else shares
    move = bar.close - trade.entry_price
    risk = trade.risk_per_share
    return PricePoint(
        trade_id=trade.trade_id,
        date=bar.date,
        open=bar.open,
        high=bar.high,
        low=bar.low,
        close=bar.close,
        volume=bar.volume,
        unrealized_pnl=move * shares,
        unrealized_pnl_percent=move / trade.entry_price * 100,
        unrealized_r=move / risk if risk else None,
    )


class PriceTracker:
    """Records provider bars against stored trades."""

    def __init__(self, store: TradeStore, provider, manager: Optional[TradeLifecycleManager] = None):
        self.store = store
        self.provider = provider
        self.manager = manager or TradeLifecycleManager(store)

    def record_price_point(self, trade: Trade, bar: PriceBar, shares: Optional[float] = None) -> PricePoint:
        """Upsert one day's mark and update excursions."""
        point = build_price_point(trade, bar, shares)
        self.store.upsert_price_point(point)
        self.manager.update_excursion(trade.trade_id, bar.date, bar.high, bar.low)
        return point

    def backfill_trade(self, trade_id: str, today: Optional[date] = None) -> int:
        """
        Record every bar from entry to exit (or today for open trades).

        Returns:
            Number of price points recorded

        Raises:
            DataUnavailableError: unknown trade or no bars for the range
        """
        trade = self.store.get_trade(trade_id)
        if trade is None:
            raise DataUnavailableError(f"Trade {trade_id} not found")

        end = trade.exit_date or today or date.today()
        bars = self.provider.get_historical_prices(trade.ticker, trade.entry_date, end)
        if not bars:
            raise DataUnavailableError(f"No price data for {trade.ticker} {trade.entry_date} -> {end}")

        points = [build_price_point(trade, bar, trade.entry_shares) for bar in bars]
        self.store.upsert_price_points(points)
        if trade.status != TradeStatus.CLOSED:
            self.manager.update_excursions(trade_id, bars)

        logger.info(f"Backfilled {len(points)} days for {trade.ticker} ({trade_id})")
        return len(points)

    def backfill_all(self, status: Optional[TradeStatus] = None, today: Optional[date] = None) -> BatchReport:
        """Backfill every trade (optionally one status); errors are collected."""
        report = BatchReport()
        for trade in self.store.get_trades(status=status):
            try:
                report.points_recorded += self.backfill_trade(trade.trade_id, today=today)
                report.processed += 1
            except DataUnavailableError as e:
                logger.warning(f"Backfill skipped {trade.ticker} ({trade.trade_id}): {e}")
                report.add_error(trade.trade_id, str(e))

        logger.info(
            f"Backfill complete: {report.processed} trades, "
            f"{report.points_recorded} points, {len(report.errors)} errors"
        )
        return report

    def update_open_trades(self, as_of: Optional[date] = None, lookback_days: int = 7) -> BatchReport:
        """
        Mark all open trades with their latest bar.

        Trades are grouped by ticker so each ticker is fetched once.
        """
        as_of = as_of or date.today()
        report = BatchReport()

        by_ticker: Dict[str, List[Trade]] = defaultdict(list)
        for trade in self.store.get_open_trades():
            by_ticker[trade.ticker].append(trade)

        for ticker, trades in sorted(by_ticker.items()):
            try:
                bars = self.provider.get_historical_prices(
                    ticker, as_of - timedelta(days=lookback_days), as_of
                )
            except DataUnavailableError as e:
                logger.warning(f"No price data for {ticker}: {e}")
                report.add_error(ticker, f"No price data for {ticker}: {e}")
                continue
            if not bars:
                report.add_error(ticker, f"No price data for {ticker}")
                continue

            latest = bars[-1]
            for trade in trades:
                if latest.date < trade.entry_date:
                    continue
                self.record_price_point(trade, latest)
                report.points_recorded += 1
                report.processed += 1
            logger.debug(f"Marked {len(trades)} {ticker} trades at {latest.close} ({latest.date})")

        logger.info(
            f"Updated {report.processed} open trades across {len(by_ticker)} tickers, "
            f"{len(report.errors)} errors"
        )
        return report
