"""
Trade Lifecycle

Owns a trade from entry to final close:

- Partial exits accumulate into a blended exit price and realized R
- MFE/MAE tracked from daily highs/lows
- JSON persistence of trades, daily price history and prediction logs
- Price history backfill from a rate-limited provider
"""

from core.trade_lifecycle.models import (
    ExitReason,
    PartialExit,
    PredictionLog,
    PriceBar,
    PricePoint,
    Trade,
    TradeStatus,
)
from core.trade_lifecycle.lifecycle import (
    TradeLifecycleManager,
    apply_closing_update,
    create_trade,
    record_exit,
    update_excursion,
)
from core.trade_lifecycle.trade_store import TradeStore
from core.trade_lifecycle.price_tracker import BatchReport, PriceTracker

__all__ = [
    # Models
    "ExitReason",
    "PartialExit",
    "PredictionLog",
    "PriceBar",
    "PricePoint",
    "Trade",
    "TradeStatus",
    # Lifecycle
    "TradeLifecycleManager",
    "apply_closing_update",
    "create_trade",
    "record_exit",
    "update_excursion",
    # Persistence / prices
    "TradeStore",
    "BatchReport",
    "PriceTracker",
]
