"""
Trade Lifecycle Data Models

Data models for trades, partial exits, price bars and prediction logs.
A Trade carries its fixed entry attributes plus the mutable state that the
lifecycle manager advances:

- remaining_shares / status (OPEN -> PARTIALLY_CLOSED -> CLOSED)
- partial_exits (append-only)
- MFE/MAE (best/worst price since entry)
- realized metrics once CLOSED

Usage:
    trade = Trade(trade_id="T1", ticker="AAPL", entry_date=date(2024, 1, 2),
                  entry_price=100.0, entry_shares=100, stop_loss=95.0)
    data = trade.to_dict()
    restored = Trade.from_dict(data)
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Dict, Any, List
from enum import Enum
import json


class TradeStatus(str, Enum):
    """Lifecycle state of a trade."""
    OPEN = "OPEN"
    PARTIALLY_CLOSED = "PARTIALLY_CLOSED"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    """Reason attached to an exit fill or a simulated exit."""
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"
    TP1 = "TP1"
    TP2 = "TP2"
    TP3 = "TP3"
    MAX_HOLDING_DAYS = "MAX_HOLDING_DAYS"
    MODEL_EXIT = "MODEL_EXIT"
    MANUAL = "MANUAL"
    STILL_OPEN = "STILL_OPEN"


def parse_date(value: Any) -> Optional[date]:
    """Coerce ISO strings / datetimes to date. None passes through."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class PriceBar:
    """One daily OHLCV bar."""
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PriceBar':
        return cls(
            date=parse_date(data['date']),
            open=float(data['open']),
            high=float(data['high']),
            low=float(data['low']),
            close=float(data['close']),
            volume=float(data.get('volume') or 0.0),
        )


@dataclass(frozen=True)
class PartialExit:
    """
    A single exit fill. Never mutated after creation.

    r_multiple is None when the trade has no stop-loss (risk undefined).
    """
    date: date
    price: float
    shares: float
    reason: str
    pnl: float
    pnl_percent: float
    r_multiple: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'price': self.price,
            'shares': self.shares,
            'reason': self.reason,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'r_multiple': self.r_multiple,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PartialExit':
        return cls(
            date=parse_date(data['date']),
            price=float(data['price']),
            shares=float(data['shares']),
            reason=data.get('reason', ExitReason.MANUAL.value),
            pnl=float(data.get('pnl', 0.0)),
            pnl_percent=float(data.get('pnl_percent', 0.0)),
            r_multiple=data.get('r_multiple'),
        )


@dataclass
class PricePoint:
    """Daily mark of an open (or backfilled) trade."""
    trade_id: str
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    unrealized_r: Optional[float] = None

    def to_bar(self) -> PriceBar:
        return PriceBar(self.date, self.open, self.high, self.low, self.close, self.volume)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'date': self.date.isoformat(),
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
            'unrealized_pnl': self.unrealized_pnl,
            'unrealized_pnl_percent': self.unrealized_pnl_percent,
            'unrealized_r': self.unrealized_r,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PricePoint':
        data = dict(data)
        data['date'] = parse_date(data['date'])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class PredictionLog:
    """Model prediction recorded at signal time (probability in 0-1)."""
    ticker: str
    prediction_date: date
    predicted_probability: float
    model_version: str = ''
    confidence_rating: Optional[str] = None
    predicted_r: Optional[float] = None
    log_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'log_id': self.log_id,
            'ticker': self.ticker,
            'prediction_date': self.prediction_date.isoformat(),
            'predicted_probability': self.predicted_probability,
            'model_version': self.model_version,
            'confidence_rating': self.confidence_rating,
            'predicted_r': self.predicted_r,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PredictionLog':
        data = dict(data)
        data['prediction_date'] = parse_date(data['prediction_date'])
        data['ticker'] = str(data['ticker']).upper()
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class Trade:
    """
    A position from entry to final close.

    Entry attributes (ticker, entry_date, entry_price, entry_shares, stop_loss,
    tp1-tp3) are fixed at creation. Everything below "Mutable state" is owned
    by core.trade_lifecycle.lifecycle and must not be assigned directly.
    """
    # Identification
    trade_id: str
    ticker: str
    entry_date: date
    entry_price: float
    entry_shares: float
    user_id: str = 'default'

    # Plan
    stop_loss: Optional[float] = None
    tp1: Optional[float] = None
    tp2: Optional[float] = None
    tp3: Optional[float] = None
    entry_probability: Optional[float] = None

    # Mutable state
    remaining_shares: float = 0.0
    status: TradeStatus = TradeStatus.OPEN
    partial_exits: List[PartialExit] = field(default_factory=list)

    # Excursion (prices, not P&L)
    mfe: float = 0.0
    mae: float = 0.0
    mfe_date: Optional[date] = None
    mae_date: Optional[date] = None
    mfe_r: Optional[float] = None
    mae_r: Optional[float] = None

    # Set on close
    exit_date: Optional[date] = None
    blended_exit_price: Optional[float] = None
    total_realized_pnl: Optional[float] = None
    realized_pnl_percent: Optional[float] = None
    realized_r: Optional[float] = None
    holding_days: Optional[int] = None
    exit_reason: Optional[str] = None

    # Free-form
    tags: List[str] = field(default_factory=list)
    notes: str = ''
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def risk_per_share(self) -> Optional[float]:
        """Entry minus stop, or None when there is no stop."""
        if self.stop_loss is None:
            return None
        return self.entry_price - self.stop_loss

    @property
    def is_closed(self) -> bool:
        return self.status == TradeStatus.CLOSED

    @property
    def exited_shares(self) -> float:
        return sum(e.shares for e in self.partial_exits)

    @property
    def sort_key(self):
        """Ordering used by the store: (user, ticker, entry_date)."""
        return (self.user_id, self.ticker, self.entry_date)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'trade_id': self.trade_id,
            'user_id': self.user_id,
            'ticker': self.ticker,
            'entry_date': _iso(self.entry_date),
            'entry_price': self.entry_price,
            'entry_shares': self.entry_shares,
            'stop_loss': self.stop_loss,
            'tp1': self.tp1,
            'tp2': self.tp2,
            'tp3': self.tp3,
            'entry_probability': self.entry_probability,
            'remaining_shares': self.remaining_shares,
            'status': self.status.value,
            'partial_exits': [e.to_dict() for e in self.partial_exits],
            'mfe': self.mfe,
            'mae': self.mae,
            'mfe_date': _iso(self.mfe_date),
            'mae_date': _iso(self.mae_date),
            'mfe_r': self.mfe_r,
            'mae_r': self.mae_r,
            'exit_date': _iso(self.exit_date),
            'blended_exit_price': self.blended_exit_price,
            'total_realized_pnl': self.total_realized_pnl,
            'realized_pnl_percent': self.realized_pnl_percent,
            'realized_r': self.realized_r,
            'holding_days': self.holding_days,
            'exit_reason': self.exit_reason,
            'tags': list(self.tags),
            'notes': self.notes,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Trade':
        """Create from dictionary."""
        data = dict(data)
        for key in ('entry_date', 'mfe_date', 'mae_date', 'exit_date'):
            data[key] = parse_date(data.get(key))
        for key in ('created_at', 'updated_at'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
            elif data.get(key) is None:
                data.pop(key, None)
        data['status'] = TradeStatus(data.get('status', TradeStatus.OPEN.value))
        data['partial_exits'] = [PartialExit.from_dict(e) for e in data.get('partial_exits', [])]
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> 'Trade':
        return cls.from_dict(json.loads(json_str))
