"""
Trade Lifecycle - state transitions for a single trade

OPEN -> PARTIALLY_CLOSED -> CLOSED, never backwards. The pure functions
(create_trade, record_exit, update_excursion, apply_closing_update) operate
on a Trade in place; TradeLifecycleManager binds them to a TradeStore and
the audit trail.

Invariants enforced here:
- sum(partial_exits.shares) + remaining_shares == entry_shares
- status is CLOSED iff remaining_shares == 0
- MFE only rises, MAE only falls, neither dated before entry
- CLOSED trades accept no further exits

Usage:
    manager = TradeLifecycleManager(store, AuditLogger('logs/'))
    trade = manager.open_trade(ticker='AAPL', entry_date=date(2024, 1, 2),
                               entry_price=100.0, entry_shares=100, stop_loss=95.0)
    manager.record_exit(trade.trade_id, date(2024, 1, 9), 110.0, 50, ExitReason.TP1)
"""

import copy
import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Union

from core.errors import ValidationError
from core.results import Result
from core.trade_lifecycle.models import (
    ExitReason,
    PartialExit,
    PriceBar,
    Trade,
    TradeStatus,
)
from core.trade_lifecycle.trade_store import TradeStore

logger = logging.getLogger(__name__)

SHARE_EPSILON = 1e-9

# Fields that may be amended on a CLOSED trade via apply_closing_update
AMENDABLE_FIELDS = ('notes', 'tags', 'exit_reason')


def _reason_value(reason: Union[ExitReason, str]) -> str:
    return reason.value if isinstance(reason, ExitReason) else str(reason)


def create_trade(
    ticker: str,
    entry_date: date,
    entry_price: float,
    entry_shares: float,
    stop_loss: Optional[float] = None,
    tp1: Optional[float] = None,
    tp2: Optional[float] = None,
    tp3: Optional[float] = None,
    trade_id: Optional[str] = None,
    user_id: str = 'default',
    entry_probability: Optional[float] = None,
    tags: Optional[List[str]] = None,
    notes: str = '',
) -> Trade:
    """
    Build a new OPEN trade with excursions seeded at the entry price.

    Raises:
        ValidationError: non-positive price/shares or stop at/above entry
    """
    if entry_price <= 0:
        raise ValidationError(f"entry_price must be positive, got {entry_price}")
    if entry_shares <= 0:
        raise ValidationError(f"entry_shares must be positive, got {entry_shares}")
    if stop_loss is not None and entry_price - stop_loss <= 0:
        raise ValidationError(
            f"Non-positive risk distance: stop_loss {stop_loss} >= entry_price {entry_price}"
        )
    if entry_probability is not None and not 0.0 <= entry_probability <= 1.0:
        raise ValidationError(f"entry_probability must be in [0, 1], got {entry_probability}")

    ticker = ticker.upper()
    trade_id = trade_id or f"{ticker}_{entry_date:%Y%m%d}_{uuid.uuid4().hex[:6]}"

    return Trade(
        trade_id=trade_id,
        user_id=user_id,
        ticker=ticker,
        entry_date=entry_date,
        entry_price=entry_price,
        entry_shares=entry_shares,
        stop_loss=stop_loss,
        tp1=tp1,
        tp2=tp2,
        tp3=tp3,
        entry_probability=entry_probability,
        remaining_shares=entry_shares,
        status=TradeStatus.OPEN,
        mfe=entry_price,
        mae=entry_price,
        mfe_date=entry_date,
        mae_date=entry_date,
        tags=list(tags or []),
        notes=notes,
    )


def record_exit(
    trade: Trade,
    exit_date: date,
    price: float,
    shares: float,
    reason: Union[ExitReason, str] = ExitReason.MANUAL,
) -> PartialExit:
    """
    Record an exit fill against ``trade`` (mutated in place).

    Returns:
        The appended PartialExit

    Raises:
        ValidationError: trade closed, shares <= 0 or > remaining, price <= 0,
            or exit dated before entry
    """
    if trade.status == TradeStatus.CLOSED:
        raise ValidationError(f"Trade {trade.trade_id} is CLOSED; no further exits allowed")
    if shares <= 0:
        raise ValidationError(f"Exit shares must be positive, got {shares}")
    if shares > trade.remaining_shares + SHARE_EPSILON:
        raise ValidationError(
            f"Cannot exit {shares} shares; only {trade.remaining_shares} remaining"
        )
    if price <= 0:
        raise ValidationError(f"Exit price must be positive, got {price}")
    if exit_date < trade.entry_date:
        raise ValidationError(
            f"Exit date {exit_date} precedes entry date {trade.entry_date}"
        )

    risk = trade.risk_per_share
    fill = PartialExit(
        date=exit_date,
        price=price,
        shares=shares,
        reason=_reason_value(reason),
        pnl=(price - trade.entry_price) * shares,
        pnl_percent=(price - trade.entry_price) / trade.entry_price * 100,
        r_multiple=(price - trade.entry_price) / risk if risk else None,
    )

    trade.partial_exits.append(fill)
    remaining = trade.remaining_shares - shares
    trade.remaining_shares = 0.0 if abs(remaining) < SHARE_EPSILON else remaining

    if trade.remaining_shares == 0:
        trade.status = TradeStatus.CLOSED
        _finalize(trade)
    else:
        trade.status = TradeStatus.PARTIALLY_CLOSED

    logger.debug(
        f"{trade.trade_id}: exit {shares} @ {price} ({fill.reason}), "
        f"remaining={trade.remaining_shares}, status={trade.status.value}"
    )
    return fill


def _finalize(trade: Trade) -> None:
    """Compute blended/realized metrics once all shares are out."""
    exits = trade.partial_exits
    total_shares = sum(e.shares for e in exits)

    blended = sum(e.price * e.shares for e in exits) / total_shares
    # Blended price must stay inside the fill range despite float rounding
    blended = min(max(blended, min(e.price for e in exits)), max(e.price for e in exits))

    trade.blended_exit_price = blended
    trade.total_realized_pnl = sum(e.pnl for e in exits)
    trade.realized_pnl_percent = (blended - trade.entry_price) / trade.entry_price * 100

    risk = trade.risk_per_share
    trade.realized_r = (blended - trade.entry_price) / risk if risk else None

    trade.exit_date = max(e.date for e in exits)
    trade.holding_days = (trade.exit_date - trade.entry_date).days

    # Primary reason: largest fill, earliest on ties
    primary = exits[0]
    for e in exits[1:]:
        if e.shares > primary.shares:
            primary = e
    trade.exit_reason = primary.reason


def update_excursion(trade: Trade, obs_date: date, high: float, low: float) -> bool:
    """
    Fold a day's high/low into MFE/MAE.

    Returns:
        True if either extreme moved. Always False for CLOSED trades and for
        observations dated before entry.
    """
    if trade.status == TradeStatus.CLOSED:
        return False
    if obs_date < trade.entry_date:
        logger.debug(f"{trade.trade_id}: ignoring pre-entry observation {obs_date}")
        return False

    changed = False
    if high > trade.mfe:
        trade.mfe = high
        trade.mfe_date = obs_date
        changed = True
    if low < trade.mae:
        trade.mae = low
        trade.mae_date = obs_date
        changed = True

    risk = trade.risk_per_share
    if risk:
        trade.mfe_r = (trade.mfe - trade.entry_price) / risk
        trade.mae_r = (trade.mae - trade.entry_price) / risk

    return changed


def apply_closing_update(trade: Trade, **changes: Any) -> Dict[str, tuple]:
    """
    Amend bookkeeping fields of a CLOSED trade.

    Only notes, tags and exit_reason can change; fills and realized metrics
    are final.

    Returns:
        {field: (before, after)} for fields that actually changed

    Raises:
        ValidationError: trade not closed or field not amendable
    """
    if trade.status != TradeStatus.CLOSED:
        raise ValidationError(
            f"Trade {trade.trade_id} is {trade.status.value}; closing updates apply to CLOSED trades only"
        )
    illegal = sorted(set(changes) - set(AMENDABLE_FIELDS))
    if illegal:
        raise ValidationError(f"Fields not amendable after close: {illegal}")

    applied = {}
    for field_name, value in changes.items():
        if field_name == 'exit_reason':
            value = _reason_value(value)
        if field_name == 'tags':
            value = list(value)
        before = getattr(trade, field_name)
        if before != value:
            setattr(trade, field_name, value)
            applied[field_name] = (before, value)
    return applied


class TradeLifecycleManager:
    """
    Store-backed lifecycle operations with audit logging.

    Lookups of unknown trade ids are expected (stale UI, reconciliation)
    and come back as ``None`` / failed ``Result`` rather than exceptions.
    Invalid requests against an existing trade raise ValidationError.
    """

    def __init__(self, store: TradeStore, audit_logger=None):
        self.store = store
        self.audit = audit_logger

    def open_trade(self, **kwargs) -> Trade:
        """Create and persist a new trade. See create_trade for arguments."""
        trade = create_trade(**kwargs)
        self.store.add_trade(trade)
        if self.audit:
            self.audit.log_trade_opened(trade)
        logger.info(f"Opened trade {trade.trade_id}: {trade.ticker} {trade.entry_shares} @ {trade.entry_price}")
        return trade

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        return self.store.get_trade(trade_id)

    def record_exit(
        self,
        trade_id: str,
        exit_date: date,
        price: float,
        shares: float,
        reason: Union[ExitReason, str] = ExitReason.MANUAL,
    ) -> Result[PartialExit]:
        """Record a fill; failed Result if the trade doesn't exist."""
        captured = {}

        def _apply(trade: Trade) -> PartialExit:
            fill = record_exit(trade, exit_date, price, shares, reason)
            captured['trade'] = copy.deepcopy(trade)
            return fill

        fill = self.store.mutate_trade(trade_id, _apply)
        if fill is None:
            return Result.failure(f"Trade {trade_id} not found")

        trade = captured['trade']
        if self.audit:
            self.audit.log_exit(trade, fill)
        if trade.status == TradeStatus.CLOSED:
            logger.info(
                f"Closed trade {trade_id}: blended={trade.blended_exit_price:.2f} "
                f"pnl={trade.total_realized_pnl:.2f} reason={trade.exit_reason}"
            )
        return Result.success(fill)

    def update_excursion(self, trade_id: str, obs_date: date, high: float, low: float) -> Result[bool]:
        """Fold a day's range into MFE/MAE; failed Result if the trade doesn't exist."""
        if trade_id not in self.store:
            return Result.failure(f"Trade {trade_id} not found")
        changed = self.store.mutate_trade(
            trade_id, lambda t: update_excursion(t, obs_date, high, low)
        )
        return Result.success(bool(changed))

    def update_excursions(self, trade_id: str, bars: Sequence[PriceBar]) -> Result[bool]:
        """Fold several days' ranges into MFE/MAE with a single store write."""
        if trade_id not in self.store:
            return Result.failure(f"Trade {trade_id} not found")

        def _fold(trade: Trade) -> bool:
            changed = False
            for bar in bars:
                changed = update_excursion(trade, bar.date, bar.high, bar.low) or changed
            return changed

        return Result.success(bool(self.store.mutate_trade(trade_id, _fold)))

    def apply_closing_update(self, trade_id: str, reason: str, **changes: Any) -> Result[Trade]:
        """
        Audit-logged amendment of a closed trade.

        Args:
            trade_id: Trade to amend
            reason: Why the amendment is made (recorded in the audit trail)
            **changes: notes / tags / exit_reason
        """
        if not reason:
            raise ValidationError("A reason is required for closing updates")
        if trade_id not in self.store:
            return Result.failure(f"Trade {trade_id} not found")

        applied = self.store.mutate_trade(trade_id, lambda t: apply_closing_update(t, **changes))
        trade = self.store.get_trade(trade_id)
        if applied and self.audit:
            self.audit.log_closing_update(trade, reason, applied)
        return Result.success(trade)
