"""
Trade Store - Persistence Layer for Trades, Price History and Predictions

Stores trades (with their partial exits and excursion state), the daily
price history recorded for each trade, and the model prediction logs used
for reconciliation.

Reads hand out copies: callers never see a trade half-way through a
mutation, and calibration passes work on a point-in-time snapshot.

Usage:
    store = TradeStore(Path("data/trade_store.json"))

    store.add_trade(trade)
    trade = store.get_trade("T1")            # Optional[Trade]
    store.mutate_trade("T1", lambda t: ...)  # atomic read-modify-write

    closed = store.get_trades(status=TradeStatus.CLOSED)
    snapshot = store.snapshot_closed_trades()
"""

import copy
import json
import logging
import shutil
from datetime import date, datetime
from pathlib import Path
from threading import RLock
from typing import Callable, Dict, List, Optional, Any, TypeVar

from core.trade_lifecycle.models import (
    PredictionLog,
    PricePoint,
    Trade,
    TradeStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

SETTLED_STATUSES = (TradeStatus.CLOSED, TradeStatus.PARTIALLY_CLOSED)


class TradeStore:
    """
    Persistent storage for trades.

    Features:
    - JSON file storage with atomic writes
    - In-memory cache behind a re-entrant lock
    - Automatic backup on modification
    - Per-trade price history upserted by date
    - Prediction logs queried by date range

    Pass ``store_path=None`` for a purely in-memory store.
    """

    def __init__(
        self,
        store_path: Optional[Path] = None,
        auto_save: bool = True,
        backup_on_save: bool = True,
        max_backups: int = 5,
    ):
        """
        Initialize trade store.

        Args:
            store_path: Path to JSON storage file (None keeps everything in memory)
            auto_save: Automatically save after modifications
            backup_on_save: Create backup before saving
            max_backups: Maximum number of backups to keep
        """
        self.store_path = Path(store_path) if store_path else None
        if self.store_path:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)

        self._auto_save = auto_save
        self._backup_on_save = backup_on_save
        self._max_backups = max_backups
        self._lock = RLock()

        self._trades: Dict[str, Trade] = {}
        self._price_history: Dict[str, Dict[date, PricePoint]] = {}
        self._prediction_logs: List[PredictionLog] = []
        self._dirty = False

        self._load()

    def _load(self) -> None:
        """Load store contents from file."""
        if self.store_path is None:
            return
        if not self.store_path.exists():
            logger.info(f"No existing store at {self.store_path}, starting fresh")
            return

        try:
            with open(self.store_path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error loading store: {e}")
            return

        for trade_data in data.get('trades', []):
            try:
                trade = Trade.from_dict(trade_data)
                self._trades[trade.trade_id] = trade
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Error loading trade: {e}")

        for trade_id, points in data.get('price_history', {}).items():
            history = self._price_history.setdefault(trade_id, {})
            for point_data in points:
                try:
                    point = PricePoint.from_dict(point_data)
                    history[point.date] = point
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(f"Error loading price point for {trade_id}: {e}")

        for log_data in data.get('prediction_logs', []):
            try:
                self._prediction_logs.append(PredictionLog.from_dict(log_data))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Error loading prediction log: {e}")

        logger.info(
            f"Loaded {len(self._trades)} trades, "
            f"{len(self._prediction_logs)} prediction logs from {self.store_path}"
        )

    def _save(self) -> bool:
        """Save store contents to file."""
        if not self._dirty or self.store_path is None:
            return True

        try:
            if self._backup_on_save and self.store_path.exists():
                self._create_backup()

            data = {
                'version': '1.0',
                'updated_at': datetime.now().isoformat(),
                'count': len(self._trades),
                'trades': [t.to_dict() for t in self._sorted_trades()],
                'price_history': {
                    trade_id: [p.to_dict() for _, p in sorted(points.items())]
                    for trade_id, points in self._price_history.items()
                },
                'prediction_logs': [p.to_dict() for p in self._prediction_logs],
            }

            # Atomic write via temp file
            temp_path = self.store_path.with_suffix('.tmp')
            with open(temp_path, 'w') as f:
                json.dump(data, f, indent=2)
            temp_path.replace(self.store_path)

            self._dirty = False
            logger.debug(f"Saved {len(self._trades)} trades to {self.store_path}")
            return True

        except OSError as e:
            logger.error(f"Error saving store: {e}")
            return False

    def _create_backup(self) -> None:
        """Create a backup of the current store file."""
        backup_dir = self.store_path.parent / "backups"
        backup_dir.mkdir(exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        backup_path = backup_dir / f"{self.store_path.stem}_{timestamp}.json"

        shutil.copy2(self.store_path, backup_path)
        logger.debug(f"Created backup: {backup_path}")

        self._cleanup_backups(backup_dir)

    def _cleanup_backups(self, backup_dir: Path) -> None:
        """Remove old backups exceeding max_backups."""
        backups = sorted(backup_dir.glob(f"{self.store_path.stem}_*.json"))
        while len(backups) > self._max_backups:
            old_backup = backups.pop(0)
            old_backup.unlink()
            logger.debug(f"Removed old backup: {old_backup}")

    def _mark_dirty(self) -> None:
        self._dirty = True
        if self._auto_save:
            self._save()

    def _sorted_trades(self) -> List[Trade]:
        return sorted(self._trades.values(), key=lambda t: t.sort_key)

    # =========================================================================
    # Trades
    # =========================================================================

    def add_trade(self, trade: Trade) -> None:
        """Insert a new trade. Raises KeyError if the id is already taken."""
        with self._lock:
            if trade.trade_id in self._trades:
                raise KeyError(f"Trade {trade.trade_id} already exists")
            self._trades[trade.trade_id] = copy.deepcopy(trade)
            self._mark_dirty()

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        """Get a copy of a trade by ID, or None."""
        with self._lock:
            trade = self._trades.get(trade_id)
            return copy.deepcopy(trade) if trade else None

    def mutate_trade(self, trade_id: str, mutation: Callable[[Trade], T]) -> Optional[T]:
        """
        Apply ``mutation`` to the stored trade under the store lock.

        The mutation works on a copy which replaces the stored trade only if
        it returns without raising, so a rejected change leaves no trace. A
        mutation that leaves the trade unchanged does not touch the file.

        Returns:
            Whatever ``mutation`` returns, or None if the trade doesn't exist
        """
        with self._lock:
            stored = self._trades.get(trade_id)
            if stored is None:
                return None
            working = copy.deepcopy(stored)
            result = mutation(working)
            if working == stored:
                return result
            working.updated_at = datetime.now()
            self._trades[trade_id] = working
            self._mark_dirty()
            return result

    def delete_trade(self, trade_id: str) -> bool:
        """Delete a trade and its price history."""
        with self._lock:
            if trade_id not in self._trades:
                return False
            del self._trades[trade_id]
            self._price_history.pop(trade_id, None)
            self._mark_dirty()
            return True

    def get_trades(
        self,
        status: Optional[TradeStatus] = None,
        ticker: Optional[str] = None,
        user_id: Optional[str] = None,
        entry_after: Optional[date] = None,
        entry_before: Optional[date] = None,
        custom_filter: Optional[Callable[[Trade], bool]] = None,
    ) -> List[Trade]:
        """
        Query trades. All filters are AND'd together; dates are inclusive.

        Returns:
            Copies of matching trades ordered by (user_id, ticker, entry_date)
        """
        with self._lock:
            results = copy.deepcopy(self._sorted_trades())

        if status is not None:
            results = [t for t in results if t.status == status]
        if ticker:
            results = [t for t in results if t.ticker == ticker.upper()]
        if user_id:
            results = [t for t in results if t.user_id == user_id]
        if entry_after:
            results = [t for t in results if t.entry_date >= entry_after]
        if entry_before:
            results = [t for t in results if t.entry_date <= entry_before]
        if custom_filter:
            results = [t for t in results if custom_filter(t)]

        return results

    def get_open_trades(self) -> List[Trade]:
        """Trades that still hold shares."""
        return self.get_trades(custom_filter=lambda t: t.status != TradeStatus.CLOSED)

    def snapshot_closed_trades(
        self,
        entry_after: Optional[date] = None,
        entry_before: Optional[date] = None,
    ) -> List[Trade]:
        """
        Point-in-time copy of settled (CLOSED / PARTIALLY_CLOSED) trades.

        Taken under the lock so a closure happening concurrently is either
        entirely in or entirely out of the snapshot.
        """
        return self.get_trades(
            entry_after=entry_after,
            entry_before=entry_before,
            custom_filter=lambda t: t.status in SETTLED_STATUSES,
        )

    # =========================================================================
    # Price History
    # =========================================================================

    def upsert_price_point(self, point: PricePoint) -> None:
        """Insert or replace the mark for (trade_id, date)."""
        with self._lock:
            self._price_history.setdefault(point.trade_id, {})[point.date] = copy.copy(point)
            self._mark_dirty()

    def upsert_price_points(self, points: List[PricePoint]) -> int:
        """Bulk upsert with a single save. Returns number of points written."""
        with self._lock:
            for point in points:
                self._price_history.setdefault(point.trade_id, {})[point.date] = copy.copy(point)
            if points:
                self._mark_dirty()
            return len(points)

    def get_price_history(self, trade_id: str) -> List[PricePoint]:
        """Price points for a trade, ascending by date (empty if none)."""
        with self._lock:
            points = self._price_history.get(trade_id, {})
            return [copy.copy(points[d]) for d in sorted(points)]

    # =========================================================================
    # Prediction Logs
    # =========================================================================

    def add_prediction_log(self, log: PredictionLog) -> None:
        with self._lock:
            self._prediction_logs.append(log)
            self._mark_dirty()

    def get_prediction_logs(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[PredictionLog]:
        """Prediction logs with prediction_date in [start, end] (inclusive)."""
        with self._lock:
            logs = list(self._prediction_logs)
        if start:
            logs = [p for p in logs if p.prediction_date >= start]
        if end:
            logs = [p for p in logs if p.prediction_date <= end]
        return logs

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def save(self) -> bool:
        """Force save to disk."""
        with self._lock:
            self._dirty = True
            return self._save()

    def __len__(self) -> int:
        return len(self._trades)

    def __contains__(self, trade_id: str) -> bool:
        return trade_id in self._trades
