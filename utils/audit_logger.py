"""
Audit Logger - Trade lifecycle audit trail

Records every mutation made to a stored trade:
- Trade opened
- Partial / final exit fills
- Closing updates applied to already-closed trades

Log Destinations:
1. File: {log_dir}/audit_{date}.log (all levels)
2. CSV: {log_dir}/audit_{date}.csv (one row per event, for later review)

Usage:
    audit = AuditLogger(log_dir='logs/')
    audit.log_trade_opened(trade)
    audit.log_exit(trade, partial_exit)
"""

import csv
import logging
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

CSV_COLUMNS = [
    'timestamp',
    'trade_id',
    'ticker',
    'event',
    'shares',
    'price',
    'status',
    'detail',
]


class AuditLogger:
    """
    Append-only audit trail for trade lifecycle events.

    Writes through a dedicated ``logging`` logger (file handler) and a CSV
    file. Safe to share between threads.
    """

    def __init__(self, log_dir: str = 'logs/', logger_name: str = 'trade_audit'):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit files (created if missing)
            logger_name: Name of the underlying logging.Logger
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.today = datetime.now().strftime('%Y-%m-%d')
        self._lock = Lock()

        self.logger = self._create_logger(logger_name)
        self.csv_file = self._create_csv_file()

    def _create_logger(self, name: str) -> logging.Logger:
        """Create file-backed logger."""
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)

        # Remove existing handlers so re-instantiation doesn't duplicate lines
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers = []

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        file_handler = logging.FileHandler(self.log_dir / f'audit_{self.today}.log')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        return logger

    def _create_csv_file(self) -> Path:
        """Create CSV with headers if it doesn't exist."""
        csv_path = self.log_dir / f'audit_{self.today}.csv'
        if not csv_path.exists():
            with open(csv_path, 'w', newline='') as f:
                csv.writer(f).writerow(CSV_COLUMNS)
        return csv_path

    def _write_csv(
        self,
        trade_id: str,
        ticker: str,
        event: str,
        shares: Optional[float] = None,
        price: Optional[float] = None,
        status: str = '',
        detail: str = '',
    ):
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        with self._lock:
            with open(self.csv_file, 'a', newline='') as f:
                csv.writer(f).writerow([
                    timestamp,
                    trade_id,
                    ticker,
                    event,
                    shares if shares is not None else '',
                    price if price is not None else '',
                    status,
                    detail,
                ])

    def log_trade_opened(self, trade) -> None:
        """Log trade creation."""
        self.logger.info(
            f"TRADE OPENED: {trade.trade_id} {trade.ticker} "
            f"{trade.entry_shares} @ ${trade.entry_price:.2f} "
            f"(stop={trade.stop_loss})"
        )
        self._write_csv(
            trade.trade_id, trade.ticker, 'OPEN',
            shares=trade.entry_shares, price=trade.entry_price,
            status=trade.status.value,
        )

    def log_exit(self, trade, partial_exit) -> None:
        """Log an exit fill."""
        self.logger.info(
            f"EXIT: {trade.trade_id} {trade.ticker} {partial_exit.shares} "
            f"@ ${partial_exit.price:.2f} reason={partial_exit.reason} "
            f"pnl=${partial_exit.pnl:.2f} status={trade.status.value}"
        )
        self._write_csv(
            trade.trade_id, trade.ticker, 'EXIT',
            shares=partial_exit.shares, price=partial_exit.price,
            status=trade.status.value, detail=partial_exit.reason,
        )

    def log_closing_update(self, trade, reason: str, changes: Dict[str, Any]) -> None:
        """Log a post-close amendment with before/after values."""
        detail = '; '.join(
            f"{field}: {before!r} -> {after!r}"
            for field, (before, after) in changes.items()
        )
        self.logger.warning(
            f"CLOSING UPDATE: {trade.trade_id} ({reason}) {detail}"
        )
        self._write_csv(
            trade.trade_id, trade.ticker, 'CLOSING_UPDATE',
            status=trade.status.value, detail=f"{reason} | {detail}",
        )

    def close(self) -> None:
        """Release file handlers."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
