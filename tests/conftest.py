"""
Shared fixtures for Trade Outcome Lab tests.

Provides daily bar builders, in-memory and file-backed trade stores, and a
small set of exit model coefficients.
"""

import pytest
from datetime import date, timedelta

from core.exit_model.coefficients import ModelCoefficients
from core.trade_lifecycle.lifecycle import create_trade
from core.trade_lifecycle.models import PriceBar
from core.trade_lifecycle.trade_store import TradeStore


def make_bars(rows, start=date(2024, 1, 2), volume=1_000_000.0):
    """
    Build consecutive daily bars.

    Each row is (open, high, low, close) or a single close (flat bar with a
    1-point range around it).
    """
    bars = []
    for i, row in enumerate(rows):
        if isinstance(row, (int, float)):
            row = (row, row + 1.0, row - 1.0, row)
        o, h, l, c = row
        bars.append(PriceBar(start + timedelta(days=i), float(o), float(h), float(l), float(c), volume))
    return bars


@pytest.fixture
def bars_factory():
    """The make_bars builder."""
    return make_bars


@pytest.fixture
def memory_store():
    """In-memory TradeStore (nothing written to disk)."""
    return TradeStore(store_path=None)


@pytest.fixture
def file_store(tmp_path):
    """File-backed TradeStore under tmp_path."""
    return TradeStore(store_path=tmp_path / 'trades.json', max_backups=2)


@pytest.fixture
def sample_trade():
    """
    Open AAPL trade: 100 shares @ 100, stop 95 (5 point risk),
    targets 105 / 110 / 115.
    """
    return create_trade(
        ticker='aapl',
        entry_date=date(2024, 1, 2),
        entry_price=100.0,
        entry_shares=100,
        stop_loss=95.0,
        tp1=105.0,
        tp2=110.0,
        tp3=115.0,
        trade_id='T1',
    )


@pytest.fixture
def sample_coefficients():
    """Coefficients weighting holding time and R (exit as both grow)."""
    return ModelCoefficients(
        intercept=-1.0,
        weights={'holding_days': 1.5, 'unrealized_r': 0.8, 'rsi_14': 0.0},
        feature_means={'holding_days': 10.0, 'unrealized_r': 1.0, 'rsi_14': 50.0},
        feature_stds={'holding_days': 5.0, 'unrealized_r': 1.0, 'rsi_14': 0.0},
        version='test-1',
    )
