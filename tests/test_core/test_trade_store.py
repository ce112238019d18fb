"""
Tests for core/trade_lifecycle/trade_store.py

Covers JSON persistence round trip, copy-on-read, atomic mutation, filtered
queries, price history upserts and prediction log ranges.
"""

import json
import pytest
from datetime import date
from unittest.mock import patch

from core.trade_lifecycle.lifecycle import create_trade, record_exit
from core.trade_lifecycle.models import PredictionLog, PricePoint, TradeStatus
from core.trade_lifecycle.trade_store import TradeStore


def _point(trade_id, day, close):
    return PricePoint(trade_id, day, close, close + 1, close - 1, close, 1000.0)


class TestPersistence:
    """Tests for saving and reloading the store."""

    def test_round_trip(self, file_store, sample_trade, tmp_path):
        """Trades, price history and prediction logs survive a reload."""
        record_exit(sample_trade, date(2024, 1, 5), 105.0, 40, 'TP1')
        file_store.add_trade(sample_trade)
        file_store.upsert_price_point(_point('T1', date(2024, 1, 3), 101.0))
        file_store.add_prediction_log(PredictionLog('AAPL', date(2024, 1, 2), 0.72, 'v1'))

        reloaded = TradeStore(store_path=tmp_path / 'trades.json')
        trade = reloaded.get_trade('T1')

        assert trade.status == TradeStatus.PARTIALLY_CLOSED
        assert trade.partial_exits[0].reason == 'TP1'
        assert trade.remaining_shares == 60
        assert [p.close for p in reloaded.get_price_history('T1')] == [101.0]
        assert reloaded.get_prediction_logs()[0].predicted_probability == 0.72

    def test_file_is_json(self, file_store, sample_trade, tmp_path):
        """The store file is plain JSON with a trade list."""
        file_store.add_trade(sample_trade)
        with open(tmp_path / 'trades.json') as f:
            data = json.load(f)
        assert data['count'] == 1
        assert data['trades'][0]['trade_id'] == 'T1'

    def test_backups_are_capped(self, file_store, sample_trade, tmp_path):
        """No more than max_backups backup files are kept."""
        file_store.add_trade(sample_trade)
        for i in range(5):
            file_store.upsert_price_point(_point('T1', date(2024, 1, 3 + i), 100.0 + i))
        backups = list((tmp_path / 'backups').glob('trades_*.json'))
        assert len(backups) <= 2

    def test_corrupt_file_starts_empty(self, tmp_path):
        """An unreadable store file yields an empty store rather than a crash."""
        path = tmp_path / 'trades.json'
        path.write_text('{not json')
        store = TradeStore(store_path=path)
        assert len(store) == 0

    def test_exit_figures_keep_full_precision(self, file_store, sample_trade, tmp_path):
        """Fill P&L and R are stored unrounded."""
        fill = record_exit(sample_trade, date(2024, 1, 5), 100.0 + 1.0 / 3.0, 40, 'TP1')
        file_store.add_trade(sample_trade)

        reloaded = TradeStore(store_path=tmp_path / 'trades.json').get_trade('T1')
        stored = reloaded.partial_exits[0]

        assert stored.pnl == fill.pnl
        assert stored.pnl_percent == fill.pnl_percent
        assert stored.r_multiple == fill.r_multiple
        assert stored.pnl != round(fill.pnl, 4)

    def test_malformed_entries_are_skipped(self, tmp_path):
        """Bad price points and prediction logs are dropped, good ones load."""
        path = tmp_path / 'trades.json'
        good_point = _point('T1', date(2024, 1, 3), 101.0).to_dict()
        good_log = PredictionLog('AAPL', date(2024, 1, 2), 0.72, 'v1').to_dict()
        path.write_text(json.dumps({
            'trades': [],
            'price_history': {'T1': [good_point, {'close': 99.0}]},
            'prediction_logs': [{'ticker': 'MSFT'}, good_log],
        }))

        with patch('core.trade_lifecycle.trade_store.logger') as log:
            store = TradeStore(store_path=path)

        assert [p.close for p in store.get_price_history('T1')] == [101.0]
        assert [p.ticker for p in store.get_prediction_logs()] == ['AAPL']
        assert log.error.call_count == 2


class TestTrades:
    """Tests for trade CRUD and queries."""

    def test_get_missing_returns_none(self, memory_store):
        """Unknown trade ids return None."""
        assert memory_store.get_trade('missing') is None

    def test_reads_are_copies(self, memory_store, sample_trade):
        """Mutating a returned trade doesn't touch the store."""
        memory_store.add_trade(sample_trade)
        copy = memory_store.get_trade('T1')
        copy.notes = 'changed'
        assert memory_store.get_trade('T1').notes == ''

    def test_mutate_missing_returns_none(self, memory_store):
        """mutate_trade on an unknown id returns None."""
        assert memory_store.mutate_trade('missing', lambda t: 1) is None

    def test_unchanged_mutation_skips_save(self, file_store, sample_trade):
        """A mutation that changes nothing neither saves nor bumps updated_at."""
        file_store.add_trade(sample_trade)
        before = file_store.get_trade('T1').updated_at

        with patch.object(file_store, '_save', wraps=file_store._save) as save:
            assert file_store.mutate_trade('T1', lambda t: 'noop') == 'noop'

        save.assert_not_called()
        assert file_store.get_trade('T1').updated_at == before

    def test_delete_removes_history(self, memory_store, sample_trade):
        """Deleting a trade drops its price history."""
        memory_store.add_trade(sample_trade)
        memory_store.upsert_price_point(_point('T1', date(2024, 1, 3), 101.0))
        assert memory_store.delete_trade('T1') is True
        assert memory_store.get_price_history('T1') == []
        assert memory_store.delete_trade('T1') is False

    def test_filters(self, memory_store):
        """Status, ticker and date filters combine."""
        a = create_trade('AAPL', date(2024, 1, 2), 100.0, 10, trade_id='A')
        b = create_trade('MSFT', date(2024, 2, 1), 300.0, 10, trade_id='B')
        c = create_trade('AAPL', date(2024, 3, 1), 110.0, 10, trade_id='C')
        record_exit(c, date(2024, 3, 5), 120.0, 10)
        for t in (a, b, c):
            memory_store.add_trade(t)

        assert [t.trade_id for t in memory_store.get_trades(ticker='aapl')] == ['A', 'C']
        assert [t.trade_id for t in memory_store.get_trades(status=TradeStatus.CLOSED)] == ['C']
        assert [t.trade_id for t in memory_store.get_trades(
            entry_after=date(2024, 2, 1), entry_before=date(2024, 3, 1))] == ['C', 'B']
        assert {t.trade_id for t in memory_store.get_open_trades()} == {'A', 'B'}

    def test_snapshot_closed_trades(self, memory_store, sample_trade):
        """Snapshots include CLOSED and PARTIALLY_CLOSED trades only."""
        open_trade = create_trade('MSFT', date(2024, 1, 2), 300.0, 10, trade_id='OPEN')
        record_exit(sample_trade, date(2024, 1, 5), 105.0, 10)
        memory_store.add_trade(sample_trade)
        memory_store.add_trade(open_trade)

        snapshot = memory_store.snapshot_closed_trades()
        assert [t.trade_id for t in snapshot] == ['T1']


class TestPriceHistory:
    """Tests for price point upserts."""

    def test_upsert_replaces_same_date(self, memory_store):
        """A second point for the same date replaces the first."""
        memory_store.upsert_price_point(_point('T1', date(2024, 1, 3), 101.0))
        memory_store.upsert_price_point(_point('T1', date(2024, 1, 3), 102.0))
        history = memory_store.get_price_history('T1')
        assert len(history) == 1
        assert history[0].close == 102.0

    def test_history_sorted_by_date(self, memory_store):
        """History is returned oldest first regardless of insert order."""
        count = memory_store.upsert_price_points([
            _point('T1', date(2024, 1, 5), 103.0),
            _point('T1', date(2024, 1, 3), 101.0),
        ])
        assert count == 2
        assert [p.date.day for p in memory_store.get_price_history('T1')] == [3, 5]


class TestPredictionLogs:
    """Tests for prediction log storage."""

    def test_date_range_is_inclusive(self, memory_store):
        """Logs on both range boundaries are returned."""
        for day in (1, 5, 10):
            memory_store.add_prediction_log(PredictionLog('AAPL', date(2024, 1, day), 0.6))
        logs = memory_store.get_prediction_logs(date(2024, 1, 5), date(2024, 1, 10))
        assert [p.prediction_date.day for p in logs] == [5, 10]
