"""
Tests for core/trade_lifecycle/price_tracker.py

Provider calls are mocked; no network access.
"""

import pytest
from datetime import date
from unittest.mock import Mock, patch

from core.errors import DataUnavailableError
from core.trade_lifecycle.lifecycle import create_trade, record_exit
from core.trade_lifecycle.models import PriceBar
from core.trade_lifecycle.price_tracker import BatchReport, PriceTracker, build_price_point
from core.trade_lifecycle.trade_store import TradeStore


@pytest.fixture
def provider():
    return Mock()


@pytest.fixture
def tracker(memory_store, provider):
    return PriceTracker(memory_store, provider)


class TestBuildPricePoint:
    """Tests for build_price_point()."""

    def test_unrealized_metrics(self, sample_trade):
        """Unrealized P&L, percent and R are marked at the close."""
        bar = PriceBar(date(2024, 1, 3), 100.0, 108.0, 99.0, 107.5, 5000.0)
        point = build_price_point(sample_trade, bar)

        assert point.trade_id == 'T1'
        assert point.unrealized_pnl == pytest.approx(750.0)
        assert point.unrealized_pnl_percent == pytest.approx(7.5)
        assert point.unrealized_r == pytest.approx(1.5)

    def test_explicit_share_count(self, sample_trade):
        """An explicit share count overrides remaining shares."""
        bar = PriceBar(date(2024, 1, 3), 100.0, 101.0, 99.0, 101.0)
        assert build_price_point(sample_trade, bar, shares=10).unrealized_pnl == pytest.approx(10.0)


class TestBackfill:
    """Tests for backfill_trade() and backfill_all()."""

    def test_backfill_records_history_and_excursions(self, tracker, memory_store, provider,
                                                     sample_trade, bars_factory):
        """Every bar is stored and folded into MFE/MAE."""
        memory_store.add_trade(sample_trade)
        provider.get_historical_prices.return_value = bars_factory(
            [(100, 104, 98, 103), (103, 109, 102, 108), (108, 108, 96, 97)]
        )

        count = tracker.backfill_trade('T1', today=date(2024, 1, 10))

        assert count == 3
        provider.get_historical_prices.assert_called_once_with('AAPL', date(2024, 1, 2), date(2024, 1, 10))
        assert len(memory_store.get_price_history('T1')) == 3
        trade = memory_store.get_trade('T1')
        assert trade.mfe == 109.0
        assert trade.mae == 96.0

    def test_closed_trade_uses_exit_date(self, tracker, memory_store, provider,
                                         sample_trade, bars_factory):
        """Closed trades are backfilled up to their exit date."""
        record_exit(sample_trade, date(2024, 1, 4), 104.0, 100)
        memory_store.add_trade(sample_trade)
        provider.get_historical_prices.return_value = bars_factory([100, 102, 104])

        tracker.backfill_trade('T1', today=date(2024, 2, 1))
        provider.get_historical_prices.assert_called_once_with('AAPL', date(2024, 1, 2), date(2024, 1, 4))

    def test_unknown_trade(self, tracker):
        """Unknown trades raise DataUnavailableError."""
        with pytest.raises(DataUnavailableError):
            tracker.backfill_trade('missing')

    def test_empty_provider_response(self, tracker, memory_store, provider, sample_trade):
        """No bars for the range raises DataUnavailableError."""
        memory_store.add_trade(sample_trade)
        provider.get_historical_prices.return_value = []
        with pytest.raises(DataUnavailableError):
            tracker.backfill_trade('T1', today=date(2024, 1, 10))

    def test_backfill_all_collects_errors(self, tracker, memory_store, provider, bars_factory):
        """One failing ticker doesn't stop the batch."""
        memory_store.add_trade(create_trade('AAPL', date(2024, 1, 2), 100.0, 10, trade_id='A'))
        memory_store.add_trade(create_trade('BAD', date(2024, 1, 2), 10.0, 10, trade_id='B'))

        def fake_prices(ticker, start, end):
            if ticker == 'BAD':
                raise DataUnavailableError('BAD: no price data')
            return bars_factory([100, 101])

        provider.get_historical_prices.side_effect = fake_prices
        report = tracker.backfill_all(today=date(2024, 1, 5))

        assert report.processed == 1
        assert report.points_recorded == 2
        assert not report.success
        assert report.errors == [{'entity': 'B', 'error': 'BAD: no price data'}]


    def test_backfill_writes_store_once_per_kind(self, file_store, provider, sample_trade, bars_factory):
        """60 bars cost one history write and one excursion write, not one per bar."""
        file_store.add_trade(sample_trade)
        provider.get_historical_prices.return_value = bars_factory(
            [100 + (d % 7) for d in range(60)]
        )
        tracker = PriceTracker(file_store, provider)

        with patch.object(file_store, '_save', wraps=file_store._save) as save:
            assert tracker.backfill_trade('T1', today=date(2024, 3, 1)) == 60

        assert save.call_count <= 2
        assert file_store.get_trade('T1').mfe == 107.0
        assert len(TradeStore(file_store.store_path).get_price_history('T1')) == 60


class TestUpdateOpenTrades:
    """Tests for update_open_trades()."""

    def test_groups_by_ticker(self, tracker, memory_store, provider, bars_factory):
        """Each ticker is fetched once and every trade marked at the latest bar."""
        memory_store.add_trade(create_trade('AAPL', date(2024, 1, 2), 100.0, 10, trade_id='A1'))
        memory_store.add_trade(create_trade('AAPL', date(2024, 1, 3), 101.0, 5, trade_id='A2'))
        provider.get_historical_prices.return_value = bars_factory([100, 102, 105])

        report = tracker.update_open_trades(as_of=date(2024, 1, 4))

        assert provider.get_historical_prices.call_count == 1
        assert report.processed == 2
        assert memory_store.get_price_history('A1')[-1].close == 105.0
        assert memory_store.get_price_history('A2')[-1].date == date(2024, 1, 4)

    def test_missing_ticker_reported(self, tracker, memory_store, provider):
        """Provider failures become per-ticker errors."""
        memory_store.add_trade(create_trade('ZZZ', date(2024, 1, 2), 10.0, 10, trade_id='Z'))
        provider.get_historical_prices.side_effect = DataUnavailableError('gone')

        report = tracker.update_open_trades(as_of=date(2024, 1, 4))

        assert report.processed == 0
        assert report.errors[0]['entity'] == 'ZZZ'
        assert 'No price data for ZZZ' in report.errors[0]['error']


class TestBatchReport:
    """Tests for BatchReport."""

    def test_to_dict(self):
        """Serialized report lists counts and errors."""
        report = BatchReport(processed=2, points_recorded=10)
        report.add_error('X', 'boom')
        assert report.to_dict() == {
            'processed': 2,
            'points_recorded': 10,
            'errors': [{'entity': 'X', 'error': 'boom'}],
        }
