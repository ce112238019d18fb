"""
Tests for integrations/price_provider.py

The Tiingo client and the exchange calendar are mocked; no network access.
"""

import pytest
import pandas as pd
import requests
from datetime import date
from unittest.mock import Mock, patch

from core.errors import DataUnavailableError
from integrations.price_provider import TiingoPriceProvider, _is_retryable, frame_to_bars
from integrations.rate_limiter import SlidingWindowRateLimiter


# =============================================================================
# TEST FIXTURES
# =============================================================================


@pytest.fixture
def sample_ohlcv_df():
    """Daily OHLCV DataFrame like Tiingo returns."""
    dates = pd.date_range('2024-01-02', periods=4, freq='D')
    return pd.DataFrame({
        'open': [100.0, 101.0, 102.0, 103.0],
        'high': [101.0, 102.0, 103.0, 104.0],
        'low': [99.0, 100.0, 101.0, 102.0],
        'close': [100.5, 101.5, 102.5, 103.5],
        'volume': [1000000, 1100000, 1200000, 1300000],
    }, index=dates)


@pytest.fixture
def mock_tiingo_client(sample_ohlcv_df):
    client = Mock()
    client.get_dataframe.return_value = sample_ohlcv_df.copy()
    return client


@pytest.fixture
def mock_calendar():
    """Calendar whose schedule lists Jan 2-5, 2024 as sessions."""
    calendar = Mock()
    calendar.schedule.return_value = pd.DataFrame(
        index=pd.date_range('2024-01-02', periods=4, freq='D')
    )
    return calendar


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def provider(mock_tiingo_client, mock_calendar, sleeps):
    limiter = Mock(spec=SlidingWindowRateLimiter)
    provider = TiingoPriceProvider(
        client=mock_tiingo_client, rate_limiter=limiter, sleep=sleeps.append,
    )
    provider._calendar = mock_calendar
    return provider


# =============================================================================
# FRAME CONVERSION
# =============================================================================


class TestFrameToBars:
    """Tests for frame_to_bars()."""

    def test_converts_rows(self, sample_ohlcv_df):
        bars = frame_to_bars(sample_ohlcv_df)
        assert len(bars) == 4
        assert bars[0].date == date(2024, 1, 2)
        assert bars[0].close == 100.5
        assert bars[-1].volume == 1300000.0

    def test_adjusted_columns_preferred(self, sample_ohlcv_df):
        """adjClose wins over close when both exist."""
        df = sample_ohlcv_df.copy()
        df['adjClose'] = df['close'] / 2
        assert frame_to_bars(df)[0].close == pytest.approx(50.25)

    def test_capitalized_columns(self, sample_ohlcv_df):
        df = sample_ohlcv_df.rename(columns=str.capitalize)
        assert frame_to_bars(df)[1].open == 101.0

    def test_drops_missing_prices(self, sample_ohlcv_df):
        df = sample_ohlcv_df.copy()
        df.iloc[1, df.columns.get_loc('close')] = float('nan')
        assert [b.date for b in frame_to_bars(df)] == [
            date(2024, 1, 2), date(2024, 1, 4), date(2024, 1, 5),
        ]

    def test_missing_volume_defaults_to_zero(self, sample_ohlcv_df):
        bars = frame_to_bars(sample_ohlcv_df.drop(columns=['volume']))
        assert all(b.volume == 0.0 for b in bars)

    def test_missing_price_column(self, sample_ohlcv_df):
        with pytest.raises(DataUnavailableError, match="missing 'high'"):
            frame_to_bars(sample_ohlcv_df.drop(columns=['high']))

    def test_empty_frame(self):
        assert frame_to_bars(pd.DataFrame()) == []
        assert frame_to_bars(None) == []


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================


class TestIsRetryable:
    """Tests for _is_retryable()."""

    @pytest.mark.parametrize('error', [
        requests.exceptions.ConnectionError('reset'),
        requests.exceptions.Timeout('slow'),
        Exception('429 Too Many Requests'),
        Exception('Request timed out'),
        Exception('503 Service Unavailable'),
    ])
    def test_transient(self, error):
        assert _is_retryable(error)

    def test_status_code_on_response(self):
        error = Exception('boom')
        error.response = Mock(status_code=502)
        assert _is_retryable(error)

    @pytest.mark.parametrize('message', ['404 Not Found', 'Invalid ticker', 'Unauthorized'])
    def test_permanent(self, message):
        assert not _is_retryable(Exception(message))


# =============================================================================
# FETCHING
# =============================================================================


class TestTiingoPriceProvider:
    """Tests for TiingoPriceProvider.get_historical_prices()."""

    def test_init_uses_configured_key(self):
        """Without a client, one is built from the configured key."""
        with patch('integrations.price_provider.TiingoClient') as MockClient:
            with patch('integrations.price_provider.get_tiingo_key', return_value='env_key'):
                TiingoPriceProvider()
        MockClient.assert_called_once_with({'api_key': 'env_key', 'session': True})

    def test_fetch_bars(self, provider, mock_tiingo_client):
        bars = provider.get_historical_prices('aapl', date(2024, 1, 2), date(2024, 1, 5))

        assert [b.close for b in bars] == [100.5, 101.5, 102.5, 103.5]
        mock_tiingo_client.get_dataframe.assert_called_once_with(
            'AAPL', startDate='2024-01-02', endDate='2024-01-05', frequency='daily',
        )
        provider.rate_limiter.acquire.assert_called_once()

    def test_filters_to_range(self, provider):
        bars = provider.get_historical_prices('AAPL', date(2024, 1, 3), date(2024, 1, 4))
        assert [b.date for b in bars] == [date(2024, 1, 3), date(2024, 1, 4)]

    def test_inverted_range(self, provider):
        with pytest.raises(DataUnavailableError, match='empty range'):
            provider.get_historical_prices('AAPL', date(2024, 1, 5), date(2024, 1, 2))

    def test_no_data(self, provider, mock_tiingo_client):
        mock_tiingo_client.get_dataframe.return_value = pd.DataFrame()
        with pytest.raises(DataUnavailableError, match='no price data'):
            provider.get_historical_prices('AAPL', date(2024, 1, 2), date(2024, 1, 5))

    def test_retries_transient_errors(self, provider, mock_tiingo_client, sample_ohlcv_df, sleeps):
        """Transient failures back off 1s, 2s, ... and then succeed."""
        mock_tiingo_client.get_dataframe.side_effect = [
            Exception('429 Too Many Requests'),
            requests.exceptions.ConnectionError('reset'),
            sample_ohlcv_df.copy(),
        ]
        bars = provider.get_historical_prices('AAPL', date(2024, 1, 2), date(2024, 1, 5))

        assert len(bars) == 4
        assert sleeps == [1, 2]
        assert provider.rate_limiter.acquire.call_count == 3

    def test_retries_exhausted(self, provider, mock_tiingo_client, sleeps):
        """Exhausted retries surface as DataUnavailableError."""
        mock_tiingo_client.get_dataframe.side_effect = Exception('503 Service Unavailable')
        with pytest.raises(DataUnavailableError, match='after 3 attempts'):
            provider.get_historical_prices('AAPL', date(2024, 1, 2), date(2024, 1, 5))
        assert sleeps == [1, 2]

    def test_permanent_error_not_retried(self, provider, mock_tiingo_client, sleeps):
        mock_tiingo_client.get_dataframe.side_effect = Exception('404 Not Found')
        with pytest.raises(DataUnavailableError, match='404'):
            provider.get_historical_prices('NOPE', date(2024, 1, 2), date(2024, 1, 5))
        assert sleeps == []
        assert mock_tiingo_client.get_dataframe.call_count == 1

    def test_partial_data_logged(self, provider, mock_calendar, sample_ohlcv_df):
        """Sessions absent from the response are counted."""
        bars = frame_to_bars(sample_ohlcv_df.iloc[[0, 2]])
        missing = provider._check_completeness('AAPL', bars, date(2024, 1, 2), date(2024, 1, 5))
        assert missing == 2
