"""
Daily price providers.

PriceSeriesProvider is the interface the engine consumes:
    get_historical_prices(ticker, start, end) -> List[PriceBar]

TiingoPriceProvider implements it on top of the tiingo client:
- Every request passes through a shared SlidingWindowRateLimiter
- Rate-limit / network failures raise ProviderTransientError and are retried
  with exponential backoff (2**attempt seconds)
- Exhausted retries and hard failures surface as DataUnavailableError
- Sessions missing against the NYSE calendar are logged as partial data

Usage:
    provider = TiingoPriceProvider(rate_limiter=SlidingWindowRateLimiter(250, 60))
    bars = provider.get_historical_prices('AAPL', date(2024, 1, 2), date(2024, 3, 1))
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, List, Optional

import pandas as pd
import pandas_market_calendars as mcal
import requests
from tiingo import TiingoClient

from config.settings import get_tiingo_key
from core.errors import DataUnavailableError, ProviderTransientError
from core.trade_lifecycle.models import PriceBar
from integrations.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_KEYWORDS = ('timeout', 'timed out', 'rate limit', 'too many requests', '429', 'connection', '502', '503', '504')


class PriceSeriesProvider(ABC):
    """Source of daily OHLCV bars."""

    @abstractmethod
    def get_historical_prices(self, ticker: str, start: date, end: date) -> List[PriceBar]:
        """
        Bars for ``ticker`` with start <= date <= end, ascending.

        Raises:
            DataUnavailableError: nothing usable could be fetched
        """


def frame_to_bars(df: pd.DataFrame) -> List[PriceBar]:
    """
    Convert a provider DataFrame (DatetimeIndex, OHLCV columns) to PriceBars.

    Adjusted columns (adjOpen, ...) win over raw ones when both are present.
    Rows with missing prices are dropped.
    """
    if df is None or df.empty:
        return []

    columns = {}
    for field in ('open', 'high', 'low', 'close', 'volume'):
        adjusted = 'adj' + field.capitalize()
        if adjusted in df.columns:
            columns[field] = adjusted
        elif field in df.columns:
            columns[field] = field
        elif field.capitalize() in df.columns:
            columns[field] = field.capitalize()
        elif field != 'volume':
            raise DataUnavailableError(f"Price frame missing '{field}' column")

    frame = df[list(columns.values())].rename(columns={v: k for k, v in columns.items()})
    frame = frame.dropna(subset=['open', 'high', 'low', 'close']).sort_index()
    if 'volume' not in frame.columns:
        frame['volume'] = 0.0

    index = pd.DatetimeIndex(frame.index)
    return [
        PriceBar(
            date=ts.date(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume) if pd.notna(row.volume) else 0.0,
        )
        for ts, row in zip(index, frame.itertuples(index=False))
    ]


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    response = getattr(error, 'response', None)
    status = getattr(response, 'status_code', None)
    if status is not None and (status == 429 or status >= 500):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in RETRYABLE_KEYWORDS)


class TiingoPriceProvider(PriceSeriesProvider):
    """
    Tiingo daily bars with rate limiting and retry.

    Usage:
        provider = TiingoPriceProvider()
        bars = provider.get_historical_prices('SPY', date(2024, 1, 2), date(2024, 2, 1))
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        client: Optional[TiingoClient] = None,
        max_retries: int = 3,
        calendar_name: str = 'NYSE',
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize provider.

        Args:
            api_key: Tiingo API key (defaults to TIINGO_API_KEY via config.settings)
            rate_limiter: Shared limiter; a 250 calls/minute limiter if omitted
            client: Pre-built TiingoClient (tests inject a mock)
            max_retries: Attempts per request before giving up
            calendar_name: pandas_market_calendars exchange used for gap checks
            sleep: Backoff sleep function
        """
        if client is None:
            client = TiingoClient({'api_key': api_key or get_tiingo_key(), 'session': True})
        self.client = client
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(250, 60.0)
        self.max_retries = max_retries
        self.calendar_name = calendar_name
        self._calendar = None
        self._sleep = sleep

    def get_historical_prices(self, ticker: str, start: date, end: date) -> List[PriceBar]:
        if end < start:
            raise DataUnavailableError(f"{ticker}: empty range {start} > {end}")

        ticker = ticker.upper()
        try:
            df = self._retry_api_call(
                self._fetch_frame, ticker, start.isoformat(), end.isoformat()
            )
        except ProviderTransientError as e:
            raise DataUnavailableError(
                f"{ticker}: provider unavailable after {self.max_retries} attempts ({e})"
            ) from e

        bars = [b for b in frame_to_bars(df) if start <= b.date <= end]
        if not bars:
            raise DataUnavailableError(f"{ticker}: no price data between {start} and {end}")

        self._check_completeness(ticker, bars, start, end)
        logger.debug(f"Fetched {len(bars)} bars for {ticker} ({start} -> {end})")
        return bars

    def _fetch_frame(self, ticker: str, start: str, end: str) -> pd.DataFrame:
        """One provider request, with errors classified."""
        try:
            return self.client.get_dataframe(
                ticker,
                startDate=start,
                endDate=end,
                frequency='daily',
            )
        except Exception as e:  # tiingo wraps HTTP failures in its own RestClientError
            if _is_retryable(e):
                raise ProviderTransientError(f"{ticker}: {e}") from e
            raise DataUnavailableError(f"{ticker}: {e}") from e

    def _retry_api_call(self, func: Callable, *args, **kwargs):
        """
        Execute provider call with rate limiting and exponential backoff.

        Only ProviderTransientError is retried; anything else propagates.
        """
        for attempt in range(self.max_retries):
            self.rate_limiter.acquire()
            try:
                return func(*args, **kwargs)
            except ProviderTransientError as e:
                if attempt == self.max_retries - 1:
                    logger.error(
                        f"Provider call failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    raise
                wait_time = 2 ** attempt
                logger.warning(
                    f"Retryable error (attempt {attempt + 1}/{self.max_retries}), "
                    f"retrying in {wait_time}s: {e}"
                )
                self._sleep(wait_time)

    def _check_completeness(self, ticker: str, bars: List[PriceBar], start: date, end: date) -> int:
        """Log sessions missing from the response. Returns the missing count."""
        if self._calendar is None:
            self._calendar = mcal.get_calendar(self.calendar_name)
        schedule = self._calendar.schedule(start_date=start.isoformat(), end_date=end.isoformat())
        expected = {ts.date() for ts in schedule.index}
        received = {b.date for b in bars}
        missing = sorted(expected - received)
        if missing:
            logger.warning(
                f"{ticker}: partial data, {len(missing)} of {len(expected)} sessions missing "
                f"(first missing {missing[0]})"
            )
        return len(missing)
