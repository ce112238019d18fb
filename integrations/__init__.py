"""
External data integrations.

- Tiingo daily price provider (retry, rate limiting, session completeness)
- Sliding-window rate limiter shared by provider calls
"""

from .rate_limiter import SlidingWindowRateLimiter
from .price_provider import PriceSeriesProvider, TiingoPriceProvider, frame_to_bars

__all__ = [
    'SlidingWindowRateLimiter',
    'PriceSeriesProvider',
    'TiingoPriceProvider',
    'frame_to_bars',
]
