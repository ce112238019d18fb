"""
Trade statistics: win rate, expectancy, profit factor and outcome distributions.
"""

from core.analytics.trade_stats import (
    Distribution,
    DistributionBucket,
    SegmentStats,
    TradeStatsEngine,
    TradeSummary,
    build_distribution,
    mae_percent,
    mfe_utilization,
    summarize_trades,
)

__all__ = [
    "Distribution",
    "DistributionBucket",
    "SegmentStats",
    "TradeStatsEngine",
    "TradeSummary",
    "build_distribution",
    "mae_percent",
    "mfe_utilization",
    "summarize_trades",
]
