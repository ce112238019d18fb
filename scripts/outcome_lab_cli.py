#!/usr/bin/env python
"""
Trade Outcome Lab CLI

Command-line interface for the trade journal, exit model, counterfactual
replays and prediction reconciliation.

Usage:
    # Open a trade
    python scripts/outcome_lab_cli.py open AAPL --date 2024-03-01 --price 180 --shares 100 --stop 171

    # Record an exit fill
    python scripts/outcome_lab_cli.py exit <trade_id> --date 2024-03-08 --price 189 --shares 50 --reason TP1

    # Backfill daily price history from Tiingo
    python scripts/outcome_lab_cli.py backfill

    # Train the exit model on stored trades
    python scripts/outcome_lab_cli.py train

    # Replay preset exit scenarios for a trade
    python scripts/outcome_lab_cli.py counterfactual <trade_id>

    # Hindsight-optimal exit for a trade
    python scripts/outcome_lab_cli.py optimal <trade_id>

    # Log a model prediction
    python scripts/outcome_lab_cli.py predict AAPL --date 2024-03-01 --probability 0.72

    # Calibration / drift / threshold report
    python scripts/outcome_lab_cli.py reconcile --threshold 0.55

    # Win rate, expectancy and outcome distributions
    python scripts/outcome_lab_cli.py stats --by exit_reason
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.settings import EngineSettings
from core.analytics import TradeStatsEngine
from core.errors import OutcomeLabError
from core.exit_model import (
    LogisticScorer,
    label_exit_points,
    load_coefficients,
    save_coefficients,
    train_exit_model,
    evaluate_model,
)
from core.monitoring import ReconciliationEngine
from core.simulation import CounterfactualEngine
from core.trade_lifecycle import PredictionLog, TradeLifecycleManager, TradeStore
from core.trade_lifecycle.models import parse_date
from core.trade_lifecycle.price_tracker import PriceTracker
from utils.audit_logger import AuditLogger

logger = logging.getLogger('outcome_lab')


def _print_json(payload):
    print(json.dumps(payload, indent=2, default=str))


def _scorer_or_none(settings):
    """Scorer from saved coefficients; None (with a warning) if none exist."""
    if not settings.model_path.exists():
        logger.warning(f"No exit model at {settings.model_path}; MODEL_EXIT rules unavailable")
        return None
    return LogisticScorer(load_coefficients(settings.model_path))


def cmd_open(args, settings, store):
    """Open a new trade."""
    audit = AuditLogger(log_dir=str(settings.audit_log_dir))
    try:
        manager = TradeLifecycleManager(store, audit_logger=audit)
        trade = manager.open_trade(
            ticker=args.ticker,
            entry_date=parse_date(args.date),
            entry_price=args.price,
            entry_shares=args.shares,
            stop_loss=args.stop,
            tp1=args.tp1,
            tp2=args.tp2,
            tp3=args.tp3,
            entry_probability=args.probability,
        )
    finally:
        audit.close()
    print(f"Opened {trade.trade_id}: {trade.ticker} {trade.entry_shares} @ ${trade.entry_price:.2f}")
    return 0


def cmd_exit(args, settings, store):
    """Record an exit fill."""
    audit = AuditLogger(log_dir=str(settings.audit_log_dir))
    try:
        manager = TradeLifecycleManager(store, audit_logger=audit)
        result = manager.record_exit(
            args.trade_id, parse_date(args.date), args.price, args.shares, args.reason.upper()
        )
    finally:
        audit.close()
    if not result.ok:
        print(f"Error: {result.error}")
        return 1
    fill = result.value
    print(f"Recorded exit: {fill.shares} @ ${fill.price:.2f} ({fill.reason}) P&L ${fill.pnl:+.2f}")
    return 0


def cmd_backfill(args, settings, store):
    """Backfill daily price history."""
    from integrations import SlidingWindowRateLimiter, TiingoPriceProvider

    provider = TiingoPriceProvider(
        rate_limiter=SlidingWindowRateLimiter(settings.rate_limit_calls, settings.rate_limit_window)
    )
    tracker = PriceTracker(store, provider, manager=TradeLifecycleManager(store))

    if args.trade_id:
        count = tracker.backfill_trade(args.trade_id)
        print(f"Recorded {count} price points for {args.trade_id}")
        return 0

    report = tracker.backfill_all()
    print(f"Processed {report.processed} trades, {report.points_recorded} price points")
    for err in report.errors:
        print(f"  {err['entity']}: {err['error']}")
    return 0 if report.success else 1


def cmd_train(args, settings, store):
    """Train the exit model on stored trades with price history."""
    examples = []
    for trade in store.get_trades():
        if trade.stop_loss is None:
            continue
        bars = [p.to_bar() for p in store.get_price_history(trade.trade_id)]
        entry_idx = next((i for i, b in enumerate(bars) if b.date >= trade.entry_date), None)
        if entry_idx is None:
            continue
        examples.extend(label_exit_points(
            trade.ticker, bars, entry_idx, trade.entry_price, trade.stop_loss,
            max_days=args.max_days,
        ))

    print(f"Built {len(examples)} training examples")
    coefficients = train_exit_model(
        examples,
        iterations=args.iterations,
        learning_rate=args.learning_rate,
    )
    path = save_coefficients(coefficients, args.output or settings.model_path)
    metrics = evaluate_model(examples, coefficients)
    print(f"Saved model {coefficients.version} to {path}")
    _print_json(metrics)
    return 0


def cmd_counterfactual(args, settings, store):
    """Replay preset exit scenarios for a trade."""
    engine = CounterfactualEngine(store, scorer=_scorer_or_none(settings))
    result = engine.run_all_preset_scenarios(args.trade_id)
    if not result.ok:
        print(f"Error: {result.error}")
        return 1

    scenarios = result.value['scenarios']
    print(f"\nCOUNTERFACTUAL SCENARIOS: {args.trade_id}")
    print("=" * 60)
    for r in scenarios:
        print(f"{r.scenario_name:22} | {r.exit_reason:16} | {r.realized_r:+6.2f}R | "
              f"{r.improvement_r_vs_actual:+6.2f}R vs actual | {r.holding_days:3}d")
    best = result.value['best_scenario']
    if best is not None:
        print(f"\nBest: {best.scenario_name} ({best.realized_r:+.2f}R)")
    return 0


def cmd_optimal(args, settings, store):
    """Hindsight-optimal exit for a trade."""
    engine = CounterfactualEngine(store)
    result = engine.find_optimal_exit(args.trade_id)
    if not result.ok:
        print(f"Error: {result.error}")
        return 1
    _print_json(result.value.to_dict())
    return 0


def cmd_predict(args, settings, store):
    """Log a model prediction for later reconciliation."""
    store.add_prediction_log(PredictionLog(
        ticker=args.ticker.upper(),
        prediction_date=parse_date(args.date),
        predicted_probability=args.probability,
        model_version=args.model_version,
    ))
    store.save()
    print(f"Logged prediction {args.ticker.upper()} {args.date} p={args.probability:.2f}")
    return 0


def cmd_reconcile(args, settings, store):
    """Calibration, drift and threshold report."""
    engine = ReconciliationEngine(store)
    threshold = args.threshold if args.threshold is not None else settings.default_entry_threshold
    summary = engine.get_summary(
        current_threshold=threshold,
        recent_days=args.recent_days or settings.drift_recent_days,
    )

    if args.json:
        _print_json(summary.to_dict())
        return 0

    print("\nPREDICTION RECONCILIATION")
    print("=" * 60)
    print(f"Trades: {summary.total_trades} | Matched: {summary.matched_trades} "
          f"({summary.match_rate * 100:.0f}%)")
    print("\nCALIBRATION:")
    print("-" * 60)
    for b in summary.calibration:
        print(f"{b.label:8} | {b.trade_count:3} trades | expected {b.expected_win_rate * 100:5.1f}% | "
              f"actual {b.actual_win_rate * 100:5.1f}% | {b.calibration_error * 100:+5.1f}")
    print(f"\nDrift: {summary.drift.recommendation}")
    rec = summary.threshold_recommendation
    print(f"Threshold: {rec.current_threshold:.2f} -> {rec.recommended_threshold:.2f} "
          f"({rec.confidence}) - {rec.rationale}")
    return 0


def cmd_stats(args, settings, store):
    """Summary statistics and outcome distributions over settled trades."""
    engine = TradeStatsEngine(
        store,
        entry_after=parse_date(args.since),
        entry_before=parse_date(args.until),
    )
    trades = engine.snapshot()
    summary = engine.summary(trades)
    distributions = engine.all_distributions(trades)
    segments = engine.win_rate_by_factor(args.by, trades) if args.by else []

    if args.json:
        _print_json({
            'summary': summary.to_dict(),
            'distributions': {
                name: dist.to_dict() if dist is not None else None
                for name, dist in distributions.items()
            },
            'segments': [s.to_dict() for s in segments],
        })
        return 0

    pf = f"{summary.profit_factor:.2f}" if summary.profit_factor is not None else 'n/a'
    print("\nTRADE STATISTICS")
    print("=" * 60)
    print(f"Trades: {summary.total_trades} (closed {summary.closed_trades}, "
          f"partial {summary.partially_closed_trades})")
    print(f"Win rate: {summary.win_rate * 100:.1f}% | Profit factor: {pf} | "
          f"Expectancy: ${summary.expectancy:+.2f}")
    print(f"Avg R: {summary.avg_r:+.2f} (best {summary.best_r:+.2f}, worst {summary.worst_r:+.2f})")
    for name, dist in distributions.items():
        if dist is None:
            continue
        print(f"\n{name.upper()} (n={dist.count}, mean {dist.mean:.2f}, median {dist.median:.2f})")
        print("-" * 60)
        for b in dist.buckets:
            print(f"{b.label:14} | {b.count:3} | {b.percent:5.1f}%")
    if segments:
        print(f"\nWIN RATE BY {args.by.upper()}")
        print("-" * 60)
        for s in segments:
            print(f"{s.segment_value:14} | {s.trades:3} trades | "
                  f"{s.win_rate * 100:5.1f}% | ${s.total_pnl:+.2f}")
    return 0


COMMANDS = {
    'open': cmd_open,
    'exit': cmd_exit,
    'backfill': cmd_backfill,
    'train': cmd_train,
    'counterfactual': cmd_counterfactual,
    'optimal': cmd_optimal,
    'predict': cmd_predict,
    'reconcile': cmd_reconcile,
    'stats': cmd_stats,
}


def build_parser():
    parser = argparse.ArgumentParser(
        description="Trade Outcome Lab CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--store', help='Trade store JSON path (default: TRADE_STORE_PATH)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Open command
    open_parser = subparsers.add_parser('open', help='Open a new trade')
    open_parser.add_argument('ticker', help='Symbol')
    open_parser.add_argument('--date', required=True, help='Entry date (YYYY-MM-DD)')
    open_parser.add_argument('--price', type=float, required=True, help='Entry price')
    open_parser.add_argument('--shares', type=float, required=True, help='Entry shares')
    open_parser.add_argument('--stop', type=float, help='Stop loss')
    open_parser.add_argument('--tp1', type=float, help='First target')
    open_parser.add_argument('--tp2', type=float, help='Second target')
    open_parser.add_argument('--tp3', type=float, help='Third target')
    open_parser.add_argument('--probability', type=float, help='Entry probability (0-1)')

    # Exit command
    exit_parser = subparsers.add_parser('exit', help='Record an exit fill')
    exit_parser.add_argument('trade_id', help='Trade ID')
    exit_parser.add_argument('--date', required=True, help='Exit date (YYYY-MM-DD)')
    exit_parser.add_argument('--price', type=float, required=True, help='Fill price')
    exit_parser.add_argument('--shares', type=float, required=True, help='Shares exited')
    exit_parser.add_argument('--reason', default='MANUAL', help='Exit reason (default: MANUAL)')

    # Backfill command
    backfill_parser = subparsers.add_parser('backfill', help='Backfill daily price history')
    backfill_parser.add_argument('--trade-id', help='Only this trade')

    # Train command
    train_parser = subparsers.add_parser('train', help='Train the exit model')
    train_parser.add_argument('--iterations', type=int, default=1000)
    train_parser.add_argument('--learning-rate', type=float, default=0.01)
    train_parser.add_argument('--max-days', type=int, default=30)
    train_parser.add_argument('--output', '-o', help='Coefficient file (default: EXIT_MODEL_PATH)')

    # Counterfactual command
    cf_parser = subparsers.add_parser('counterfactual', help='Replay preset exit scenarios')
    cf_parser.add_argument('trade_id', help='Trade ID')

    # Optimal command
    optimal_parser = subparsers.add_parser('optimal', help='Hindsight-optimal exit')
    optimal_parser.add_argument('trade_id', help='Trade ID')

    # Predict command
    predict_parser = subparsers.add_parser('predict', help='Log a model prediction')
    predict_parser.add_argument('ticker', help='Symbol')
    predict_parser.add_argument('--date', required=True, help='Prediction date (YYYY-MM-DD)')
    predict_parser.add_argument('--probability', type=float, required=True, help='Probability (0-1)')
    predict_parser.add_argument('--model-version', default='', help='Model version tag')

    # Reconcile command
    reconcile_parser = subparsers.add_parser('reconcile', help='Calibration and drift report')
    reconcile_parser.add_argument('--threshold', type=float, help='Current entry threshold (0-1)')
    reconcile_parser.add_argument('--recent-days', type=int, help='Drift recent window in days')
    reconcile_parser.add_argument('--json', action='store_true', help='JSON output')

    # Stats command
    stats_parser = subparsers.add_parser('stats', help='Win rate, expectancy and distributions')
    stats_parser.add_argument('--since', help='Entry date on or after (YYYY-MM-DD)')
    stats_parser.add_argument('--until', help='Entry date on or before (YYYY-MM-DD)')
    stats_parser.add_argument('--by', help='Win rate by trade attribute (e.g. exit_reason, ticker)')
    stats_parser.add_argument('--json', action='store_true', help='JSON output')

    return parser


def main(argv=None, settings=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    settings = settings or EngineSettings.from_env()
    store = TradeStore(args.store or settings.store_path)
    try:
        return handler(args, settings, store)
    except OutcomeLabError as e:
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
