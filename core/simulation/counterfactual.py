"""
Counterfactual Engine - "what if I had exited differently?"

Replays a stored trade's recorded price history through the exit simulator
under alternative rule-sets and compares the result with what actually
happened.

Scenarios override the trade's own plan (stop and take-profits); an
override of None removes that rule. Unset trailing / time / model rules are
simply absent.

Usage:
    engine = CounterfactualEngine(store, scorer)
    result = engine.run_counterfactual(trade_id, CounterfactualScenario(
        name='Wider stop', overrides={'stop_loss': 90.0}))
    if result.ok:
        print(result.value.improvement_r_vs_actual)

    presets = engine.run_all_preset_scenarios(trade_id)
    optimal = engine.find_optimal_exit(trade_id)
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.errors import DataUnavailableError, ValidationError
from core.results import Result
from core.simulation.exit_simulator import ExitRules, simulate_exit
from core.trade_lifecycle.models import PriceBar, Trade, TradeStatus
from core.trade_lifecycle.trade_store import TradeStore

logger = logging.getLogger(__name__)

DEFAULT_RISK_FRACTION = 0.05
PLAN_FIELDS = ('stop_loss', 'tp1', 'tp2', 'tp3')


@dataclass(frozen=True)
class CounterfactualScenario:
    """Named set of exit-rule overrides."""
    name: str
    overrides: Dict[str, Any] = field(default_factory=dict)
    description: str = ''

    def rules_for(self, trade: Trade) -> ExitRules:
        """Trade plan with this scenario's overrides applied."""
        values = {name: getattr(trade, name) for name in PLAN_FIELDS}
        values.update(self.overrides)
        return ExitRules.from_dict(values)


@dataclass
class CounterfactualResult:
    """Outcome of one scenario replayed over one trade."""
    trade_id: str
    scenario_name: str
    rules: Dict[str, Any]
    exit_date: date
    exit_price: float
    exit_reason: str
    realized_pnl: float
    realized_pnl_percent: float
    realized_r: float
    holding_days: int
    improvement_vs_actual: float
    improvement_r_vs_actual: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'scenario_name': self.scenario_name,
            'rules': dict(self.rules),
            'exit_date': self.exit_date.isoformat(),
            'exit_price': round(self.exit_price, 4),
            'exit_reason': self.exit_reason,
            'realized_pnl': round(self.realized_pnl, 2),
            'realized_pnl_percent': round(self.realized_pnl_percent, 2),
            'realized_r': round(self.realized_r, 3),
            'holding_days': self.holding_days,
            'improvement_vs_actual': round(self.improvement_vs_actual, 2),
            'improvement_r_vs_actual': round(self.improvement_r_vs_actual, 3),
        }


@dataclass
class OptimalExitResult:
    """Best exit achievable in hindsight (sell at the highest high)."""
    trade_id: str
    optimal_exit_date: date
    optimal_exit_price: float
    max_possible_pnl: float
    max_possible_pnl_percent: float
    max_possible_r: float
    mfe_capture_percent: float
    actual_vs_optimal_gap: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'optimal_exit_date': self.optimal_exit_date.isoformat(),
            'optimal_exit_price': round(self.optimal_exit_price, 4),
            'max_possible_pnl': round(self.max_possible_pnl, 2),
            'max_possible_pnl_percent': round(self.max_possible_pnl_percent, 2),
            'max_possible_r': round(self.max_possible_r, 3),
            'mfe_capture_percent': round(self.mfe_capture_percent, 1),
            'actual_vs_optimal_gap': round(self.actual_vs_optimal_gap, 3),
        }


def generate_preset_scenarios(trade: Trade) -> List[CounterfactualScenario]:
    """
    Standard what-if set for a trade.

    Stop variations are only offered when the trade had a stop. Without one,
    R-based targets assume a risk of 5% of entry.
    """
    entry = trade.entry_price
    risk = trade.risk_per_share or entry * DEFAULT_RISK_FRACTION
    scenarios = []

    if trade.stop_loss is not None:
        scenarios.append(CounterfactualScenario(
            'Tighter Stop (0.5R)', {'stop_loss': entry - risk * 0.5},
            'What if stop loss was half the distance?',
        ))
        scenarios.append(CounterfactualScenario(
            'Wider Stop (2R)', {'stop_loss': entry - risk * 2},
            'What if stop loss was twice the distance?',
        ))

    scenarios += [
        CounterfactualScenario(
            '2R Target Only', {'tp1': entry + risk * 2, 'tp2': None, 'tp3': None},
            'Exit at 2R with no partials',
        ),
        CounterfactualScenario(
            '3R Target Only', {'tp1': entry + risk * 3, 'tp2': None, 'tp3': None},
            'Exit at 3R with no partials',
        ),
        CounterfactualScenario(
            '10% Trailing Stop', {'trailing_stop_percent': 10.0},
            'Use 10% trailing stop from highs',
        ),
        CounterfactualScenario(
            '15% Trailing (5% activation)',
            {'trailing_stop_percent': 15.0, 'trailing_stop_activation': 5.0},
            'Trailing stop activates after 5% gain',
        ),
        CounterfactualScenario(
            '10 Day Hold', {'max_holding_days': 10},
            'Force exit after 10 trading days',
        ),
        CounterfactualScenario(
            '20 Day Hold', {'max_holding_days': 20},
            'Force exit after 20 trading days',
        ),
    ]
    return scenarios


def _actual_outcome(trade: Trade) -> Tuple[float, float]:
    """Realized (pnl, R) so far; partial fills count for unclosed trades."""
    if trade.status == TradeStatus.CLOSED:
        return trade.total_realized_pnl or 0.0, trade.realized_r or 0.0
    pnl = sum(e.pnl for e in trade.partial_exits)
    return pnl, 0.0


class CounterfactualEngine:
    """Scenario replays over stored trades and their price history."""

    def __init__(self, store: TradeStore, scorer=None, max_workers: int = 4):
        """
        Args:
            store: Trade store holding trades and their daily price history
            scorer: LogisticScorer for scenarios with a model_exit_threshold
            max_workers: Thread pool size for run_batch
        """
        self.store = store
        self.scorer = scorer
        self.max_workers = max_workers

    def _load(self, trade_id: str) -> Result[Tuple[Trade, List[PriceBar]]]:
        trade = self.store.get_trade(trade_id)
        if trade is None:
            return Result.failure(f"Trade {trade_id} not found")
        bars = [
            p.to_bar() for p in self.store.get_price_history(trade_id)
            if p.date >= trade.entry_date
        ]
        if not bars:
            return Result.failure(f"No price history available for {trade_id}")
        return Result.success((trade, bars))

    def _replay(self, trade: Trade, bars: Sequence[PriceBar], scenario: CounterfactualScenario) -> CounterfactualResult:
        rules = scenario.rules_for(trade)
        simulated = simulate_exit(bars, trade.entry_price, rules, scorer=self.scorer)

        move = simulated.exit_price - trade.entry_price
        pnl = move * trade.entry_shares
        risk = trade.risk_per_share
        if not risk and rules.stop_loss is not None:
            risk = trade.entry_price - rules.stop_loss
        realized_r = move / risk if risk and risk > 0 else 0.0

        actual_pnl, actual_r = _actual_outcome(trade)
        return CounterfactualResult(
            trade_id=trade.trade_id,
            scenario_name=scenario.name,
            rules=rules.to_dict(),
            exit_date=simulated.exit_date,
            exit_price=simulated.exit_price,
            exit_reason=simulated.exit_reason.value,
            realized_pnl=pnl,
            realized_pnl_percent=move / trade.entry_price * 100,
            realized_r=realized_r,
            holding_days=simulated.holding_days,
            improvement_vs_actual=pnl - actual_pnl,
            improvement_r_vs_actual=realized_r - actual_r,
        )

    def run_counterfactual(self, trade_id: str, scenario: CounterfactualScenario) -> Result[CounterfactualResult]:
        """
        Replay one scenario.

        Returns:
            Failed Result when the trade or its price history is missing

        Raises:
            ValidationError: the scenario produces malformed rules
        """
        loaded = self._load(trade_id)
        if not loaded.ok:
            return Result.failure(loaded.error)
        trade, bars = loaded.value
        result = self._replay(trade, bars, scenario)
        logger.debug(
            f"{trade_id} [{scenario.name}]: {result.exit_reason} @ {result.exit_price:.2f} "
            f"R={result.realized_r:.2f}"
        )
        return Result.success(result)

    def compare_scenarios(
        self,
        trade_id: str,
        scenarios: Sequence[CounterfactualScenario],
    ) -> Result[List[CounterfactualResult]]:
        """All scenarios for one trade, best realized R first."""
        loaded = self._load(trade_id)
        if not loaded.ok:
            return Result.failure(loaded.error)
        trade, bars = loaded.value
        results = [self._replay(trade, bars, s) for s in scenarios]
        results.sort(key=lambda r: r.realized_r, reverse=True)
        return Result.success(results)

    def run_all_preset_scenarios(self, trade_id: str) -> Result[Dict[str, Any]]:
        """
        Preset scenarios for a trade.

        Returns:
            Result with {'scenarios': [...], 'best_scenario': CounterfactualResult | None}
        """
        trade = self.store.get_trade(trade_id)
        if trade is None:
            return Result.failure(f"Trade {trade_id} not found")
        compared = self.compare_scenarios(trade_id, generate_preset_scenarios(trade))
        if not compared.ok:
            return Result.failure(compared.error)
        return Result.success({
            'scenarios': compared.value,
            'best_scenario': compared.value[0] if compared.value else None,
        })

    def find_optimal_exit(self, trade_id: str) -> Result[OptimalExitResult]:
        """Hindsight-optimal exit at the highest recorded high."""
        loaded = self._load(trade_id)
        if not loaded.ok:
            return Result.failure(loaded.error)
        trade, bars = loaded.value

        max_high, max_high_date = trade.entry_price, trade.entry_date
        for bar in bars:
            if bar.high > max_high:
                max_high, max_high_date = bar.high, bar.date

        move = max_high - trade.entry_price
        risk = trade.risk_per_share
        max_r = move / risk if risk and risk > 0 else 0.0

        capture = 0.0
        if trade.blended_exit_price is not None and move > 0:
            capture = (trade.blended_exit_price - trade.entry_price) / move * 100

        return Result.success(OptimalExitResult(
            trade_id=trade_id,
            optimal_exit_date=max_high_date,
            optimal_exit_price=max_high,
            max_possible_pnl=move * trade.entry_shares,
            max_possible_pnl_percent=move / trade.entry_price * 100,
            max_possible_r=max_r,
            mfe_capture_percent=capture,
            actual_vs_optimal_gap=max_r - (trade.realized_r or 0.0),
        ))

    def run_batch(
        self,
        trade_ids: Sequence[str],
        scenario: CounterfactualScenario,
    ) -> Tuple[Dict[str, CounterfactualResult], List[Dict[str, str]]]:
        """
        One scenario over many trades in parallel.

        Returns:
            (results by trade id, [{'trade_id', 'error'}] for skipped trades)
        """
        results: Dict[str, CounterfactualResult] = {}
        errors: List[Dict[str, str]] = []
        if not trade_ids:
            return results, errors

        workers = min(self.max_workers, len(trade_ids))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.run_counterfactual, trade_id, scenario): trade_id
                for trade_id in trade_ids
            }
            for future in as_completed(futures):
                trade_id = futures[future]
                try:
                    outcome = future.result()
                except (ValidationError, DataUnavailableError) as e:
                    logger.warning(f"Counterfactual failed for {trade_id}: {e}")
                    errors.append({'trade_id': trade_id, 'error': str(e)})
                    continue
                if outcome.ok:
                    results[trade_id] = outcome.value
                else:
                    errors.append({'trade_id': trade_id, 'error': outcome.error})

        logger.info(
            f"Batch [{scenario.name}]: {len(results)} simulated, {len(errors)} skipped"
        )
        return results, errors
