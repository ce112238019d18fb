"""
Tests for scripts/outcome_lab_cli.py

Runs main() in-process against a temporary store; settings point every
path into tmp_path so nothing touches the project directories.
"""

import json
from datetime import date

import pytest

from config.settings import EngineSettings
from core.trade_lifecycle import TradeStore, create_trade, record_exit
from core.trade_lifecycle.price_tracker import build_price_point
from scripts.outcome_lab_cli import build_parser, main


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(
        model_path=tmp_path / 'model.json',
        store_path=tmp_path / 'store.json',
        audit_log_dir=tmp_path / 'logs',
    )


@pytest.fixture
def store_path(tmp_path):
    return str(tmp_path / 'cli_store.json')


def run(settings, store_path, *argv):
    return main(['--store', store_path, *argv], settings=settings)


def _only_trade(store_path):
    [trade] = TradeStore(store_path).get_trades()
    return trade


# =============================================================================
# PARSER
# =============================================================================


class TestParser:
    """Tests for build_parser() / main() dispatch."""

    def test_no_command(self, settings, capsys):
        assert main([], settings=settings) == 1
        assert 'usage' in capsys.readouterr().out.lower()

    def test_subcommands_registered(self):
        args = build_parser().parse_args(['reconcile', '--threshold', '0.6', '--json'])
        assert args.command == 'reconcile'
        assert args.threshold == 0.6
        assert args.json


# =============================================================================
# TRADE JOURNAL
# =============================================================================


class TestJournalCommands:
    """open / exit / predict."""

    def test_open_and_exit(self, settings, store_path, capsys):
        assert run(settings, store_path, 'open', 'aapl', '--date', '2024-03-01',
                   '--price', '100', '--shares', '10', '--stop', '95') == 0
        trade = _only_trade(store_path)
        assert trade.ticker == 'AAPL'
        assert 'Opened' in capsys.readouterr().out

        assert run(settings, store_path, 'exit', trade.trade_id, '--date', '2024-03-05',
                   '--price', '110', '--shares', '10', '--reason', 'tp1') == 0

        closed = _only_trade(store_path)
        assert closed.status.value == 'CLOSED'
        assert closed.total_realized_pnl == pytest.approx(100.0)
        assert 'P&L $+100.00' in capsys.readouterr().out
        assert any(settings.audit_log_dir.glob('audit_*.csv'))

    def test_invalid_open_reports_error(self, settings, store_path, capsys):
        """Validation errors print and return 1."""
        assert run(settings, store_path, 'open', 'AAPL', '--date', '2024-03-01',
                   '--price', '100', '--shares', '10', '--stop', '101') == 1
        assert capsys.readouterr().out.startswith('Error:')

    def test_exit_unknown_trade(self, settings, store_path, capsys):
        assert run(settings, store_path, 'exit', 'missing', '--date', '2024-03-05',
                   '--price', '110', '--shares', '10') == 1
        assert 'not found' in capsys.readouterr().out

    def test_predict(self, settings, store_path):
        assert run(settings, store_path, 'predict', 'msft', '--date', '2024-03-01',
                   '--probability', '0.72', '--model-version', 'v1') == 0
        [log] = TradeStore(store_path).get_prediction_logs()
        assert log.ticker == 'MSFT'
        assert log.predicted_probability == 0.72
        assert log.model_version == 'v1'


# =============================================================================
# ANALYSIS
# =============================================================================


class TestAnalysisCommands:
    """train / counterfactual / optimal / reconcile / stats."""

    @pytest.fixture
    def store_with_history(self, store_path, bars_factory):
        """One closed trade with a rally-and-fade price history."""
        store = TradeStore(store_path)
        trade = create_trade('AAPL', date(2024, 1, 2), 100.0, 10, stop_loss=95.0,
                             tp1=110.0, trade_id='CLI1')
        closes = [100 + 2 * d for d in range(16)] + [130 - 4 * d / 3 for d in range(1, 16)]
        store.add_trade(trade)
        store.upsert_price_points(
            [build_price_point(trade, bar, 10) for bar in bars_factory(closes)]
        )
        return store

    def test_train_writes_model(self, settings, store_path, store_with_history, tmp_path, capsys):
        output = tmp_path / 'trained.json'
        assert run(settings, store_path, 'train', '--iterations', '50', '--output', str(output)) == 0

        assert output.exists()
        out = capsys.readouterr().out
        assert 'Built 30 training examples' in out
        assert '"auc"' in out

    def test_train_without_history(self, settings, store_path, capsys):
        """No examples is a validation error."""
        assert run(settings, store_path, 'train') == 1
        assert 'No training examples' in capsys.readouterr().out

    def test_counterfactual(self, settings, store_path, store_with_history, capsys):
        assert run(settings, store_path, 'counterfactual', 'CLI1') == 0
        out = capsys.readouterr().out
        assert 'COUNTERFACTUAL SCENARIOS: CLI1' in out
        assert 'Best:' in out

    def test_counterfactual_unknown_trade(self, settings, store_path, capsys):
        assert run(settings, store_path, 'counterfactual', 'missing') == 1
        assert 'not found' in capsys.readouterr().out

    def test_optimal(self, settings, store_path, store_with_history, capsys):
        assert run(settings, store_path, 'optimal', 'CLI1') == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload['optimal_exit_price'] == 131.0

    def test_reconcile_json(self, settings, store_path, capsys):
        assert run(settings, store_path, 'reconcile', '--json') == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload['total_trades'] == 0
        assert payload['threshold_recommendation']['current_threshold'] == 0.50

    def test_reconcile_text(self, settings, store_path, capsys):
        assert run(settings, store_path, 'reconcile', '--threshold', '0.6') == 0
        out = capsys.readouterr().out
        assert 'PREDICTION RECONCILIATION' in out
        assert 'Threshold: 0.60 -> 0.60 (low)' in out

    @pytest.fixture
    def store_with_closed_trades(self, store_path):
        """One +2R winner and one -1R loser."""
        store = TradeStore(store_path)
        win = create_trade('AAPL', date(2024, 1, 2), 100.0, 10, stop_loss=95.0, trade_id='W1')
        record_exit(win, date(2024, 1, 9), 110.0, 10, 'TP1')
        loss = create_trade('MSFT', date(2024, 1, 3), 50.0, 10, stop_loss=48.0, trade_id='L1')
        record_exit(loss, date(2024, 1, 5), 48.0, 10, 'STOP_LOSS')
        store.add_trade(win)
        store.add_trade(loss)
        return store

    def test_stats_json(self, settings, store_path, store_with_closed_trades, capsys):
        """Summary, distributions and segments are reported as JSON."""
        assert run(settings, store_path, 'stats', '--json', '--by', 'exit_reason') == 0
        payload = json.loads(capsys.readouterr().out)

        assert payload['summary']['total_trades'] == 2
        assert payload['summary']['win_rate'] == 0.5
        assert payload['summary']['profit_factor'] == 5.0
        assert payload['summary']['expectancy'] == 40.0
        assert payload['distributions']['realized_r']['count'] == 2
        assert payload['distributions']['mfe_utilization'] is None
        assert [s['value'] for s in payload['segments']] == ['STOP_LOSS', 'TP1']

    def test_stats_entry_window(self, settings, store_path, store_with_closed_trades, capsys):
        """--since drops trades entered earlier."""
        assert run(settings, store_path, 'stats', '--json', '--since', '2024-01-03') == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload['summary']['total_trades'] == 1
        assert payload['summary']['losing_trades'] == 1

    def test_stats_text(self, settings, store_path, store_with_closed_trades, capsys):
        """Plain-text report shows the headline numbers."""
        assert run(settings, store_path, 'stats') == 0
        out = capsys.readouterr().out
        assert 'TRADE STATISTICS' in out
        assert 'Win rate: 50.0% | Profit factor: 5.00 | Expectancy: $+40.00' in out
