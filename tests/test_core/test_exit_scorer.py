"""
Tests for core/exit_model/coefficients.py and core/exit_model/scorer.py

Covers load-time schema validation of model coefficients and the logistic
scorer's probability, explanation and exit signal output.
"""

import json
import math
import pytest

from core.errors import ConfigurationError, ValidationError
from core.exit_model.coefficients import (
    ModelCoefficients,
    load_coefficients,
    save_coefficients,
)
from core.exit_model.features import FEATURE_NAMES, ExitFeatureVector
from core.exit_model.scorer import LogisticScorer, sigmoid


def _vector(**overrides):
    values = {name: 0.0 for name in FEATURE_NAMES}
    values.update({'holding_days': 10.0, 'unrealized_r': 1.0, 'rsi_14': 50.0})
    values.update(overrides)
    return ExitFeatureVector.from_dict(values)


# =============================================================================
# COEFFICIENTS
# =============================================================================


class TestModelCoefficients:
    """Tests for ModelCoefficients validation."""

    def test_unknown_feature_rejected(self):
        """A weight for a feature outside the schema fails at construction."""
        with pytest.raises(ConfigurationError, match='unknown features'):
            ModelCoefficients(
                intercept=0.0,
                weights={'sentiment_score': 1.0},
                feature_means={'sentiment_score': 0.0},
                feature_stds={'sentiment_score': 1.0},
            )

    def test_missing_stats_rejected(self):
        """Weighted features need both a mean and a std."""
        with pytest.raises(ConfigurationError, match='mean/std'):
            ModelCoefficients(
                intercept=0.0,
                weights={'holding_days': 1.0},
                feature_means={'holding_days': 0.0},
                feature_stds={},
            )

    def test_non_finite_rejected(self):
        """NaN coefficients fail validation."""
        with pytest.raises(ConfigurationError, match='non-finite'):
            ModelCoefficients(
                intercept=math.nan,
                weights={},
                feature_means={},
                feature_stds={},
            )

    def test_weights_are_read_only(self, sample_coefficients):
        """Coefficient mappings cannot be modified after load."""
        with pytest.raises(TypeError):
            sample_coefficients.weights['holding_days'] = 99.0

    def test_from_dict_accepts_camel_case(self):
        """Records written with camelCase keys still load."""
        coefficients = ModelCoefficients.from_dict({
            'intercept': 0.5,
            'weights': {'rsi_14': 0.1},
            'featureMeans': {'rsi_14': 50.0},
            'featureStds': {'rsi_14': 10.0},
            'trainingSamples': 120,
        })
        assert coefficients.feature_means['rsi_14'] == 50.0
        assert coefficients.training_samples == 120

    def test_from_dict_missing_fields(self):
        """Records without weights are rejected."""
        with pytest.raises(ConfigurationError, match='missing fields'):
            ModelCoefficients.from_dict({'intercept': 0.0})


class TestLoadSave:
    """Tests for load_coefficients() / save_coefficients()."""

    def test_round_trip(self, sample_coefficients, tmp_path):
        """Saved coefficients load back identically."""
        path = save_coefficients(sample_coefficients, tmp_path / 'models' / 'exit.json')
        loaded = load_coefficients(path)
        assert loaded.to_dict() == sample_coefficients.to_dict()

    def test_missing_file_names_training_command(self, tmp_path):
        """A missing model file explains how to create one."""
        with pytest.raises(ConfigurationError, match='Re-run training'):
            load_coefficients(tmp_path / 'absent.json')

    def test_invalid_json(self, tmp_path):
        """Malformed JSON is a configuration error."""
        path = tmp_path / 'exit.json'
        path.write_text('{"intercept": ')
        with pytest.raises(ConfigurationError, match='not valid JSON'):
            load_coefficients(path)

    def test_schema_mismatch_fails_at_load(self, tmp_path):
        """Unknown features in the file are caught at load time."""
        path = tmp_path / 'exit.json'
        path.write_text(json.dumps({
            'intercept': 0.0,
            'weights': {'bogus': 1.0},
            'feature_means': {'bogus': 0.0},
            'feature_stds': {'bogus': 1.0},
        }))
        with pytest.raises(ConfigurationError):
            load_coefficients(path)


# =============================================================================
# SCORER
# =============================================================================


class TestSigmoid:
    """Tests for sigmoid()."""

    def test_midpoint(self):
        assert sigmoid(0.0) == 0.5

    def test_clamped(self):
        """Extreme inputs clamp to exactly 0 and 1."""
        assert sigmoid(-501) == 0.0
        assert sigmoid(501) == 1.0


class TestLogisticScorer:
    """Tests for LogisticScorer."""

    def test_probability_at_means_is_intercept(self, sample_coefficients):
        """Features at their training means leave only the intercept."""
        scorer = LogisticScorer(sample_coefficients)
        assert scorer.predict_probability(_vector()) == pytest.approx(sigmoid(-1.0))

    def test_zero_std_feature_ignored(self, sample_coefficients):
        """A feature with std <= 1e-4 contributes nothing."""
        scorer = LogisticScorer(sample_coefficients)
        assert 'rsi_14' not in scorer.contributions(_vector(rsi_14=90.0))

    def test_probability_rises_with_holding_days(self, sample_coefficients):
        """Positive weights push exit probability up."""
        scorer = LogisticScorer(sample_coefficients)
        assert (scorer.predict_probability(_vector(holding_days=25.0))
                > scorer.predict_probability(_vector(holding_days=5.0)))

    def test_accepts_mapping(self, sample_coefficients):
        """Plain mappings are validated against the schema."""
        scorer = LogisticScorer(sample_coefficients)
        values = _vector().to_dict()
        assert scorer.predict_probability(values) == pytest.approx(sigmoid(-1.0))
        values['extra'] = 1.0
        with pytest.raises(ValidationError):
            scorer.predict_probability(values)

    def test_explain_ranks_by_magnitude(self, sample_coefficients):
        """explain() lists the largest absolute contribution first."""
        scorer = LogisticScorer(sample_coefficients)
        ranked = scorer.explain(_vector(holding_days=20.0, unrealized_r=0.0))
        assert ranked[0][0] == 'holding_days'
        assert ranked[0][1] == pytest.approx(3.0)
        assert ranked[1] == ('unrealized_r', pytest.approx(-0.8))

    def test_exit_signal_above_threshold(self, sample_coefficients):
        """High probability yields an exit with verdict and heuristics."""
        scorer = LogisticScorer(sample_coefficients)
        signal = scorer.generate_exit_signal(
            _vector(holding_days=25.0, unrealized_r=2.5, return_from_high=-6.0, rsi_14=75.0)
        )

        assert signal.should_exit is True
        assert signal.confidence == 'very_high'
        assert signal.reasons[0].startswith('Exit probability:')
        assert '(above threshold)' in signal.reasons[0]
        assert any(r.startswith('holding_days: 25.00 (signals EXIT)') for r in signal.reasons)
        assert 'Held 25 days - alpha typically decays after 20 days' in signal.reasons
        assert 'Up 2.5R - consider locking gains' in signal.reasons
        assert '-6.0% off the high - momentum fading' in signal.reasons
        assert 'RSI 75 - overbought' in signal.reasons

    def test_exit_signal_hold(self, sample_coefficients):
        """Low probability yields HOLD with a low confidence label."""
        scorer = LogisticScorer(sample_coefficients)
        signal = scorer.generate_exit_signal(_vector(holding_days=2.0, unrealized_r=0.0))

        assert signal.should_exit is False
        assert signal.confidence == 'low'
        assert '(below threshold - HOLD)' in signal.reasons[0]
        assert any('signals HOLD' in r for r in signal.reasons)

    def test_threshold_is_inclusive(self, sample_coefficients):
        """Probability equal to the threshold triggers an exit."""
        scorer = LogisticScorer(sample_coefficients)
        probability = scorer.predict_probability(_vector())
        assert scorer.generate_exit_signal(_vector(), threshold=probability).should_exit
