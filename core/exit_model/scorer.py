"""
Logistic exit scorer.

probability = sigmoid(intercept + sum(w_k * (x_k - mean_k) / std_k))

Features whose training std is <= 1e-4 contribute nothing. The sigmoid is
clamped at |z| > 500.

Usage:
    scorer = LogisticScorer(load_coefficients(path))
    signal = scorer.generate_exit_signal(features, threshold=0.55)
    if signal.should_exit:
        ...
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple, Union

from core.exit_model.coefficients import ModelCoefficients
from core.exit_model.features import ExitFeatureVector

logger = logging.getLogger(__name__)

MIN_STD = 1e-4
MIN_REASON_CONTRIBUTION = 0.05
TOP_REASONS = 3

FeatureInput = Union[ExitFeatureVector, Mapping[str, float]]


def sigmoid(z: float) -> float:
    """Logistic function, clamped to exactly 0 / 1 beyond |z| > 500."""
    if z < -500:
        return 0.0
    if z > 500:
        return 1.0
    return 1.0 / (1.0 + math.exp(-z))


def _confidence_label(probability: float) -> str:
    if probability > 0.70:
        return 'very_high'
    if probability > 0.60:
        return 'high'
    if probability > 0.50:
        return 'medium'
    return 'low'


@dataclass
class ExitSignal:
    """Exit decision for one position on one day."""
    should_exit: bool
    exit_probability: float
    confidence: str
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'should_exit': self.should_exit,
            'exit_probability': round(self.exit_probability, 4),
            'confidence': self.confidence,
            'reasons': list(self.reasons),
        }


class LogisticScorer:
    """
    Scores ExitFeatureVectors against injected, immutable coefficients.

    Holds no mutable state, so one instance can be shared across threads.
    """

    def __init__(self, coefficients: ModelCoefficients):
        self.coefficients = coefficients

    @property
    def version(self) -> str:
        return self.coefficients.version

    def _as_vector(self, features: FeatureInput) -> ExitFeatureVector:
        if isinstance(features, ExitFeatureVector):
            return features
        return ExitFeatureVector.from_dict(features)

    def contributions(self, features: FeatureInput) -> Dict[str, float]:
        """Per-feature ``weight * normalized_value`` (zero-variance features omitted)."""
        vector = self._as_vector(features)
        coef = self.coefficients
        result = {}
        for name, weight in coef.weights.items():
            std = coef.feature_stds[name]
            if std <= MIN_STD:
                continue
            normalized = (getattr(vector, name) - coef.feature_means[name]) / std
            result[name] = weight * normalized
        return result

    def predict_probability(self, features: FeatureInput) -> float:
        """Exit probability in [0, 1]."""
        z = self.coefficients.intercept + sum(self.contributions(features).values())
        return sigmoid(z)

    def explain(self, features: FeatureInput, top_n: int = TOP_REASONS) -> List[Tuple[str, float]]:
        """Features ranked by absolute contribution, largest first."""
        ranked = sorted(self.contributions(features).items(), key=lambda kv: abs(kv[1]), reverse=True)
        return ranked[:top_n]

    def generate_exit_signal(self, features: FeatureInput, threshold: float = 0.50) -> ExitSignal:
        """
        Exit decision with a human-readable explanation.

        Reasons: verdict line, up to three dominant features
        (|contribution| > 0.05), then fixed heuristic callouts.
        """
        vector = self._as_vector(features)
        probability = self.predict_probability(vector)
        should_exit = probability >= threshold

        verdict = 'above threshold' if should_exit else 'below threshold - HOLD'
        reasons = [f"Exit probability: {probability * 100:.1f}% ({verdict})"]

        for name, contribution in self.explain(vector):
            if abs(contribution) <= MIN_REASON_CONTRIBUTION:
                continue
            direction = 'signals EXIT' if contribution > 0 else 'signals HOLD'
            reasons.append(f"{name}: {getattr(vector, name):.2f} ({direction})")

        if vector.holding_days >= 20:
            reasons.append(f"Held {vector.holding_days:.0f} days - alpha typically decays after 20 days")
        if vector.unrealized_r >= 2:
            reasons.append(f"Up {vector.unrealized_r:.1f}R - consider locking gains")
        if vector.return_from_high < -5:
            reasons.append(f"{vector.return_from_high:.1f}% off the high - momentum fading")
        if vector.rsi_14 > 70:
            reasons.append(f"RSI {vector.rsi_14:.0f} - overbought")

        return ExitSignal(
            should_exit=should_exit,
            exit_probability=probability,
            confidence=_confidence_label(probability),
            reasons=reasons,
        )
