"""
Exit Model Training

Offline fitting of the logistic exit model:

1. label_exit_points() walks each historical trade day by day and labels
   the day EXIT (1) when the close is within 0.3R of the best high still to
   come, HOLD (0) otherwise.
2. train_exit_model() z-scores the features, then runs class-balanced batch
   gradient descent with momentum, cosine learning-rate decay and L2.
3. evaluate_model() reports accuracy / precision / recall / F1 / AUC and a
   calibration error on held-out examples.

Usage:
    examples = []
    for trade in historical:
        examples += label_exit_points(trade.ticker, bars, entry_idx, entry, stop)
    coefficients = train_exit_model(examples, version='2024.06')
    save_coefficients(coefficients, settings.model_path)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.calibration.evaluation import evaluate_calibration
from core.calibration.models import LabeledPrediction
from core.errors import ValidationError
from core.exit_model.coefficients import ModelCoefficients
from core.exit_model.features import (
    FEATURE_NAMES,
    ExitFeatureVector,
    extract_exit_features,
)
from core.exit_model.scorer import LogisticScorer
from core.trade_lifecycle.models import PriceBar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingExample:
    """One labeled observation day of a historical trade."""
    ticker: str
    observation_date: date
    holding_days: int
    features: ExitFeatureVector
    label: int                 # 1 = EXIT, 0 = HOLD
    unrealized_r: float
    max_future_r: float


def label_exit_points(
    ticker: str,
    bars: Sequence[PriceBar],
    entry_idx: int,
    entry_price: float,
    stop_loss: float,
    max_days: int = 30,
    horizon: int = 45,
    upside_threshold: float = 0.3,
    benchmark_bars: Optional[Sequence[PriceBar]] = None,
) -> List[TrainingExample]:
    """
    Labeled examples for days 1..max_days after entry.

    Args:
        ticker: Symbol (carried on examples for reporting)
        bars: Daily bars including warm-up history before entry
        entry_idx: Index of the entry bar in ``bars``
        entry_price: Fill price at entry
        stop_loss: Initial stop, must be below entry
        max_days: Last holding day to emit an example for
        horizon: How far ahead (days from entry) the future peak is searched
        upside_threshold: EXIT when remaining upside <= this many R

    Raises:
        ValidationError: non-positive risk distance
    """
    risk = entry_price - stop_loss
    if risk <= 0:
        raise ValidationError(f"{ticker}: non-positive risk distance ({entry_price} vs stop {stop_loss})")

    examples = []
    last_idx = min(len(bars) - 1, entry_idx + horizon)
    for day in range(1, max_days + 1):
        current_idx = entry_idx + day
        if current_idx > last_idx:
            break

        unrealized_r = (bars[current_idx].close - entry_price) / risk
        future_highs = [b.high for b in bars[current_idx + 1:last_idx + 1]]
        max_future_r = max([unrealized_r] + [(h - entry_price) / risk for h in future_highs])
        label = 1 if max_future_r - unrealized_r <= upside_threshold else 0

        examples.append(TrainingExample(
            ticker=ticker,
            observation_date=bars[current_idx].date,
            holding_days=day,
            features=extract_exit_features(
                bars, entry_idx, current_idx, entry_price, stop_loss, benchmark_bars
            ),
            label=label,
            unrealized_r=unrealized_r,
            max_future_r=max_future_r,
        ))
    return examples


def _sigmoid(z: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(z, -500, 500)))


def _auc(probabilities: np.ndarray, labels: np.ndarray) -> float:
    """Trapezoidal ROC AUC. 0.5 when only one class is present."""
    positives = labels.sum()
    negatives = len(labels) - positives
    if positives == 0 or negatives == 0:
        return 0.5
    order = np.argsort(-probabilities, kind='mergesort')
    sorted_labels = labels[order]
    tpr = np.concatenate([[0.0], np.cumsum(sorted_labels) / positives])
    fpr = np.concatenate([[0.0], np.cumsum(1 - sorted_labels) / negatives])
    return float(np.sum((fpr[1:] - fpr[:-1]) * (tpr[1:] + tpr[:-1]) / 2))


def evaluate_model(examples: Sequence[TrainingExample], coefficients: ModelCoefficients,
                   threshold: float = 0.5) -> Dict[str, float]:
    """
    Classification and calibration metrics of ``coefficients`` on ``examples``.

    Returns:
        Dict with accuracy, precision, recall, f1, auc, calibration_error
        (ECE in percentage points). All zeros for an empty set.
    """
    if not examples:
        return {'accuracy': 0.0, 'precision': 0.0, 'recall': 0.0,
                'f1': 0.0, 'auc': 0.0, 'calibration_error': 0.0}

    scorer = LogisticScorer(coefficients)
    probabilities = np.array([scorer.predict_probability(e.features) for e in examples])
    labels = np.array([e.label for e in examples], dtype=float)
    predicted = (probabilities >= threshold).astype(float)

    tp = float(np.sum((predicted == 1) & (labels == 1)))
    fp = float(np.sum((predicted == 1) & (labels == 0)))
    fn = float(np.sum((predicted == 0) & (labels == 1)))

    precision = tp / (tp + fp) if tp + fp > 0 else 0.0
    recall = tp / (tp + fn) if tp + fn > 0 else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0

    calibration = evaluate_calibration([
        LabeledPrediction(probability=p * 100, label=int(y))
        for p, y in zip(probabilities, labels)
    ])

    return {
        'accuracy': float(np.mean(predicted == labels)),
        'precision': precision,
        'recall': recall,
        'f1': f1,
        'auc': _auc(probabilities, labels),
        'calibration_error': calibration.expected_calibration_error,
    }


def train_exit_model(
    examples: Sequence[TrainingExample],
    iterations: int = 1000,
    learning_rate: float = 0.01,
    regularization: float = 0.01,
    momentum: float = 0.9,
    validation_split: float = 0.2,
    version: Optional[str] = None,
    seed: int = 42,
) -> ModelCoefficients:
    """
    Fit logistic coefficients over the full feature schema.

    Classes are weighted inversely to their frequency so a rare EXIT label
    still moves the weights.

    Raises:
        ValidationError: no examples or only one class present
    """
    if not examples:
        raise ValidationError("No training examples")
    labels_all = np.array([e.label for e in examples], dtype=float)
    if labels_all.min() == labels_all.max():
        raise ValidationError("Training examples contain a single class; cannot fit")

    rng = np.random.default_rng(seed)
    order = rng.permutation(len(examples))
    n_val = int(len(examples) * validation_split)
    val_idx, train_idx = order[:n_val], order[n_val:]
    train = [examples[i] for i in train_idx]
    validation = [examples[i] for i in val_idx]

    X = np.array([e.features.to_array() for e in train])
    y = np.array([e.label for e in train], dtype=float)

    means = X.mean(axis=0)
    stds = X.std(axis=0)
    stds[stds == 0] = 1.0
    Xn = (X - means) / stds

    n = len(y)
    n_exit = y.sum()
    n_hold = n - n_exit
    exit_weight = n / (2 * n_exit) if n_exit else 1.0
    hold_weight = n / (2 * n_hold) if n_hold else 1.0
    sample_weights = np.where(y == 1, exit_weight, hold_weight)

    weights = np.zeros(X.shape[1])
    intercept = 0.0
    weight_velocity = np.zeros_like(weights)
    intercept_velocity = 0.0

    for iteration in range(iterations):
        lr = learning_rate * 0.5 * (1 + np.cos(np.pi * iteration / iterations))
        error = (_sigmoid(Xn @ weights + intercept) - y) * sample_weights

        grad_w = Xn.T @ error / n + regularization * weights
        grad_b = error.sum() / n

        weight_velocity = momentum * weight_velocity + lr * grad_w
        intercept_velocity = momentum * intercept_velocity + lr * grad_b
        weights -= weight_velocity
        intercept -= intercept_velocity

        if iteration % 200 == 0:
            p = np.clip(_sigmoid(Xn @ weights + intercept), 1e-10, 1 - 1e-10)
            loss = -np.mean(y * np.log(p) + (1 - y) * np.log(1 - p))
            logger.debug(f"Iteration {iteration}: loss={loss:.4f} lr={lr:.6f}")

    provisional = ModelCoefficients(
        intercept=float(intercept),
        weights=dict(zip(FEATURE_NAMES, weights.tolist())),
        feature_means=dict(zip(FEATURE_NAMES, means.tolist())),
        feature_stds=dict(zip(FEATURE_NAMES, stds.tolist())),
    )
    metrics = evaluate_model(validation or train, provisional)

    coefficients = ModelCoefficients(
        intercept=provisional.intercept,
        weights=provisional.weights,
        feature_means=provisional.feature_means,
        feature_stds=provisional.feature_stds,
        version=version or datetime.now().strftime('exit-%Y%m%d-%H%M%S'),
        trained_at=datetime.now().isoformat(),
        training_samples=len(train),
        validation_accuracy=metrics['accuracy'],
        metrics={k: metrics[k] for k in ('precision', 'recall', 'f1', 'auc')},
    )
    logger.info(
        f"Trained exit model {coefficients.version} on {len(train)} examples: "
        f"accuracy={metrics['accuracy']:.3f} auc={metrics['auc']:.3f} f1={metrics['f1']:.3f}"
    )
    return coefficients
