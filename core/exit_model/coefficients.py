"""
Exit model coefficients - the trained, immutable model artifact.

Loaded once at startup and handed to LogisticScorer (and through it to the
simulator). Validation happens here, at load time: a weight for a feature
the schema doesn't know, or a weight without its normalization stats, is a
ConfigurationError rather than a silent zero.

Usage:
    coefficients = load_coefficients(settings.model_path)
    scorer = LogisticScorer(coefficients)
"""

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from core.errors import ConfigurationError
from core.exit_model.features import FEATURE_NAMES

logger = logging.getLogger(__name__)

TRAINING_COMMAND = "python scripts/outcome_lab_cli.py train"

# Serialized files written by older tooling used camelCase keys
_KEY_ALIASES = {
    'featureMeans': 'feature_means',
    'featureStds': 'feature_stds',
    'trainedAt': 'trained_at',
    'trainingSamples': 'training_samples',
    'validationAccuracy': 'validation_accuracy',
}


def _frozen(mapping: Optional[Mapping[str, float]]) -> Mapping[str, float]:
    return MappingProxyType({k: float(v) for k, v in (mapping or {}).items()})


@dataclass(frozen=True)
class ModelCoefficients:
    """
    Logistic exit model parameters plus training metadata.

    Attributes:
        intercept: Bias term
        weights: feature name -> weight (subset of FEATURE_NAMES)
        feature_means: feature name -> training mean
        feature_stds: feature name -> training std (<= 1e-4 disables the feature)
        version: Model version string recorded on predictions
        trained_at: ISO timestamp of training
        training_samples: Number of samples used
        validation_accuracy: Accuracy on the held-out split
        metrics: precision / recall / f1 / auc on the held-out split
    """
    intercept: float
    weights: Mapping[str, float]
    feature_means: Mapping[str, float]
    feature_stds: Mapping[str, float]
    version: str = 'unversioned'
    trained_at: str = ''
    training_samples: int = 0
    validation_accuracy: float = 0.0
    metrics: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'weights', _frozen(self.weights))
        object.__setattr__(self, 'feature_means', _frozen(self.feature_means))
        object.__setattr__(self, 'feature_stds', _frozen(self.feature_stds))
        object.__setattr__(self, 'metrics', _frozen(self.metrics))
        self.validate()

    def validate(self) -> None:
        """
        Check the coefficients against the feature schema.

        Raises:
            ConfigurationError: unknown features, missing normalization stats,
                or non-finite numbers
        """
        unknown = sorted(set(self.weights) - set(FEATURE_NAMES))
        if unknown:
            raise ConfigurationError(
                f"Model {self.version} has weights for unknown features: {unknown}"
            )
        missing_stats = sorted(
            name for name in self.weights
            if name not in self.feature_means or name not in self.feature_stds
        )
        if missing_stats:
            raise ConfigurationError(
                f"Model {self.version} lacks mean/std for weighted features: {missing_stats}"
            )
        numbers = [self.intercept, *self.weights.values(),
                   *self.feature_means.values(), *self.feature_stds.values()]
        if not all(math.isfinite(v) for v in numbers):
            raise ConfigurationError(f"Model {self.version} contains non-finite coefficients")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'intercept': self.intercept,
            'weights': dict(self.weights),
            'feature_means': dict(self.feature_means),
            'feature_stds': dict(self.feature_stds),
            'version': self.version,
            'trained_at': self.trained_at,
            'training_samples': self.training_samples,
            'validation_accuracy': self.validation_accuracy,
            'metrics': dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ModelCoefficients':
        """
        Build from a serialized record.

        Raises:
            ConfigurationError: required fields missing or invalid
        """
        data = {_KEY_ALIASES.get(k, k): v for k, v in data.items()}
        required = ('intercept', 'weights', 'feature_means', 'feature_stds')
        missing = [k for k in required if k not in data]
        if missing:
            raise ConfigurationError(f"Model record missing fields: {missing}")
        try:
            return cls(
                intercept=float(data['intercept']),
                weights=data['weights'],
                feature_means=data['feature_means'],
                feature_stds=data['feature_stds'],
                version=str(data.get('version', 'unversioned')),
                trained_at=str(data.get('trained_at', '')),
                training_samples=int(data.get('training_samples', 0)),
                validation_accuracy=float(data.get('validation_accuracy', 0.0)),
                metrics=data.get('metrics') or {},
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid model record: {e}") from e


def load_coefficients(path: Union[str, Path]) -> ModelCoefficients:
    """
    Load and validate the trained model from JSON.

    Raises:
        ConfigurationError: file missing, unreadable, or inconsistent with
            the feature schema
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Exit model coefficients not found at {path}. "
            f"Re-run training to create them: {TRAINING_COMMAND}"
        )
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Exit model file {path} is not valid JSON: {e}") from e

    coefficients = ModelCoefficients.from_dict(data)
    logger.info(
        f"Loaded exit model {coefficients.version} "
        f"({len(coefficients.weights)} features, {coefficients.training_samples} samples)"
    )
    return coefficients


def save_coefficients(coefficients: ModelCoefficients, path: Union[str, Path]) -> Path:
    """Write coefficients as JSON (atomic replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix('.tmp')
    with open(temp_path, 'w') as f:
        json.dump(coefficients.to_dict(), f, indent=2)
    temp_path.replace(path)
    logger.info(f"Saved exit model {coefficients.version} to {path}")
    return path
