"""
Calibration data models.

Probabilities are expressed in percent (0-100) throughout the calibration
package; labels are 0/1.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Tuple


class LabeledPrediction(NamedTuple):
    """A predicted probability (0-100) and the realized outcome (0/1)."""
    probability: float
    label: int


@dataclass(frozen=True)
class PlattParameters:
    """p = 1 / (1 + exp(a * x + b)), x = probability / 100."""
    a: float = 1.0
    b: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {'a': self.a, 'b': self.b}


@dataclass(frozen=True)
class IsotonicModel:
    """Piecewise-linear lookup table; x ascending, y non-decreasing."""
    x: Tuple[float, ...] = ()
    y: Tuple[float, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'x', tuple(float(v) for v in self.x))
        object.__setattr__(self, 'y', tuple(float(v) for v in self.y))
        if len(self.x) != len(self.y):
            raise ValueError(f"x and y lengths differ ({len(self.x)} vs {len(self.y)})")

    @property
    def is_empty(self) -> bool:
        return len(self.x) == 0

    def to_dict(self) -> Dict[str, List[float]]:
        return {'x': list(self.x), 'y': list(self.y)}


@dataclass(frozen=True)
class EnsembleCalibrator:
    """Fixed-weight blend of Platt and isotonic outputs."""
    platt: PlattParameters
    isotonic: IsotonicModel
    platt_weight: float = 0.5
    isotonic_weight: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            'platt': self.platt.to_dict(),
            'isotonic': self.isotonic.to_dict(),
            'weights': {'platt': self.platt_weight, 'isotonic': self.isotonic_weight},
        }


@dataclass(frozen=True)
class ReliabilityBin:
    """One populated decile of the reliability diagram."""
    bucket: str
    avg_predicted: float
    avg_actual: float
    count: int


@dataclass(frozen=True)
class CalibrationReport:
    """
    Calibration quality of a prediction set.

    ECE and MCE are in percentage points; Brier is on the 0-1 scale.
    """
    expected_calibration_error: float = 0.0
    max_calibration_error: float = 0.0
    brier_score: float = 0.0
    reliability_diagram: Tuple[ReliabilityBin, ...] = field(default_factory=tuple)
    sample_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'expected_calibration_error': round(self.expected_calibration_error, 4),
            'max_calibration_error': round(self.max_calibration_error, 4),
            'brier_score': round(self.brier_score, 4),
            'sample_count': self.sample_count,
            'reliability_diagram': [
                {
                    'bucket': b.bucket,
                    'avg_predicted': round(b.avg_predicted, 2),
                    'avg_actual': round(b.avg_actual, 2),
                    'count': b.count,
                }
                for b in self.reliability_diagram
            ],
        }
