"""
Prediction scoring: compares a student's energy guesses with the final
snapshot of a finished run.
"""

import enum
import logging
import math
from dataclasses import dataclass
from typing import List, Mapping, Optional

from physics import TOLERANCE_PERCENTAGE, EnergySnapshot

log = logging.getLogger(__name__)

# Absolute tolerance used when the actual value is exactly zero
ZERO_TOLERANCE: float = 0.1


class Metric(enum.Enum):
    INITIAL_TOTAL_ENERGY = "initial-total-energy"
    FINAL_TOTAL_ENERGY = "final-total-energy"
    ENERGY_LOSS = "energy-loss"
    EFFICIENCY = "efficiency"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Metric.INITIAL_TOTAL_ENERGY: "Initial Total Energy",
    Metric.FINAL_TOTAL_ENERGY: "Final Total Energy",
    Metric.ENERGY_LOSS: "Energy Loss",
    Metric.EFFICIENCY: "Efficiency",
}


@dataclass(frozen=True)
class PredictionResult:
    metric: Metric
    predicted: float
    actual: float
    is_correct: bool
    accuracy: float

    def to_dict(self) -> dict:
        return {
            "metric": self.metric.value,
            "label": self.metric.label,
            "predicted": self.predicted,
            "actual": self.actual,
            "is_correct": self.is_correct,
            "accuracy": self.accuracy,
        }


@dataclass(frozen=True)
class ScoreSummary:
    correct: int
    total: int

    @property
    def percent(self) -> float:
        return 100.0 * self.correct / self.total if self.total else 0.0

    @property
    def message(self) -> str:
        if self.total and self.correct == self.total:
            return "Perfect predictions! You're a physics master!"
        if self.correct == 0:
            return "Keep learning!"
        return f"{self.percent:.0f}% correct - Great effort!"


def accuracy(predicted: float, actual: float) -> float:
    """Percent closeness of a guess, floored at 0."""
    if actual == 0:
        return 100.0 if predicted == 0 else 0.0
    return max(0.0, 100.0 - abs((predicted - actual) / actual) * 100.0)


def is_correct(predicted: float, actual: float,
               tolerance_percent: float = TOLERANCE_PERCENTAGE) -> bool:
    if actual == 0:
        return abs(predicted) < ZERO_TOLERANCE
    return abs((predicted - actual) / actual) * 100.0 <= tolerance_percent


def efficiency(initial_total: float, final_loss: float) -> float:
    """Share of the initial energy still present at the end, in percent.

    A run that starts with zero total energy reports 0.
    """
    if initial_total == 0:
        return 0.0
    return (initial_total - final_loss) / initial_total * 100.0


def parse_prediction(raw) -> Optional[float]:
    """Numeric value of a user entry, or None when blank or unparseable."""
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log.debug("[SCORE] skipping unparseable prediction %r", raw)
        return None
    if not math.isfinite(value):
        log.debug("[SCORE] skipping non-finite prediction %r", raw)
        return None
    return value


def _coerce_metric(key) -> Optional[Metric]:
    if isinstance(key, Metric):
        return key
    try:
        return Metric(key)
    except ValueError:
        log.warning("[SCORE] unknown prediction metric %r ignored", key)
        return None


def evaluate_predictions(predictions: Optional[Mapping],
                         initial_total: float,
                         final: EnergySnapshot,
                         tolerance_percent: float = TOLERANCE_PERCENTAGE) -> List[PredictionResult]:
    """Score every populated prediction against the final snapshot.

    Results follow the fixed metric order regardless of the mapping's order.
    An empty or missing prediction set yields an empty list.
    """
    if not predictions:
        return []

    guesses = {}
    for key, raw in predictions.items():
        metric = _coerce_metric(key)
        if metric is None:
            continue
        value = parse_prediction(raw)
        if value is not None:
            guesses[metric] = value

    actuals = {
        Metric.INITIAL_TOTAL_ENERGY: initial_total,
        Metric.FINAL_TOTAL_ENERGY: final.total,
        Metric.ENERGY_LOSS: final.loss,
        Metric.EFFICIENCY: efficiency(initial_total, final.loss),
    }

    results = []
    for metric in Metric:
        if metric not in guesses:
            continue
        predicted = guesses[metric]
        actual = actuals[metric]
        results.append(PredictionResult(
            metric=metric,
            predicted=predicted,
            actual=actual,
            is_correct=is_correct(predicted, actual, tolerance_percent),
            accuracy=accuracy(predicted, actual),
        ))
    log.info("[SCORE] %d/%d predictions correct",
             sum(r.is_correct for r in results), len(results))
    return results


def summarize(results: List[PredictionResult]) -> ScoreSummary:
    return ScoreSummary(correct=sum(1 for r in results if r.is_correct), total=len(results))
