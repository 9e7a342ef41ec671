"""Prediction ledger and model performance metrics.

The monitor keeps an append-only list of prediction/outcome pairs per model
and recomputes accuracy, Brier score, expected calibration error and AUROC
from the full ledger on every query.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Union

from .models import BatchState, EquipmentTelemetryState
from .predictions import (
    Features,
    ModelId,
    predict_deviation_risk,
    predict_equipment_failure,
    predict_quality,
)

if TYPE_CHECKING:
    from .logistic import LogisticRegistry

logger = logging.getLogger(__name__)


@dataclass
class PredictionRecord:
    """One scored prediction paired with the outcome observed at the same time.

    ``id`` is the subject id (batch or equipment), so it repeats across samples.
    """

    id: str
    model: ModelId
    timestamp: float
    p: float
    y: int
    features: Features = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "model": self.model.value,
            "timestamp": self.timestamp,
            "p": self.p,
            "y": self.y,
            "features": dict(self.features),
        }


@dataclass
class ModelMetrics:
    """Metrics for one model computed over its full ledger."""

    n: int
    accuracy: Optional[float]
    brier: float
    ece: float
    auroc: float
    threshold: float
    has_pos_neg: bool

    def to_dict(self) -> Dict:
        return {
            "n": self.n,
            "accuracy": self.accuracy,
            "brier": self.brier,
            "ece": self.ece,
            "auroc": self.auroc,
            "threshold": self.threshold,
            "has_pos_neg": self.has_pos_neg,
        }


def expected_calibration_error(records: Sequence[PredictionRecord], bins: int = 5) -> float:
    """Weighted gap between mean confidence and observed frequency per bin.

    Bins are equal-width over [0, 1]; p == 1.0 falls into the last bin.
    Empty bins contribute nothing.
    """
    if not records:
        return 0.0
    sum_p = [0.0] * bins
    sum_y = [0.0] * bins
    counts = [0] * bins
    for r in records:
        b = min(bins - 1, max(0, int(r.p * bins)))
        sum_p[b] += r.p
        sum_y[b] += r.y
        counts[b] += 1

    n = len(records)
    ece = 0.0
    for b in range(bins):
        if counts[b] == 0:
            continue
        confidence = sum_p[b] / counts[b]
        frequency = sum_y[b] / counts[b]
        ece += (counts[b] / n) * abs(confidence - frequency)
    return ece


def compute_auroc(records: Sequence[PredictionRecord]) -> float:
    """Area under the ROC curve via the rank-sum statistic.

    Ties share their average rank. Returns 0.0 when either class is empty.
    """
    n_pos = sum(1 for r in records if r.y == 1)
    n_neg = len(records) - n_pos
    if n_pos == 0 or n_neg == 0:
        return 0.0

    ordered = sorted(records, key=lambda r: r.p)
    sum_pos_ranks = 0.0
    i = 0
    while i < len(ordered):
        j = i
        while j + 1 < len(ordered) and ordered[j + 1].p == ordered[i].p:
            j += 1
        avg_rank = (i + j + 2) / 2  # 1-indexed
        sum_pos_ranks += avg_rank * sum(1 for k in range(i, j + 1) if ordered[k].y == 1)
        i = j + 1

    return (sum_pos_ranks - n_pos * (n_pos + 1) / 2) / (n_pos * n_neg)


class ModelMonitor:
    """Append-only prediction ledger keyed by model.

    The ledger grows without bound for the lifetime of the instance;
    callers that need retention should create a fresh monitor.
    """

    def __init__(self):
        self._records: Dict[ModelId, List[PredictionRecord]] = {m: [] for m in ModelId}
        self._lock = threading.Lock()

    def record_prediction(self, model: Union[ModelId, str], record: PredictionRecord) -> None:
        """Append a record to the ledger of ``model``."""
        model = ModelId(model)
        if record.model != model:
            raise ValueError(f"Record model {record.model.value} does not match {model.value}")
        if not 0.0 <= record.p <= 1.0:
            raise ValueError(f"Probability out of range: {record.p}")
        if record.y not in (0, 1):
            raise ValueError(f"Outcome must be 0 or 1, got {record.y}")
        with self._lock:
            self._records[model].append(record)

    def records(self, model: Optional[Union[ModelId, str]] = None) -> List[PredictionRecord]:
        """Copy of the ledger for one model, or for all models in model order."""
        with self._lock:
            if model is not None:
                return list(self._records[ModelId(model)])
            return [r for m in ModelId for r in self._records[m]]

    def count(self, model: Optional[Union[ModelId, str]] = None) -> int:
        key = ModelId(model) if model is not None else None
        with self._lock:
            if key is not None:
                return len(self._records[key])
            return sum(len(rs) for rs in self._records.values())

    def metrics(
        self,
        model: Union[ModelId, str],
        threshold: float = 0.5,
        min_n: int = 1,
        require_both_classes: bool = False,
        bins: int = 5,
    ) -> ModelMetrics:
        """Compute metrics over the full ledger of ``model``.

        Accuracy is None when there are fewer than ``min_n`` records, or when
        ``require_both_classes`` is set and only one outcome class is present.
        """
        rs = self.records(model)
        n = len(rs)
        if n == 0:
            return ModelMetrics(
                n=0, accuracy=None, brier=0.0, ece=0.0, auroc=0.0, threshold=threshold, has_pos_neg=False
            )

        pos = sum(1 for r in rs if r.y == 1)
        has_pos_neg = 0 < pos < n
        correct = sum(1 for r in rs if (1 if r.p >= threshold else 0) == r.y)
        brier = sum((r.p - r.y) ** 2 for r in rs) / n

        accuracy = None
        if n >= min_n and (has_pos_neg or not require_both_classes):
            accuracy = correct / n

        return ModelMetrics(
            n=n,
            accuracy=accuracy,
            brier=brier,
            ece=expected_calibration_error(rs, bins),
            auroc=compute_auroc(rs),
            threshold=threshold,
            has_pos_neg=has_pos_neg,
        )


def _now_ms() -> float:
    return time.time() * 1000


def sample_and_record_predictions(
    batches: Sequence[BatchState],
    equipment: Sequence[EquipmentTelemetryState],
    monitor: ModelMonitor,
    registry: Optional["LogisticRegistry"] = None,
    clock: Callable[[], float] = _now_ms,
) -> int:
    """Score every batch and equipment unit and append the results.

    Records quality and deviation-risk predictions for each batch and an
    equipment-failure prediction for each unit. When ``registry`` holds a
    trained logistic model for a model id, its probability replaces the
    rule-based one. Returns the number of records appended.
    """
    now = clock()

    def _learned(model: ModelId, features: Features, fallback: float) -> float:
        if registry is None:
            return fallback
        learned = registry.predict_proba(model, features)
        return fallback if learned is None else learned

    added = 0
    for batch in batches:
        q = predict_quality(batch)
        monitor.record_prediction(
            ModelId.QUALITY_PREDICTION,
            PredictionRecord(
                batch.id,
                ModelId.QUALITY_PREDICTION,
                now,
                _learned(ModelId.QUALITY_PREDICTION, q.features, q.probability),
                q.label,
                q.features,
            ),
        )
        d = predict_deviation_risk(batch)
        monitor.record_prediction(
            ModelId.DEVIATION_RISK,
            PredictionRecord(
                batch.id,
                ModelId.DEVIATION_RISK,
                now,
                _learned(ModelId.DEVIATION_RISK, d.features, d.probability),
                d.label,
                d.features,
            ),
        )
        added += 2

    for eq in equipment:
        e = predict_equipment_failure(eq)
        monitor.record_prediction(
            ModelId.EQUIPMENT_FAILURE,
            PredictionRecord(
                eq.id,
                ModelId.EQUIPMENT_FAILURE,
                now,
                _learned(ModelId.EQUIPMENT_FAILURE, e.features, e.probability),
                e.label,
                e.features,
            ),
        )
        added += 1

    logger.debug(f"Recorded {added} predictions")
    return added
