"""Operations digest: a compact textual view of plant state for the assistant.

The digest combines a twin snapshot with model predictions, monitor
metrics and detector trigger counts. ``summary`` is the only part the
assistant consumes; the structured fields back it and are also returned
for programmatic use.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .catalog import display_name
from .models import BatchState, BatchStatus, TwinSnapshot
from .monitor import ModelMonitor
from .predictions import (
    DECISION_THRESHOLDS,
    Features,
    ModelId,
    cpp_compliance,
    predict_deviation_risk,
    predict_equipment_failure,
    predict_quality,
)

if TYPE_CHECKING:
    from .detector import AnomalyDetector
    from .logistic import LogisticRegistry

MAX_LIST_ITEMS = 5
PERFORMANCE_MIN_N = 30


@dataclass
class BatchSummary:
    id: str
    product: str
    stage: str
    status: str
    progress: float
    quality_probability: float  # percent
    deviation_probability: float  # percent
    compliance: float  # percent
    eta_hours: Optional[float] = None


@dataclass
class EquipmentRisk:
    id: str
    name: str
    risk: float  # percent
    vibration_rms: float
    alert: bool


@dataclass
class ModelPerformance:
    id: str
    label: str
    samples: int
    accuracy: Optional[float]  # percent
    brier: float
    ece: float
    auroc: float
    threshold: float


@dataclass
class OperationsDigest:
    """Structured plant digest plus its one-paragraph text rendering."""

    updated_at: datetime
    status_counts: Dict[str, int]
    total_batches: int
    average_progress: float
    closest_to_completion: Optional[BatchSummary]
    metrics: Dict[str, float]
    batches: List[BatchSummary] = field(default_factory=list)
    top_deviation_risks: List[BatchSummary] = field(default_factory=list)
    top_equipment_risks: List[EquipmentRisk] = field(default_factory=list)
    model_performance: List[ModelPerformance] = field(default_factory=list)
    open_triggers: Dict[str, int] = field(default_factory=dict)
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated_at": self.updated_at.isoformat(),
            "status_counts": dict(self.status_counts),
            "total_batches": self.total_batches,
            "average_progress": self.average_progress,
            "closest_to_completion": vars(self.closest_to_completion) if self.closest_to_completion else None,
            "metrics": dict(self.metrics),
            "batches": [vars(b) for b in self.batches],
            "top_deviation_risks": [vars(b) for b in self.top_deviation_risks],
            "top_equipment_risks": [vars(e) for e in self.top_equipment_risks],
            "model_performance": [vars(m) for m in self.model_performance],
            "open_triggers": dict(self.open_triggers),
            "summary": self.summary,
        }


def _fmt(value: float, digits: int = 1) -> float:
    return round(value, digits)


def _probability(
    registry: Optional["LogisticRegistry"], model: ModelId, features: Features, fallback: float
) -> float:
    if registry is None:
        return fallback
    learned = registry.predict_proba(model, features)
    return fallback if learned is None else learned


def _eta_hours(batch: BatchState, now: datetime) -> Optional[float]:
    """Remaining hours assuming progress continues at its average rate so far."""
    progress = _fmt(batch.progress)
    if progress <= 0:
        return None
    elapsed = max(0.0, (now - batch.start_time).total_seconds() / 3600)
    return _fmt(max(0.0, elapsed / (progress / 100) - elapsed))


def _summarize_batch(batch: BatchState, now: datetime, registry: Optional["LogisticRegistry"]) -> BatchSummary:
    quality = predict_quality(batch)
    deviation = predict_deviation_risk(batch)
    return BatchSummary(
        id=batch.id,
        product=batch.product,
        stage=batch.stage,
        status=batch.status.value,
        progress=_fmt(batch.progress),
        quality_probability=_fmt(
            _probability(registry, ModelId.QUALITY_PREDICTION, quality.features, quality.probability) * 100
        ),
        deviation_probability=_fmt(
            _probability(registry, ModelId.DEVIATION_RISK, deviation.features, deviation.probability) * 100
        ),
        compliance=_fmt(cpp_compliance(batch) * 100),
        eta_hours=_eta_hours(batch, now),
    )


def _render_summary(digest: OperationsDigest) -> str:
    counts = digest.status_counts
    leader = digest.closest_to_completion
    if leader:
        eta = f" (~{leader.eta_hours}h ETA)" if leader.eta_hours is not None else ""
        progress_line = (
            f"Progress: avg {digest.average_progress}% | closest {leader.id} {leader.progress}% "
            f"({leader.stage}, {leader.status}){eta}."
        )
    else:
        progress_line = f"Progress: avg {digest.average_progress}% | no running batches with tracked progress."

    top = digest.top_equipment_risks[0] if digest.top_equipment_risks else None
    m = digest.metrics
    lines = [
        f"Batches: {counts['running']} running, {counts['warning']} warning, "
        f"{counts['complete']} complete (total {digest.total_batches}).",
        progress_line,
        f"Quality: yield {m['batch_yield']}% | first-pass {m['first_pass_rate']}% | "
        f"avg deviation {m['average_deviation_risk']}%.",
        f"Equipment OEE {m['equipment_oee']}% with top risk "
        f"{f'{top.name} {top.risk}%' if top else 'none highlighted'}.",
        f"Automation: {digest.open_triggers.get('OOS', 0)} open OOS, "
        f"{digest.open_triggers.get('OOT', 0)} open OOT triggers.",
    ]
    for perf in digest.model_performance:
        accuracy = f"{perf.accuracy}%" if perf.accuracy is not None else "n/a"
        lines.append(
            f"Model {perf.label}: n={perf.samples} accuracy {accuracy} "
            f"AUROC {perf.auroc} Brier {perf.brier} ECE {perf.ece}."
        )
    return "\n".join(lines)


def build_operations_digest(
    snapshot: TwinSnapshot,
    monitor: ModelMonitor,
    registry: Optional["LogisticRegistry"] = None,
    detector: Optional["AnomalyDetector"] = None,
) -> OperationsDigest:
    """Build a digest from one snapshot."""
    now = snapshot.timestamp
    summaries = [_summarize_batch(b, now, registry) for b in snapshot.batches]
    total = len(summaries)

    status_counts = {s.value: 0 for s in BatchStatus}
    for s in summaries:
        status_counts[s.status] += 1

    progress_factors = [min(1.0, max(0.0, b.progress / 100)) for b in snapshot.batches]
    quality_probs = [s.quality_probability / 100 for s in summaries]
    deviation_probs = [s.deviation_probability / 100 for s in summaries]

    equipment_risks = []
    equipment_probs = []
    for eq in snapshot.equipment_telemetry:
        prediction = predict_equipment_failure(eq)
        p = _probability(registry, ModelId.EQUIPMENT_FAILURE, prediction.features, prediction.probability)
        equipment_probs.append(p)
        equipment_risks.append(
            EquipmentRisk(
                id=eq.id,
                name=display_name(eq.id),
                risk=_fmt(p * 100),
                vibration_rms=_fmt(eq.vibration_rms, 2),
                alert=eq.vibration_alert,
            )
        )
    equipment_risks.sort(key=lambda e: e.risk, reverse=True)

    metrics = {
        "batch_yield": 0.0,
        "first_pass_rate": 0.0,
        "deviation_rate": 0.0,
        "average_deviation_risk": 0.0,
        "equipment_oee": 0.0,
        "average_compliance": 0.0,
    }
    if total:
        metrics["batch_yield"] = _fmt(sum(q * f for q, f in zip(quality_probs, progress_factors)) / total * 100)
        metrics["first_pass_rate"] = _fmt(
            sum(1 for p in quality_probs if p >= DECISION_THRESHOLDS[ModelId.QUALITY_PREDICTION]) / total * 100
        )
        metrics["deviation_rate"] = _fmt(
            sum(1 for p in deviation_probs if p >= DECISION_THRESHOLDS[ModelId.DEVIATION_RISK]) / total * 100
        )
        metrics["average_deviation_risk"] = _fmt(sum(deviation_probs) / total * 100)
        metrics["average_compliance"] = _fmt(sum(s.compliance for s in summaries) / total)
    if equipment_probs:
        metrics["equipment_oee"] = _fmt(sum(1 - p for p in equipment_probs) / len(equipment_probs) * 100)

    in_flight = sorted(
        (s for s in summaries if s.status != BatchStatus.COMPLETE.value),
        key=lambda s: s.progress,
        reverse=True,
    )

    performance = []
    for model in ModelId:
        m = monitor.metrics(
            model,
            threshold=DECISION_THRESHOLDS[model],
            min_n=PERFORMANCE_MIN_N,
            require_both_classes=True,
        )
        performance.append(
            ModelPerformance(
                id=model.value,
                label=model.label,
                samples=m.n,
                accuracy=_fmt(m.accuracy * 100) if m.accuracy is not None else None,
                brier=_fmt(m.brier, 3),
                ece=_fmt(m.ece, 3),
                auroc=_fmt(m.auroc, 3),
                threshold=m.threshold,
            )
        )

    digest = OperationsDigest(
        updated_at=now,
        status_counts=status_counts,
        total_batches=total,
        average_progress=_fmt(sum(s.progress for s in summaries) / total) if total else 0.0,
        closest_to_completion=in_flight[0] if in_flight else None,
        metrics=metrics,
        batches=summaries,
        top_deviation_risks=sorted(summaries, key=lambda s: s.deviation_probability, reverse=True)[:MAX_LIST_ITEMS],
        top_equipment_risks=equipment_risks[:MAX_LIST_ITEMS],
        model_performance=performance,
        open_triggers=detector.open_trigger_counts() if detector else {"OOS": 0, "OOT": 0},
    )
    digest.summary = _render_summary(digest)
    return digest
