"""Out-of-spec and out-of-trend detection over twin snapshots.

For every (batch, CPP) pair in a snapshot the detector decides whether the
reading is out of specification (OOS) or drifting away from target toward a
limit (OOT). Each new excursion produces one ``Deviation`` and one
``AutomationSuggestion``, wrapped in an ``AutomationProposal`` and published
on the proposal channel. Open triggers suppress duplicates until the
condition clears or the deviation is resolved externally.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set, Tuple

from .events import ProposalChannel
from .models import CPP_PARAMETERS, BatchState, CppBounds, CppReading, TwinSnapshot

if TYPE_CHECKING:
    from .twin import DigitalTwin

logger = logging.getLogger(__name__)


class Trigger(str, Enum):
    OOS = "OOS"
    OOT = "OOT"


PARAMETER_LABELS = {
    "temperature": "Temperature",
    "pressure": "Pressure",
    "pH": "pH",
    "volume": "Volume",
}

PARAMETER_UNITS = {
    "temperature": "°C",
    "pressure": "bar",
    "pH": "pH",
    "volume": "L",
}

# Trend detection tuning
OOT_STREAK = 3
OOT_MIN_STEP_FRACTION = 0.02  # of range
OOT_NEAR_LIMIT_FRACTION = 0.4  # of half-range

REPORTED_BY = "Digital Twin Monitor"
ORIGIN = "digital-twin"

TriggerKey = Tuple[str, str, Trigger]
TrendKey = Tuple[str, str]


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def determine_severity(trigger: Trigger, deviation: float, value_range: float) -> str:
    """Grade an excursion by its size relative to the specification range."""
    ratio = deviation if value_range == 0 else abs(deviation) / value_range
    if trigger == Trigger.OOS:
        if ratio > 0.75:
            return "critical"
        if ratio > 0.5:
            return "high"
        return "medium"
    # OOT is cautionary unless the trend is severe
    return "high" if ratio > 0.6 else "medium"


def recommended_assignee(parameter: str) -> str:
    if parameter in ("temperature", "pressure"):
        return "Engineering"
    if parameter == "pH":
        return "Process Development"
    if parameter == "volume":
        return "Manufacturing"
    return "Quality Assurance"


# =============================================================================
# Value objects
# =============================================================================


@dataclass
class Measurement:
    """Reading that caused a trigger, with its specification window."""

    value: float
    target: float
    min: float
    max: float
    deviation: float
    compliance: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "value": self.value,
            "target": self.target,
            "min": self.min,
            "max": self.max,
            "deviation": self.deviation,
            "compliance": self.compliance,
        }


@dataclass
class Deviation:
    """Quality deviation raised by the detector."""

    id: str
    title: str
    description: str
    severity: str
    batch_id: str
    reported_date: datetime
    assigned_to: str
    status: str = "open"
    reported_by: str = REPORTED_BY
    origin: str = ORIGIN
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "batch_id": self.batch_id,
            "reported_by": self.reported_by,
            "reported_date": self.reported_date.isoformat(),
            "assigned_to": self.assigned_to,
            "origin": self.origin,
            "metadata": self.metadata,
        }


@dataclass
class AutomationSuggestion:
    """Recommended response to a deviation, pending human review."""

    id: str
    deviation_id: str
    trigger: Trigger
    parameter: str
    summary: str
    actions: List[str]
    assignee: str
    created_at: datetime
    ai_confidence: str
    measurement: Dict[str, Any]
    status: str = "pending"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deviation_id": self.deviation_id,
            "trigger": self.trigger.value,
            "parameter": self.parameter,
            "summary": self.summary,
            "actions": list(self.actions),
            "assignee": self.assignee,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "ai_confidence": self.ai_confidence,
            "measurement": self.measurement,
        }


@dataclass
class AutomationProposal:
    """Event published once per new trigger."""

    trigger: Trigger
    batch_id: str
    parameter: str
    measurement: Measurement
    deviation: Deviation
    suggestion: AutomationSuggestion

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "batch_id": self.batch_id,
            "parameter": self.parameter,
            "measurement": self.measurement.to_dict(),
            "deviation": self.deviation.to_dict(),
            "suggestion": self.suggestion.to_dict(),
        }


@dataclass
class _TrendState:
    last_value: float
    counter: int = 0


# =============================================================================
# Detector
# =============================================================================


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class AnomalyDetector:
    """Stateful OOS/OOT classifier with hysteresis.

    State is private to the instance. Snapshots must be processed one at a
    time; the twin delivers them sequentially.
    """

    def __init__(
        self,
        channel: ProposalChannel,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _default_clock,
    ):
        self.channel = channel
        self._rng = rng or random.Random()
        self._clock = clock
        self._active: Dict[TriggerKey, str] = {}
        self._trend: Dict[TrendKey, _TrendState] = {}
        self._lookup: Dict[str, TriggerKey] = {}
        self.proposals_emitted = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def attach(self, twin: "DigitalTwin") -> Callable[[], None]:
        """Subscribe to ``twin`` snapshots. Returns the unsubscribe callable."""
        return twin.subscribe(self.process_snapshot)

    def process_snapshot(self, snapshot: TwinSnapshot) -> List[AutomationProposal]:
        """Analyse every CPP of every batch. Returns the proposals published."""
        self._forget_retired({b.id for b in snapshot.batches})
        emitted: List[AutomationProposal] = []
        for batch in snapshot.batches:
            for parameter in CPP_PARAMETERS:
                reading = batch.parameters.get(parameter)
                spec = batch.cpp_bounds.get(parameter)
                if reading is None or spec is None:
                    continue
                proposal = self._evaluate(snapshot, batch, parameter, reading, spec)
                if proposal is not None:
                    emitted.append(proposal)
        return emitted

    def notify_resolved(self, deviation_id: str) -> bool:
        """Clear the trigger that produced ``deviation_id``. Unknown ids are ignored."""
        key = self._lookup.pop(deviation_id, None)
        if key is None:
            return False
        if self._active.get(key) == deviation_id:
            del self._active[key]
        logger.info(f"Deviation {deviation_id} resolved, trigger {key[2].value} cleared for {key[0]}/{key[1]}")
        return True

    def is_open(self, batch_id: str, parameter: str, trigger: Trigger) -> bool:
        return (batch_id, parameter, Trigger(trigger)) in self._active

    def open_trigger_counts(self) -> Dict[str, int]:
        counts = {t.value: 0 for t in Trigger}
        for _, _, trigger in self._active:
            counts[trigger.value] += 1
        return counts

    def trend_counter(self, batch_id: str, parameter: str) -> int:
        state = self._trend.get((batch_id, parameter))
        return state.counter if state else 0

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def _forget_retired(self, live: Set[str]) -> None:
        """Drop trigger and trend state for batches no longer in the plant."""
        for key in [k for k in self._trend if k[0] not in live]:
            del self._trend[key]
        for key in [k for k in self._active if k[0] not in live]:
            self._lookup.pop(self._active.pop(key), None)

    def _evaluate(
        self,
        snapshot: TwinSnapshot,
        batch: BatchState,
        parameter: str,
        reading: CppReading,
        spec: CppBounds,
    ) -> Optional[AutomationProposal]:
        oos_key = (batch.id, parameter, Trigger.OOS)
        oot_key = (batch.id, parameter, Trigger.OOT)
        trend_key = (batch.id, parameter)

        value = reading.current
        value_range = spec.range
        from_target = value - reading.target
        compliance = self._compliance(value, reading.target, value_range)

        if not spec.contains(value):
            # OOS supersedes any trend tracking on the same key
            self._trend.pop(trend_key, None)
            self._clear(oot_key)
            if oos_key in self._active:
                return None
            measurement = Measurement(
                value=value,
                target=reading.target,
                min=spec.min,
                max=spec.max,
                deviation=max(value - spec.max, spec.min - value),
                compliance=compliance,
            )
            return self._fire(snapshot, batch, parameter, Trigger.OOS, measurement)

        self._clear(oos_key)

        near_limit = abs(from_target) > OOT_NEAR_LIMIT_FRACTION * (value_range / 2)
        if not near_limit:
            self._clear(oot_key)

        state = self._trend.get(trend_key)
        if state is None:
            state = _TrendState(last_value=value)
            self._trend[trend_key] = state
        delta = value - state.last_value
        moving_away = _sign(delta) == _sign(from_target) and abs(delta) > OOT_MIN_STEP_FRACTION * value_range
        if moving_away and near_limit:
            state.counter += 1
        else:
            state.counter = max(0, state.counter - 1)
        state.last_value = value

        if state.counter < OOT_STREAK or oot_key in self._active:
            return None

        state.counter = 0
        measurement = Measurement(
            value=value,
            target=reading.target,
            min=spec.min,
            max=spec.max,
            deviation=from_target,
            compliance=compliance,
        )
        return self._fire(snapshot, batch, parameter, Trigger.OOT, measurement)

    @staticmethod
    def _compliance(value: float, target: float, value_range: float) -> float:
        if value_range == 0:
            return 1.0 if value == target else 0.0
        return min(1.0, max(0.0, (value_range - abs(value - target)) / value_range))

    def _clear(self, key: TriggerKey) -> None:
        deviation_id = self._active.pop(key, None)
        if deviation_id is not None:
            self._lookup.pop(deviation_id, None)

    def _fire(
        self,
        snapshot: TwinSnapshot,
        batch: BatchState,
        parameter: str,
        trigger: Trigger,
        measurement: Measurement,
    ) -> AutomationProposal:
        deviation = self._build_deviation(snapshot, batch, parameter, trigger, measurement)
        suggestion = self._build_suggestion(deviation, parameter, trigger, measurement)
        key = (batch.id, parameter, trigger)
        self._active[key] = deviation.id
        self._lookup[deviation.id] = key

        proposal = AutomationProposal(
            trigger=trigger,
            batch_id=batch.id,
            parameter=parameter,
            measurement=measurement,
            deviation=deviation,
            suggestion=suggestion,
        )
        logger.info(f"{trigger.value} on {batch.id}/{parameter}: {deviation.id} ({deviation.severity})")
        self.proposals_emitted += 1
        self.channel.publish(proposal)
        return proposal

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def _stamp(self) -> Tuple[datetime, str, str]:
        now = self._clock()
        suffix = f"{self._rng.randrange(1000):03d}"
        return now, now.strftime("%Y%m%d%H%M%S"), suffix

    def _build_deviation(
        self,
        snapshot: TwinSnapshot,
        batch: BatchState,
        parameter: str,
        trigger: Trigger,
        m: Measurement,
    ) -> Deviation:
        label = PARAMETER_LABELS.get(parameter, parameter)
        unit = PARAMETER_UNITS.get(parameter, "")
        _, ts, suffix = self._stamp()
        if trigger == Trigger.OOS:
            tail = "Value breached specification limits."
        else:
            tail = "Trend indicates risk of drifting out of spec."

        return Deviation(
            id=f"DEV-{ts}-{batch.id}-{parameter.upper()}-{trigger.value}-{suffix}",
            title=f"{label} {trigger.value} detected in {batch.id}",
            description=f"{label} measured {m.value:.2f}{unit} vs target {m.target:.2f}. {tail}",
            severity=determine_severity(trigger, m.deviation, m.max - m.min),
            batch_id=batch.id,
            reported_date=snapshot.timestamp,
            assigned_to=recommended_assignee(parameter),
            metadata={
                "trigger": trigger.value,
                "parameter": parameter,
                "current_value": m.value,
                "target": m.target,
                "bounds": {"min": m.min, "max": m.max},
                "compliance": m.compliance,
            },
        )

    def _build_suggestion(
        self,
        deviation: Deviation,
        parameter: str,
        trigger: Trigger,
        m: Measurement,
    ) -> AutomationSuggestion:
        label = PARAMETER_LABELS.get(parameter, parameter)
        if trigger == Trigger.OOS:
            actions = [
                f"Isolate batch {deviation.batch_id} and perform product impact assessment.",
                f"Execute containment for {label.lower()} excursion and document remediation.",
            ]
        else:
            actions = [
                f"Increase monitoring frequency for {label.lower()} and review historical trends.",
                "Prepare contingency adjustments to prevent specification breach.",
            ]
        actions.append("Document findings in investigation log and prepare CAPA linkage if required.")

        now, ts, suffix = self._stamp()
        return AutomationSuggestion(
            id=f"AUTO-{ts}-{suffix}",
            deviation_id=deviation.id,
            trigger=trigger,
            parameter=parameter,
            summary=(
                f"{label} {trigger.value} detected for batch {deviation.batch_id}. "
                f"Recommendation: initiate investigation and assign to {deviation.assigned_to}."
            ),
            actions=actions,
            assignee=deviation.assigned_to or "Quality Assurance",
            created_at=now,
            ai_confidence="high" if trigger == Trigger.OOS else "medium",
            measurement={
                "current_value": m.value,
                "target": m.target,
                "bounds": {"min": m.min, "max": m.max},
            },
        )
