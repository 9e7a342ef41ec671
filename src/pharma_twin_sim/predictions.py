"""Stateless scoring for batch quality, deviation risk and equipment failure.

Each predictor returns a probability, the label observed on the same state
(used as the outcome when the prediction is recorded in the monitor), and
the feature map it scored from. Feature maps are kept verbatim so they can
be audited and used to train the logistic models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

from .models import BatchState, CPP_PARAMETERS, EquipmentTelemetryState
from .stochastic import clamp

Features = Dict[str, float]


class ModelId(str, Enum):
    """Monitored predictive models."""

    QUALITY_PREDICTION = "quality_prediction"
    DEVIATION_RISK = "deviation_risk"
    EQUIPMENT_FAILURE = "equipment_failure"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


# Probability at or above which a prediction counts as the positive class.
# Quality is strict because y=1 means every CPP is in spec.
DECISION_THRESHOLDS: Dict[ModelId, float] = {
    ModelId.QUALITY_PREDICTION: 0.95,
    ModelId.DEVIATION_RISK: 0.5,
    ModelId.EQUIPMENT_FAILURE: 0.5,
}


@dataclass
class Prediction:
    """Output of a predictor."""

    probability: float
    label: int
    features: Features = field(default_factory=dict)


def cpp_compliance(batch: BatchState) -> float:
    """Fraction of the four CPPs currently within their bounds (inclusive)."""
    checks = [batch.cpp_bounds[p].contains(batch.parameters[p].current) for p in CPP_PARAMETERS]
    return sum(checks) / len(checks)


def _normalized_distance(value: float, lo: float, hi: float) -> float:
    """Distance from the bounds midpoint in units of half-range."""
    return abs(value - (lo + hi) / 2) / ((hi - lo) / 2)


# =============================================================================
# Batch quality
# =============================================================================


def outcome_quality(batch: BatchState) -> int:
    return 1 if cpp_compliance(batch) == 1 else 0


def predict_quality(batch: BatchState) -> Prediction:
    compliance = cpp_compliance(batch)
    p = clamp(0.05 + 0.9 * compliance, 0.0, 1.0)
    params = batch.parameters
    features = {
        "cpp_compliance": compliance,
        "temp_delta": abs(params["temperature"].current - params["temperature"].target),
        "pressure_delta": abs(params["pressure"].current - params["pressure"].target),
        "ph_delta": abs(params["pH"].current - params["pH"].target),
    }
    return Prediction(p, outcome_quality(batch), features)


# =============================================================================
# Deviation risk
# =============================================================================


def outcome_deviation(batch: BatchState) -> int:
    """1 if any CPP, volume included, is out of spec."""
    in_spec = all(batch.cpp_bounds[p].contains(batch.parameters[p].current) for p in CPP_PARAMETERS)
    return 0 if in_spec else 1


def predict_deviation_risk(batch: BatchState) -> Prediction:
    """Risk from the worst normalized distance of temperature, pressure and pH.

    Volume does not feed the score but does count toward the outcome label.
    """
    params = batch.parameters
    bounds = batch.cpp_bounds
    devs = [
        _normalized_distance(params[p].current, bounds[p].min, bounds[p].max)
        for p in ("temperature", "pressure", "pH")
    ]
    risk = clamp(max(devs), 0.0, 2.0) / 2
    features = {
        "temp_norm_dev": devs[0],
        "pressure_norm_dev": devs[1],
        "ph_norm_dev": devs[2],
    }
    return Prediction(risk, outcome_deviation(batch), features)


# =============================================================================
# Equipment failure
# =============================================================================


def outcome_equipment(eq: EquipmentTelemetryState) -> int:
    return 1 if eq.vibration_alert else 0


def predict_equipment_failure(eq: EquipmentTelemetryState) -> Prediction:
    # RMS scale 0..6 mm/s, variance scale 0..0.6 degC
    rms_norm = clamp(eq.vibration_rms / 6, 0.0, 1.0)
    temp_var_norm = clamp(eq.temperature_var / 0.6, 0.0, 1.0)
    alert = 1.0 if eq.vibration_alert else 0.0
    p = clamp(0.6 * rms_norm + 0.3 * temp_var_norm + 0.2 * alert, 0.0, 1.0)
    features = {
        "rms": eq.vibration_rms,
        "rms_norm": rms_norm,
        "temp_var": eq.temperature_var,
        "temp_var_norm": temp_var_norm,
        "alert_flag": alert,
    }
    return Prediction(p, outcome_equipment(eq), features)
