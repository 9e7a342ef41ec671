"""Tests for the logistic model registry."""

import pytest

from pharma_twin_sim.logistic import LogisticRegistry
from pharma_twin_sim.monitor import ModelMonitor, PredictionRecord
from pharma_twin_sim.predictions import ModelId

EQUIPMENT = ModelId.EQUIPMENT_FAILURE


def fill(monitor, n=80, both_classes=True):
    """Records where a high ``rms_norm`` means failure."""
    for i in range(n):
        y = i % 2 if both_classes else 1
        rms_norm = 0.8 + 0.001 * i if y else 0.2 + 0.001 * i
        monitor.record_prediction(
            EQUIPMENT,
            PredictionRecord(f"EQ-{i}", EQUIPMENT, float(i), 0.5, y, {"rms_norm": rms_norm, "const": 1.0}),
        )


@pytest.fixture
def monitor():
    return ModelMonitor()


@pytest.fixture
def registry(monitor):
    return LogisticRegistry(monitor)


def test_untrained_model_has_no_probability(registry):
    assert registry.predict_proba(EQUIPMENT, {"rms_norm": 0.9}) is None
    assert registry.state(EQUIPMENT) is None


def test_train_on_separable_data(monitor, registry):
    fill(monitor)

    assert registry.train(EQUIPMENT, learning_rate=0.5, epochs=300) is True

    high = registry.predict_proba(EQUIPMENT, {"rms_norm": 0.85, "const": 1.0})
    low = registry.predict_proba(EQUIPMENT, {"rms_norm": 0.2, "const": 1.0})
    assert 0.0 <= low < 0.5 < high <= 1.0


def test_state_records_standardization(monitor, registry):
    fill(monitor)
    registry.train(EQUIPMENT)

    state = registry.state(EQUIPMENT)
    assert state.n == 80
    assert state.feature_keys == ["rms_norm", "const"]
    # Zero-variance feature keeps a unit scale
    assert state.std[1] == 1.0
    assert state.to_dict()["model"] == "equipment_failure"


def test_insufficient_samples(monitor, registry):
    fill(monitor, n=20)

    assert registry.train(EQUIPMENT) is False
    assert registry.train(EQUIPMENT, min_samples=10) is True


def test_single_class_requires_opt_out(monitor, registry):
    fill(monitor, both_classes=False)

    assert registry.train(EQUIPMENT) is False
    assert registry.train(EQUIPMENT, require_both_classes=False) is True
    assert registry.predict_proba(EQUIPMENT, {"rms_norm": 0.9, "const": 1.0}) > 0.5


def test_missing_features_default_to_zero(monitor, registry):
    fill(monitor)
    registry.train(EQUIPMENT)

    p = registry.predict_proba(EQUIPMENT, {})
    assert 0.0 <= p <= 1.0


def test_reset(monitor, registry):
    fill(monitor)
    registry.train(EQUIPMENT)
    registry.reset()

    assert registry.predict_proba(EQUIPMENT, {"rms_norm": 0.9}) is None
