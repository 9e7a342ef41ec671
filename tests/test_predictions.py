"""Tests for the prediction functions."""

import pytest

from pharma_twin_sim.models import EquipmentTelemetryState
from pharma_twin_sim.predictions import (
    DECISION_THRESHOLDS,
    ModelId,
    cpp_compliance,
    predict_deviation_risk,
    predict_equipment_failure,
    predict_quality,
)

from conftest import make_batch


class TestCppCompliance:
    def test_all_in_spec(self, batch):
        assert cpp_compliance(batch) == 1.0

    def test_bounds_are_inclusive(self):
        assert cpp_compliance(make_batch(temperature=37.5, ph=6.8)) == 1.0

    def test_one_out_of_four(self):
        assert cpp_compliance(make_batch(temperature=38.0)) == 0.75


class TestPredictQuality:
    def test_all_at_target(self, batch):
        prediction = predict_quality(batch)

        assert prediction.probability == pytest.approx(0.95)
        assert prediction.label == 1

    def test_out_of_spec(self):
        prediction = predict_quality(make_batch(temperature=38.0))

        assert prediction.probability == pytest.approx(0.05 + 0.9 * 0.75)
        assert prediction.label == 0

    def test_features(self):
        prediction = predict_quality(make_batch(temperature=37.3, pressure=1.05, ph=7.1))

        assert set(prediction.features) == {"cpp_compliance", "temp_delta", "pressure_delta", "ph_delta"}
        assert prediction.features["temp_delta"] == pytest.approx(0.3)
        assert prediction.features["pressure_delta"] == pytest.approx(0.05)
        assert prediction.features["ph_delta"] == pytest.approx(0.1)


class TestPredictDeviationRisk:
    def test_at_midpoint_is_zero_risk(self, batch):
        prediction = predict_deviation_risk(batch)

        assert prediction.probability == pytest.approx(0.0, abs=1e-9)
        assert prediction.label == 0

    def test_at_limit_is_half(self):
        prediction = predict_deviation_risk(make_batch(temperature=37.5))

        assert prediction.probability == pytest.approx(0.5)
        assert prediction.label == 0

    def test_capped_at_one(self):
        prediction = predict_deviation_risk(make_batch(ph=9.0))

        assert prediction.probability == 1.0
        assert prediction.label == 1

    def test_volume_counts_for_label_but_not_score(self):
        prediction = predict_deviation_risk(make_batch(volume=2100))

        assert prediction.probability == pytest.approx(0.0, abs=1e-9)
        assert prediction.label == 1
        assert set(prediction.features) == {"temp_norm_dev", "pressure_norm_dev", "ph_norm_dev"}


class TestPredictEquipmentFailure:
    def test_weighted_score(self, equipment_unit):
        prediction = predict_equipment_failure(equipment_unit)

        # 0.6 * (3.0 / 6) + 0.3 * (0.3 / 0.6)
        assert prediction.probability == pytest.approx(0.45)
        assert prediction.label == 0
        assert prediction.features["alert_flag"] == 0.0

    def test_alert_adds_risk_and_sets_label(self):
        eq = EquipmentTelemetryState("FIL-001", vibration_rms=3.0, vibration_alert=True, temperature_var=0.3)
        prediction = predict_equipment_failure(eq)

        assert prediction.probability == pytest.approx(0.65)
        assert prediction.label == 1

    def test_clamped_to_one(self):
        eq = EquipmentTelemetryState("CRY-001", vibration_rms=6.5, vibration_alert=True, temperature_var=0.8)

        assert predict_equipment_failure(eq).probability == 1.0


class TestThresholds:
    def test_per_model_thresholds(self):
        assert DECISION_THRESHOLDS[ModelId.QUALITY_PREDICTION] == 0.95
        assert DECISION_THRESHOLDS[ModelId.DEVIATION_RISK] == 0.5
        assert DECISION_THRESHOLDS[ModelId.EQUIPMENT_FAILURE] == 0.5

    def test_model_labels(self):
        assert ModelId.QUALITY_PREDICTION.label == "Quality Prediction"
        assert ModelId("equipment_failure") is ModelId.EQUIPMENT_FAILURE
