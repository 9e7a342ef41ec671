"""Shared fixtures for the pharma twin tests."""

import random
from datetime import datetime, timezone

import pytest

from pharma_twin_sim.models import (
    BatchState,
    BatchStatus,
    CppBounds,
    CppReading,
    EquipmentTelemetryState,
    ProductType,
    TimelineEntry,
    TimelineStatus,
    TwinSnapshot,
)

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_batch(
    batch_id: str = "B1",
    temperature: float = 37.0,
    pressure: float = 1.1,
    ph: float = 7.0,
    volume: float = 1900.0,
    status: BatchStatus = BatchStatus.RUNNING,
    progress: float = 50.0,
) -> BatchState:
    """Antibody batch with every CPP target at the middle of its bounds."""
    return BatchState(
        id=batch_id,
        product="Monoclonal Antibody X1",
        product_type=ProductType.LARGE_MOLECULE,
        stage="Fermentation",
        progress=progress,
        status=status,
        start_time=datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc),
        equipment=["BIO-001"],
        parameters={
            "temperature": CppReading(temperature, 37.0, "°C"),
            "pressure": CppReading(pressure, 1.1, "bar"),
            "pH": CppReading(ph, 7.0, "pH"),
            "volume": CppReading(volume, 1900.0, "L"),
        },
        cpp_bounds={
            "temperature": CppBounds(36.5, 37.5, "°C"),
            "pressure": CppBounds(1.0, 1.2, "bar"),
            "pH": CppBounds(6.8, 7.2, "pH"),
            "volume": CppBounds(1800, 2000, "L"),
        },
        timeline=[
            TimelineEntry("Inoculation", datetime(2024, 3, 1, 0, tzinfo=timezone.utc), None, TimelineStatus.COMPLETE),
            TimelineEntry("Fermentation", datetime(2024, 3, 1, 2, tzinfo=timezone.utc), None, TimelineStatus.ACTIVE),
            TimelineEntry("Harvest", datetime(2024, 3, 2, 2, tzinfo=timezone.utc), None, TimelineStatus.PENDING),
        ],
    )


def make_snapshot(*batches: BatchState, equipment=()) -> TwinSnapshot:
    return TwinSnapshot(timestamp=FIXED_NOW, batches=tuple(batches), equipment_telemetry=tuple(equipment))


class ScriptedRandom(random.Random):
    """Random source whose ``random()`` returns scripted values in order."""

    def __init__(self, values):
        super().__init__(0)
        self._values = list(values)

    def random(self):
        return self._values.pop(0)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def batch():
    return make_batch()


@pytest.fixture
def equipment_unit():
    return EquipmentTelemetryState("BIO-001", vibration_rms=3.0, vibration_alert=False, temperature_var=0.3)
