"""Seed state for a fresh twin: three batches and nine equipment units.

Each call returns new objects so independent simulations never share state.
"""

from datetime import datetime, timezone
from typing import List

from .models import (
    BatchState,
    BatchStatus,
    CppBounds,
    CppReading,
    EquipmentTelemetryState,
    ProductType,
    TimelineEntry,
    TimelineStatus,
)


def _utc(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def create_seed_equipment() -> List[EquipmentTelemetryState]:
    """Create the initial equipment telemetry."""
    return [
        EquipmentTelemetryState("BIO-001", vibration_rms=1.6, vibration_alert=False, temperature_var=0.18, uptime_hours=1800),
        EquipmentTelemetryState("BIO-002", vibration_rms=1.9, vibration_alert=False, temperature_var=0.2, uptime_hours=1620),
        EquipmentTelemetryState("CHR-001", vibration_rms=2.1, vibration_alert=False, temperature_var=0.25, uptime_hours=1420),
        EquipmentTelemetryState("CHR-002", vibration_rms=2.0, vibration_alert=False, temperature_var=0.23, uptime_hours=1380),
        EquipmentTelemetryState("FIL-001", vibration_rms=3.6, vibration_alert=True, temperature_var=0.31, uptime_hours=980),
        EquipmentTelemetryState("FIL-002", vibration_rms=3.1, vibration_alert=False, temperature_var=0.29, uptime_hours=910),
        EquipmentTelemetryState("REA-001", vibration_rms=2.8, vibration_alert=False, temperature_var=0.22, uptime_hours=650),
        EquipmentTelemetryState("CRY-001", vibration_rms=4.9, vibration_alert=True, temperature_var=0.44, uptime_hours=420),
        EquipmentTelemetryState("DRY-002", vibration_rms=2.4, vibration_alert=False, temperature_var=0.28, uptime_hours=300),
    ]


def _antibody_bounds() -> dict:
    return {
        "temperature": CppBounds(36.5, 37.5, "°C"),
        "pressure": CppBounds(1.0, 1.2, "bar"),
        "pH": CppBounds(6.8, 7.2, "pH"),
        "volume": CppBounds(1800, 2000, "L"),
    }


def create_seed_batches() -> List[BatchState]:
    """Create the initial production batches."""
    mab_1 = BatchState(
        id="BTH-2024-001",
        product="Monoclonal Antibody X1",
        product_type=ProductType.LARGE_MOLECULE,
        stage="Fermentation",
        progress=78.0,
        status=BatchStatus.RUNNING,
        start_time=_utc(2024, 1, 15, 8),
        equipment=["BIO-001", "CHR-001", "FIL-001"],
        parameters={
            "temperature": CppReading(37.2, 37.0, "°C"),
            "pressure": CppReading(1.2, 1.1, "bar"),
            "pH": CppReading(7.1, 7.0, "pH"),
            "volume": CppReading(1850, 2000, "L"),
        },
        cpp_bounds=_antibody_bounds(),
        timeline=[
            TimelineEntry("Media Preparation", _utc(2024, 1, 15, 8), _utc(2024, 1, 15, 10), TimelineStatus.COMPLETE),
            TimelineEntry("Inoculation", _utc(2024, 1, 15, 10), _utc(2024, 1, 15, 11), TimelineStatus.COMPLETE),
            TimelineEntry("Fermentation", _utc(2024, 1, 15, 11), None, TimelineStatus.ACTIVE),
            TimelineEntry("Harvest", _utc(2024, 1, 16, 11), None, TimelineStatus.PENDING),
            TimelineEntry("Purification", _utc(2024, 1, 16, 15), None, TimelineStatus.PENDING),
        ],
    )

    api_y = BatchState(
        id="BTH-2024-002",
        product="Small Molecule API-Y",
        product_type=ProductType.SMALL_MOLECULE,
        stage="Crystallization",
        progress=45.0,
        status=BatchStatus.RUNNING,
        start_time=_utc(2024, 1, 16, 14, 30),
        equipment=["REA-001", "CRY-001", "DRY-002"],
        parameters={
            "temperature": CppReading(25.1, 25.0, "°C"),
            "pressure": CppReading(0.95, 1.0, "bar"),
            "pH": CppReading(3.2, 3.0, "pH"),
            "volume": CppReading(500, 500, "L"),
        },
        cpp_bounds={
            "temperature": CppBounds(24.5, 25.5, "°C"),
            "pressure": CppBounds(0.9, 1.1, "bar"),
            "pH": CppBounds(2.8, 3.2, "pH"),
            "volume": CppBounds(480, 520, "L"),
        },
        timeline=[
            TimelineEntry("Synthesis", _utc(2024, 1, 16, 14, 30), _utc(2024, 1, 16, 18, 30), TimelineStatus.COMPLETE),
            TimelineEntry("Crystallization", _utc(2024, 1, 16, 18, 30), None, TimelineStatus.ACTIVE),
            TimelineEntry("Filtration", _utc(2024, 1, 17, 6, 30), None, TimelineStatus.PENDING),
            TimelineEntry("Drying", _utc(2024, 1, 17, 10, 30), None, TimelineStatus.PENDING),
        ],
    )

    # Starts in warning: temperature excursion above the 37.5 limit
    mab_2 = BatchState(
        id="BTH-2024-003",
        product="Monoclonal Antibody X1",
        product_type=ProductType.LARGE_MOLECULE,
        stage="Fermentation",
        progress=62.0,
        status=BatchStatus.WARNING,
        start_time=_utc(2024, 1, 16, 7, 45),
        equipment=["BIO-002", "CHR-002", "FIL-002"],
        parameters={
            "temperature": CppReading(38.2, 37.0, "°C"),
            "pressure": CppReading(1.15, 1.1, "bar"),
            "pH": CppReading(7.0, 7.0, "pH"),
            "volume": CppReading(1900, 2000, "L"),
        },
        cpp_bounds=_antibody_bounds(),
        timeline=[
            TimelineEntry("Media Preparation", _utc(2024, 1, 16, 7, 45), _utc(2024, 1, 16, 9, 15), TimelineStatus.COMPLETE),
            TimelineEntry("Inoculation", _utc(2024, 1, 16, 9, 15), _utc(2024, 1, 16, 10), TimelineStatus.COMPLETE),
            TimelineEntry("Fermentation", _utc(2024, 1, 16, 10), None, TimelineStatus.ACTIVE),
            TimelineEntry("Harvest", _utc(2024, 1, 17, 10), None, TimelineStatus.PENDING),
            TimelineEntry("Purification", _utc(2024, 1, 17, 14), None, TimelineStatus.PENDING),
        ],
    )

    return [mab_1, api_y, mab_2]
