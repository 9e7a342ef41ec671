"""Domain state for batches, equipment telemetry and twin snapshots.

Batches carry four Critical Process Parameters (CPPs), each with a live
reading and a specification window. Equipment carries vibration and thermal
telemetry. Both are mutated only by the simulation loop; everything else
sees deep-copied ``TwinSnapshot`` objects.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Order matters: detectors and predictors iterate CPPs in this order.
CPP_PARAMETERS: Tuple[str, ...] = ("temperature", "pressure", "pH", "volume")


class BatchStatus(Enum):
    """Batch lifecycle states."""

    RUNNING = "running"
    WARNING = "warning"
    COMPLETE = "complete"
    ERROR = "error"  # Reserved, not driven by the simulation


class ProductType(Enum):
    """Product families produced on site."""

    SMALL_MOLECULE = "small-molecule"
    LARGE_MOLECULE = "large-molecule"


class TimelineStatus(Enum):
    """Status of a stage in the batch timeline."""

    COMPLETE = "complete"
    ACTIVE = "active"
    PENDING = "pending"


@dataclass
class CppReading:
    """Live reading of a process parameter."""

    current: float
    target: float
    unit: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"current": self.current, "target": self.target, "unit": self.unit}


@dataclass
class CppBounds:
    """Acceptable specification window for a process parameter."""

    min: float
    max: float
    unit: str = ""

    @property
    def range(self) -> float:
        return self.max - self.min

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def to_dict(self) -> Dict[str, Any]:
        return {"min": self.min, "max": self.max, "unit": self.unit}


@dataclass
class TimelineEntry:
    """One stage of the batch manufacturing timeline."""

    stage: str
    start_time: datetime
    end_time: Optional[datetime] = None
    status: TimelineStatus = TimelineStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
        }


@dataclass
class BatchState:
    """Runtime state of a production batch."""

    id: str
    product: str
    product_type: ProductType
    stage: str
    progress: float
    status: BatchStatus
    start_time: datetime
    equipment: List[str] = field(default_factory=list)
    parameters: Dict[str, CppReading] = field(default_factory=dict)
    cpp_bounds: Dict[str, CppBounds] = field(default_factory=dict)
    timeline: List[TimelineEntry] = field(default_factory=list)

    def active_entry(self) -> Optional[TimelineEntry]:
        """Get the currently active timeline stage, if any."""
        for entry in self.timeline:
            if entry.status == TimelineStatus.ACTIVE:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dict for digests and forwarding."""
        return {
            "id": self.id,
            "product": self.product,
            "product_type": self.product_type.value,
            "stage": self.stage,
            "progress": round(self.progress, 3),
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "equipment": list(self.equipment),
            "parameters": {k: v.to_dict() for k, v in self.parameters.items()},
            "cpp_bounds": {k: v.to_dict() for k, v in self.cpp_bounds.items()},
            "timeline": [entry.to_dict() for entry in self.timeline],
        }


@dataclass
class EquipmentTelemetryState:
    """Vibration and thermal telemetry for one equipment unit."""

    id: str
    vibration_rms: float  # mm/s
    vibration_alert: bool = False
    temperature_var: float = 0.1  # degC std dev
    uptime_hours: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vibration_rms": round(self.vibration_rms, 3),
            "vibration_alert": self.vibration_alert,
            "temperature_var": round(self.temperature_var, 4),
            "uptime_hours": round(self.uptime_hours, 3),
        }


@dataclass(frozen=True)
class TwinSnapshot:
    """Point-in-time copy of the simulated plant.

    Only the top level is frozen. The batch and equipment objects are copies
    detached from the twin, so changing them never reaches the simulation,
    but every subscriber of one tick receives the same object and sees any
    change another subscriber makes. Treat the contents as read-only.
    """

    timestamp: datetime
    batches: Tuple[BatchState, ...]
    equipment_telemetry: Tuple[EquipmentTelemetryState, ...]

    @classmethod
    def capture(
        cls,
        timestamp: datetime,
        batches: List[BatchState],
        equipment: List[EquipmentTelemetryState],
    ) -> "TwinSnapshot":
        """Deep-copy live state into a snapshot."""
        return cls(
            timestamp=timestamp,
            batches=tuple(copy.deepcopy(b) for b in batches),
            equipment_telemetry=tuple(copy.copy(e) for e in equipment),
        )

    def batch(self, batch_id: str) -> Optional[BatchState]:
        for b in self.batches:
            if b.id == batch_id:
                return b
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "batches": [b.to_dict() for b in self.batches],
            "equipment_telemetry": [e.to_dict() for e in self.equipment_telemetry],
        }
