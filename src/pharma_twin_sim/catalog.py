"""Equipment catalog for the simulated pharmaceutical site.

Equipment is grouped by process area (upstream/downstream) and
classification. Classification drives the vibration baseline the twin
drifts toward: filtration skids and crystallizers run rougher than
bioreactors or chromatography skids.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .models import EquipmentTelemetryState


class ProcessArea(Enum):
    """Process area an equipment unit belongs to."""

    UPSTREAM = "Upstream"
    DOWNSTREAM = "Downstream"
    UTILITIES = "Utilities"


class Classification(Enum):
    """Equipment classification."""

    BIOREACTOR = "Bioreactor"
    CHROMATOGRAPHY = "Chromatography"
    FILTRATION = "Filtration"
    DRYING = "Drying"
    REACTION = "Reaction"
    CRYSTALLIZATION = "Crystallization"


@dataclass
class EquipmentMeta:
    """Descriptive metadata for an equipment unit."""

    id: str
    name: str
    process_area: ProcessArea
    classification: Classification
    description: str = ""
    supported_interfaces: List[str] = field(default_factory=list)
    historian_tags: List[str] = field(default_factory=list)
    regulated_data_notes: str = ""

    def to_meta_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "process_area": self.process_area.value,
            "classification": self.classification.value,
            "description": self.description,
            "supported_interfaces": self.supported_interfaces,
            "historian_tags": self.historian_tags,
            "regulated_data_notes": self.regulated_data_notes,
        }


# =============================================================================
# Vibration baselines (mm/s RMS)
# =============================================================================

BASE_RMS = 2.2

CLASSIFICATION_RMS_OFFSET: Dict[Classification, float] = {
    Classification.FILTRATION: 0.8,
    Classification.CRYSTALLIZATION: 1.2,
}

# Used for units that are not in the catalog
ID_PREFIX_CLASSIFICATION: Dict[str, Classification] = {
    "BIO": Classification.BIOREACTOR,
    "CHR": Classification.CHROMATOGRAPHY,
    "FIL": Classification.FILTRATION,
    "DRY": Classification.DRYING,
    "REA": Classification.REACTION,
    "CRY": Classification.CRYSTALLIZATION,
}


# =============================================================================
# Pre-configured equipment
# =============================================================================

_CATALOG_ENTRIES = [
    EquipmentMeta(
        id="BIO-001",
        name="Bioreactor 1",
        process_area=ProcessArea.UPSTREAM,
        classification=Classification.BIOREACTOR,
        description="Stainless-steel perfusion bioreactor with automated pH and DO control.",
        supported_interfaces=["OPC UA", "Modbus TCP", "MQTT"],
        historian_tags=["BIO-001:TEMP", "BIO-001:PH", "BIO-001:AGITATION", "BIO-001:VIBRATION"],
        regulated_data_notes="CPP telemetry and batch genealogy captured for 21 CFR Part 11.",
    ),
    EquipmentMeta(
        id="BIO-002",
        name="Bioreactor 2",
        process_area=ProcessArea.UPSTREAM,
        classification=Classification.BIOREACTOR,
        description="Parallel perfusion bioreactor sharing control modules with BIO-001.",
        supported_interfaces=["OPC UA", "Modbus TCP", "MQTT"],
        historian_tags=["BIO-002:TEMP", "BIO-002:PH", "BIO-002:AGITATION", "BIO-002:VIBRATION"],
        regulated_data_notes="Linked to validated historian and recipe management.",
    ),
    EquipmentMeta(
        id="CHR-001",
        name="Chromatography Skid A",
        process_area=ProcessArea.DOWNSTREAM,
        classification=Classification.CHROMATOGRAPHY,
        description="Protein A chromatography skid with inline UV analytics.",
        supported_interfaces=["OPC UA", "Modbus TCP", "REST"],
        historian_tags=["CHR-001:PRESSURE", "CHR-001:FLOW", "CHR-001:UV", "CHR-001:CONDUCTIVITY"],
        regulated_data_notes="Cleaning cycle data recorded as GMP electronic records.",
    ),
    EquipmentMeta(
        id="CHR-002",
        name="Chromatography Skid B",
        process_area=ProcessArea.DOWNSTREAM,
        classification=Classification.CHROMATOGRAPHY,
        description="Ion-exchange polishing skid with redundant pump trains.",
        supported_interfaces=["OPC UA", "Modbus TCP", "REST"],
        historian_tags=["CHR-002:PRESSURE", "CHR-002:FLOW", "CHR-002:UV", "CHR-002:CONDUCTIVITY"],
        regulated_data_notes="Batch-to-batch trending maintained by the historian.",
    ),
    EquipmentMeta(
        id="FIL-001",
        name="Filter Train 1",
        process_area=ProcessArea.DOWNSTREAM,
        classification=Classification.FILTRATION,
        description="Sterile filtration skid with differential pressure instrumentation.",
        supported_interfaces=["OPC UA", "Modbus TCP", "File Drop"],
        historian_tags=["FIL-001:PRESSURE_IN", "FIL-001:PRESSURE_OUT", "FIL-001:DP", "FIL-001:VIBRATION"],
        regulated_data_notes="Integrity test reports archived for release decisions.",
    ),
    EquipmentMeta(
        id="FIL-002",
        name="Filter Train 2",
        process_area=ProcessArea.DOWNSTREAM,
        classification=Classification.FILTRATION,
        description="Redundant filtration skid with predictive maintenance sensors.",
        supported_interfaces=["OPC UA", "Modbus TCP", "File Drop"],
        historian_tags=["FIL-002:PRESSURE_IN", "FIL-002:PRESSURE_OUT", "FIL-002:DP", "FIL-002:VIBRATION"],
        regulated_data_notes="Differential pressure and integrity data stored in LIMS.",
    ),
    EquipmentMeta(
        id="REA-001",
        name="Reactor 1",
        process_area=ProcessArea.UPSTREAM,
        classification=Classification.REACTION,
        description="Glass-lined synthesis reactor for small-molecule reactions.",
        supported_interfaces=["OPC UA", "Modbus TCP"],
        historian_tags=["REA-001:TEMP", "REA-001:PRESSURE", "REA-001:AGITATION"],
        regulated_data_notes="Reaction parameter records tied to master batch records.",
    ),
    EquipmentMeta(
        id="CRY-001",
        name="Crystallizer 1",
        process_area=ProcessArea.DOWNSTREAM,
        classification=Classification.CRYSTALLIZATION,
        description="Batch crystallizer with supersaturation monitoring.",
        supported_interfaces=["OPC UA", "Modbus TCP", "MQTT"],
        historian_tags=["CRY-001:TEMP", "CRY-001:SUPER", "CRY-001:AGITATION", "CRY-001:VIBRATION"],
        regulated_data_notes="Crystal size distribution metrics archived for release testing.",
    ),
    EquipmentMeta(
        id="DRY-002",
        name="Spray Dryer 2",
        process_area=ProcessArea.DOWNSTREAM,
        classification=Classification.DRYING,
        description="Spray dryer with exhaust moisture analytics.",
        supported_interfaces=["OPC UA", "MQTT"],
        historian_tags=["DRY-002:TEMP_IN", "DRY-002:TEMP_OUT", "DRY-002:MOISTURE", "DRY-002:VIBRATION"],
        regulated_data_notes="Drying curves retained for QA oversight.",
    ),
]

# All equipment indexed by id
EQUIPMENT_CATALOG: Dict[str, EquipmentMeta] = {e.id: e for e in _CATALOG_ENTRIES}


def get_equipment_meta(equipment_id: str) -> Optional[EquipmentMeta]:
    """Get catalog metadata for an equipment unit."""
    return EQUIPMENT_CATALOG.get(equipment_id)


def get_all_equipment() -> List[EquipmentMeta]:
    """Get all catalog entries."""
    return list(EQUIPMENT_CATALOG.values())


def classify(equipment_id: str) -> Optional[Classification]:
    """Resolve a classification from the catalog, falling back to the id prefix."""
    meta = get_equipment_meta(equipment_id)
    if meta:
        return meta.classification
    return ID_PREFIX_CLASSIFICATION.get(equipment_id.split("-")[0].upper())


def baseline_rms(equipment_id: str) -> float:
    """Vibration RMS the unit settles to when healthy."""
    classification = classify(equipment_id)
    return BASE_RMS + CLASSIFICATION_RMS_OFFSET.get(classification, 0.0)


def display_name(equipment_id: str) -> str:
    meta = get_equipment_meta(equipment_id)
    return meta.name if meta else equipment_id


def derive_display_data(telemetry: EquipmentTelemetryState) -> Dict[str, Any]:
    """Derive utilization and a coarse status for display consumers."""
    utilization = min(100, round(((telemetry.uptime_hours % 720) / 720) * 100))
    if telemetry.vibration_alert:
        status = "warning"
    elif utilization < 20:
        status = "maintenance"
    else:
        status = "online"

    meta = get_equipment_meta(telemetry.id)
    return {
        "telemetry": telemetry.to_dict(),
        "meta": meta.to_meta_dict() if meta else None,
        "utilization": utilization,
        "status": status,
    }
