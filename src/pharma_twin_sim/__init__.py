"""Pharma Twin Simulator - digital twin and model monitoring for pharmaceutical batches."""

__version__ = "0.1.0"

from .config import Config
from .detector import AnomalyDetector, AutomationProposal, Trigger
from .events import ProposalChannel
from .models import BatchState, EquipmentTelemetryState, TwinSnapshot
from .monitor import ModelMonitor, PredictionRecord
from .predictions import ModelId
from .scheduler import ManualScheduler, ThreadScheduler
from .simulator import Simulator
from .twin import DigitalTwin, TwinOptions, TwinState

__all__ = [
    "AnomalyDetector",
    "AutomationProposal",
    "BatchState",
    "Config",
    "DigitalTwin",
    "EquipmentTelemetryState",
    "ManualScheduler",
    "ModelId",
    "ModelMonitor",
    "PredictionRecord",
    "ProposalChannel",
    "Simulator",
    "ThreadScheduler",
    "Trigger",
    "TwinOptions",
    "TwinSnapshot",
    "TwinState",
    "__version__",
]
