"""Periodic model metrics sampling with bounded history."""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Deque, Dict, List, Optional

from .monitor import ModelMonitor, sample_and_record_predictions
from .predictions import DECISION_THRESHOLDS, ModelId
from .scheduler import Scheduler, ThreadScheduler

if TYPE_CHECKING:
    from .logistic import LogisticRegistry
    from .mqtt_client import MQTTForwarder
    from .twin import DigitalTwin

logger = logging.getLogger(__name__)

SAMPLE_INTERVAL_S = 30.0
MAX_POINTS = 500  # across all models combined
MIN_N = 10


@dataclass(frozen=True)
class MetricsPoint:
    """Metrics for one model at one sampling instant."""

    t: float  # epoch milliseconds
    model: ModelId
    n: int
    auroc: float
    brier: float
    ece: float
    threshold: float

    def to_dict(self) -> Dict:
        return {
            "t": self.t,
            "model": self.model.value,
            "n": self.n,
            "auroc": self.auroc,
            "brier": self.brier,
            "ece": self.ece,
            "threshold": self.threshold,
        }


class MetricsSampler:
    """Records fresh predictions and appends one metrics point per model.

    Each ``sample()`` scores the twin's current snapshot into the monitor,
    computes metrics with the per-model decision thresholds, keeps the
    newest ``max_points`` points and forwards them best effort.
    """

    def __init__(
        self,
        twin: "DigitalTwin",
        monitor: ModelMonitor,
        registry: Optional["LogisticRegistry"] = None,
        forwarder: Optional["MQTTForwarder"] = None,
        scheduler: Optional[Scheduler] = None,
        interval_s: float = SAMPLE_INTERVAL_S,
        max_points: int = MAX_POINTS,
        min_n: int = MIN_N,
        bins: int = 5,
        clock: Callable[[], float] = lambda: time.time() * 1000,
    ):
        self.twin = twin
        self.monitor = monitor
        self.registry = registry
        self.forwarder = forwarder
        self.scheduler = scheduler or ThreadScheduler(name="metrics-sampler")
        self.interval_s = interval_s
        self.min_n = min_n
        self.bins = bins
        self._clock = clock
        self._history: Deque[MetricsPoint] = deque(maxlen=max_points)

    @property
    def history(self) -> List[MetricsPoint]:
        return list(self._history)

    def start(self) -> None:
        """Take an initial sample, then keep sampling every ``interval_s``."""
        if self.scheduler.active:
            return
        self._safe_sample()
        self.scheduler.start(self.interval_s, self._safe_sample)

    def stop(self) -> None:
        self.scheduler.cancel()

    def compute_points(self, t: Optional[float] = None) -> List[MetricsPoint]:
        """Metrics for every model from the current ledger, without sampling."""
        if t is None:
            t = self._clock()
        points = []
        for model in ModelId:
            m = self.monitor.metrics(
                model, threshold=DECISION_THRESHOLDS[model], min_n=self.min_n, bins=self.bins
            )
            points.append(
                MetricsPoint(t=t, model=model, n=m.n, auroc=m.auroc, brier=m.brier, ece=m.ece, threshold=m.threshold)
            )
        return points

    def sample(self) -> List[MetricsPoint]:
        t = self._clock()
        snapshot = self.twin.snapshot()
        sample_and_record_predictions(
            snapshot.batches,
            snapshot.equipment_telemetry,
            self.monitor,
            registry=self.registry,
            clock=lambda: t,
        )
        points = self.compute_points(t)
        self._history.extend(points)
        self._forward(points)
        return points

    def _safe_sample(self) -> None:
        try:
            self.sample()
        except Exception as e:
            logger.debug(f"Metrics sampling failed: {e}")

    def _forward(self, points: List[MetricsPoint]) -> None:
        if self.forwarder is None:
            return
        try:
            self.forwarder.forward_metrics(points)
        except Exception as e:
            logger.debug(f"Metrics forwarding failed: {e}")
