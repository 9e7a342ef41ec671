"""Composition root wiring the twin, detector, monitor and forwarding.

The ``Simulator`` owns one instance of each collaborator:

- ``DigitalTwin`` driving the plant state on its scheduler
- ``ModelMonitor`` and ``LogisticRegistry`` fed by in-loop sampling
- ``AnomalyDetector`` subscribed to twin snapshots, publishing proposals
  on a ``ProposalChannel``
- ``MetricsSampler`` producing bounded metric history
- ``MQTTForwarder`` (optional) forwarding proposals and metric points
"""

import logging
import random
from typing import Callable, List, Optional

from .config import Config
from .detector import AnomalyDetector, AutomationProposal
from .digest import OperationsDigest, build_operations_digest
from .events import ProposalChannel
from .logistic import LogisticRegistry
from .monitor import ModelMonitor
from .mqtt_client import MQTTForwarder
from .predictions import ModelId
from .sampler import MetricsSampler
from .scheduler import Scheduler
from .twin import DigitalTwin, TwinOptions, TwinState

logger = logging.getLogger(__name__)


class Simulator:
    """Main simulator class orchestrating all components."""

    def __init__(
        self,
        config: Config,
        forwarder: Optional[MQTTForwarder] = None,
        twin_scheduler: Optional[Scheduler] = None,
        sampler_scheduler: Optional[Scheduler] = None,
    ):
        self.config = config
        self.rng = random.Random(config.twin.random_seed)

        self.monitor = ModelMonitor()
        self.registry = LogisticRegistry(self.monitor)
        self.channel = ProposalChannel()

        self.twin = DigitalTwin(
            state=TwinState.from_seed(self.rng),
            scheduler=twin_scheduler,
            monitor=self.monitor,
            registry=self.registry,
            rng=self.rng,
            options=TwinOptions(
                tick_ms=config.twin.tick_ms,
                sim_seconds_per_tick=config.twin.sim_seconds_per_tick,
                monitor_every_sim_seconds=config.twin.monitor_every_sim_seconds,
            ),
        )
        self.detector = AnomalyDetector(self.channel, rng=self.rng)
        self._detach = self.detector.attach(self.twin)

        if forwarder is None and config.mqtt.enabled:
            forwarder = MQTTForwarder(config.mqtt)
        self.forwarder = forwarder

        self.sampler = MetricsSampler(
            self.twin,
            self.monitor,
            registry=self.registry,
            forwarder=self.forwarder,
            scheduler=sampler_scheduler,
            interval_s=config.monitor.sample_interval_s,
            max_points=config.monitor.max_points,
            min_n=config.monitor.min_n,
            bins=config.monitor.bins,
        )

        self.proposals: List[AutomationProposal] = []
        self.channel.subscribe(self.proposals.append)
        if self.forwarder is not None:
            self.channel.subscribe(self._forward_proposal)

        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def subscribe_proposals(self, listener: Callable[[AutomationProposal], None]) -> Callable[[], None]:
        return self.channel.subscribe(listener)

    def start(self, dry_run: bool = False, sample_metrics: bool = True) -> bool:
        """Start the simulator."""
        if self._running:
            return True

        if self.forwarder is not None and not self.forwarder.connect(dry_run=dry_run):
            logger.error("Failed to connect to MQTT broker")
            return False

        self.twin.start()
        if sample_metrics:
            self.sampler.start()
        self._running = True
        logger.info("Simulator started")
        return True

    def stop(self) -> None:
        """Stop the simulator."""
        if not self._running:
            return
        self._running = False
        self.sampler.stop()
        self.twin.stop()
        if self.forwarder is not None:
            self.forwarder.publish_status()
            self.forwarder.disconnect()
        logger.info("Simulator stopped")

    def train_models(self, **kwargs) -> List[ModelId]:
        """Train every model with enough ledger data. Returns the models trained."""
        trained = [model for model in ModelId if self.registry.train(model, **kwargs)]
        if trained:
            logger.info(f"Trained models: {', '.join(m.value for m in trained)}")
        return trained

    def digest(self) -> OperationsDigest:
        return build_operations_digest(self.twin.snapshot(), self.monitor, self.registry, self.detector)

    def _forward_proposal(self, proposal: AutomationProposal) -> None:
        try:
            self.forwarder.forward_proposal(proposal)
        except Exception as e:
            logger.debug(f"Proposal forwarding failed: {e}")
