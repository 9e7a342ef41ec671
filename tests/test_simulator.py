"""Tests for the simulator composition root."""

from unittest.mock import MagicMock

import pytest

from pharma_twin_sim.config import Config
from pharma_twin_sim.detector import Trigger
from pharma_twin_sim.predictions import ModelId
from pharma_twin_sim.scheduler import ManualScheduler
from pharma_twin_sim.simulator import Simulator


@pytest.fixture
def config():
    config = Config.default()
    config.twin.random_seed = 42
    return config


def make_simulator(config, forwarder=None):
    return Simulator(
        config,
        forwarder=forwarder,
        twin_scheduler=ManualScheduler(),
        sampler_scheduler=ManualScheduler(),
    )


class TestSimulator:
    def test_start_and_stop(self, config):
        sim = make_simulator(config)

        assert sim.start() is True
        assert sim.running
        assert sim.twin.is_running()
        assert sim.start() is True

        sim.stop()
        assert not sim.running
        assert not sim.twin.is_running()

    def test_initial_sample_then_in_loop_sampling(self, config):
        sim = make_simulator(config)
        sim.start()

        assert sim.monitor.count() == 15
        assert len(sim.sampler.history) == 3

        sim.twin.scheduler.advance(1)
        assert sim.monitor.count() == 30

    def test_proposals_are_collected(self, config):
        sim = make_simulator(config)
        received = []
        sim.subscribe_proposals(received.append)
        sim.start()

        sim.twin.scheduler.advance(1)

        assert any(
            p.batch_id == "BTH-2024-003" and p.parameter == "temperature" and p.trigger == Trigger.OOS
            for p in sim.proposals
        )
        assert received == sim.proposals

    def test_no_forwarder_by_default(self, config):
        assert make_simulator(config).forwarder is None

    def test_forwarder_created_when_enabled(self, config):
        config.mqtt.enabled = True

        assert make_simulator(config).forwarder is not None

    def test_forwarder_receives_proposals_and_metrics(self, config):
        forwarder = MagicMock()
        forwarder.connect.return_value = True
        sim = make_simulator(config, forwarder=forwarder)

        assert sim.start(dry_run=True) is True
        sim.twin.scheduler.advance(1)
        sim.stop()

        forwarder.connect.assert_called_once_with(dry_run=True)
        assert forwarder.forward_proposal.called
        assert forwarder.forward_metrics.called
        forwarder.publish_status.assert_called_once()
        forwarder.disconnect.assert_called_once()

    def test_forwarding_failure_does_not_break_the_loop(self, config):
        forwarder = MagicMock()
        forwarder.connect.return_value = True
        forwarder.forward_proposal.side_effect = ConnectionError("broker down")
        sim = make_simulator(config, forwarder=forwarder)
        sim.start()

        sim.twin.scheduler.advance(2)

        assert sim.twin.tick_count == 2
        assert sim.proposals

    def test_connect_failure(self, config):
        forwarder = MagicMock()
        forwarder.connect.return_value = False
        sim = make_simulator(config, forwarder=forwarder)

        assert sim.start() is False
        assert not sim.running
        assert not sim.twin.is_running()

    def test_speed_from_config(self, config):
        config.twin.sim_seconds_per_tick = 300

        assert make_simulator(config).twin.get_speed() == 300

    def test_seeded_runs_match(self, config):
        a = make_simulator(config)
        b = make_simulator(config)
        a.start(sample_metrics=False)
        b.start(sample_metrics=False)

        a.twin.scheduler.advance(50)
        b.twin.scheduler.advance(50)

        def state(sim):
            return [(bt.id, bt.progress, bt.parameters["temperature"].current) for bt in sim.twin.state.batches]

        assert state(a) == state(b)
        assert [p.deviation.title for p in a.proposals] == [p.deviation.title for p in b.proposals]


class TestTrainingAndDigest:
    def test_train_models(self, config):
        sim = make_simulator(config)
        sim.start(sample_metrics=False)
        sim.twin.scheduler.advance(200)

        trained = sim.train_models()

        assert ModelId.EQUIPMENT_FAILURE in trained
        assert sim.registry.state(ModelId.EQUIPMENT_FAILURE).n == sim.monitor.count(ModelId.EQUIPMENT_FAILURE)

    def test_nothing_to_train_without_data(self, config):
        assert make_simulator(config).train_models() == []

    def test_digest(self, config):
        sim = make_simulator(config)
        sim.start()
        sim.twin.scheduler.advance(1)

        digest = sim.digest()

        assert digest.total_batches == 3
        assert digest.open_triggers["OOS"] >= 1
        assert digest.summary.startswith("Batches: ")
