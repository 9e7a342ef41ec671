"""Tests for OOS/OOT detection."""

import random
import re

import pytest

from pharma_twin_sim.detector import (
    AnomalyDetector,
    Trigger,
    determine_severity,
    recommended_assignee,
)
from pharma_twin_sim.events import ProposalChannel
from pharma_twin_sim.scheduler import ManualScheduler
from pharma_twin_sim.twin import DigitalTwin, TwinOptions, TwinState

from conftest import make_batch, make_snapshot


@pytest.fixture
def channel():
    return ProposalChannel()


@pytest.fixture
def detector(channel, fixed_clock):
    return AnomalyDetector(channel, rng=random.Random(0), clock=fixed_clock)


def feed(detector, temperatures, batch_id="B1"):
    """Process one snapshot per temperature and collect every proposal."""
    proposals = []
    for t in temperatures:
        proposals.extend(detector.process_snapshot(make_snapshot(make_batch(batch_id, temperature=t))))
    return proposals


class TestOutOfSpec:
    def test_fires_once_per_excursion(self, detector):
        proposals = feed(detector, [38.0, 38.0, 37.0, 38.0])

        assert len(proposals) == 2
        assert all(p.trigger == Trigger.OOS for p in proposals)
        assert all(p.parameter == "temperature" for p in proposals)

    def test_no_proposals_in_spec(self, detector):
        assert feed(detector, [37.0, 37.1, 36.9]) == []

    def test_open_until_back_in_spec(self, detector):
        feed(detector, [38.0])
        assert detector.is_open("B1", "temperature", Trigger.OOS)

        feed(detector, [37.0])
        assert not detector.is_open("B1", "temperature", Trigger.OOS)

    @pytest.mark.parametrize("value, severity", [(38.0, "medium"), (38.1, "high"), (38.3, "critical")])
    def test_severity(self, detector, value, severity):
        (proposal,) = feed(detector, [value])

        assert proposal.deviation.severity == severity

    def test_deviation_and_suggestion(self, detector):
        (proposal,) = feed(detector, [38.0])
        deviation = proposal.deviation
        suggestion = proposal.suggestion

        assert re.fullmatch(r"DEV-20240301120000-B1-TEMPERATURE-OOS-\d{3}", deviation.id)
        assert re.fullmatch(r"AUTO-20240301120000-\d{3}", suggestion.id)
        assert deviation.status == "open"
        assert deviation.origin == "digital-twin"
        assert deviation.assigned_to == "Engineering"
        assert deviation.batch_id == "B1"
        assert deviation.title == "Temperature OOS detected in B1"
        assert suggestion.deviation_id == deviation.id
        assert suggestion.status == "pending"
        assert suggestion.ai_confidence == "high"
        assert len(suggestion.actions) == 3
        assert proposal.measurement.deviation == pytest.approx(0.5)
        assert proposal.measurement.compliance == 0.0

    def test_below_lower_limit(self, detector):
        (proposal,) = detector.process_snapshot(make_snapshot(make_batch(ph=6.7)))

        assert proposal.parameter == "pH"
        assert proposal.measurement.deviation == pytest.approx(0.1)
        assert proposal.deviation.assigned_to == "Process Development"

    def test_volume_is_checked(self, detector):
        (proposal,) = detector.process_snapshot(make_snapshot(make_batch(volume=2050)))

        assert proposal.parameter == "volume"
        assert proposal.deviation.assigned_to == "Manufacturing"

    def test_independent_keys(self, detector):
        snapshot = make_snapshot(make_batch("B1", temperature=38.0), make_batch("B2", temperature=38.0, ph=7.5))

        proposals = detector.process_snapshot(snapshot)

        assert {(p.batch_id, p.parameter) for p in proposals} == {
            ("B1", "temperature"),
            ("B2", "temperature"),
            ("B2", "pH"),
        }


class TestOutOfTrend:
    def test_fires_after_streak(self, detector):
        proposals = feed(detector, [37.0, 37.25, 37.30, 37.35])

        (proposal,) = proposals
        assert proposal.trigger == Trigger.OOT
        assert proposal.suggestion.ai_confidence == "medium"
        assert proposal.measurement.deviation == pytest.approx(0.35)
        assert detector.trend_counter("B1", "temperature") == 0
        assert detector.is_open("B1", "temperature", Trigger.OOT)

    def test_flat_step_breaks_streak(self, detector):
        assert feed(detector, [37.0, 37.25, 37.30, 37.30]) == []
        assert detector.trend_counter("B1", "temperature") == 1

    def test_moving_toward_target_does_not_count(self, detector):
        assert feed(detector, [37.45, 37.40, 37.35, 37.30]) == []

    def test_no_duplicate_while_open(self, detector):
        proposals = feed(detector, [37.0, 37.25, 37.30, 37.35, 37.40, 37.45, 37.49])

        assert len(proposals) == 1

    def test_resolution_rearms(self, detector):
        (first,) = feed(detector, [37.0, 37.25, 37.30, 37.35])

        assert detector.notify_resolved(first.deviation.id) is True
        assert not detector.is_open("B1", "temperature", Trigger.OOT)

        (second,) = feed(detector, [37.40, 37.45, 37.49])
        assert second.trigger == Trigger.OOT

    def test_clears_inside_near_band(self, detector):
        feed(detector, [37.0, 37.25, 37.30, 37.35])

        feed(detector, [37.1])

        assert not detector.is_open("B1", "temperature", Trigger.OOT)

    def test_out_of_spec_supersedes_trend(self, detector):
        feed(detector, [37.0, 37.25, 37.30, 37.35])

        (proposal,) = feed(detector, [38.0])

        assert proposal.trigger == Trigger.OOS
        assert not detector.is_open("B1", "temperature", Trigger.OOT)
        assert detector.trend_counter("B1", "temperature") == 0
        assert detector.open_trigger_counts() == {"OOS": 1, "OOT": 0}

    def test_downward_trend(self, detector):
        (proposal,) = feed(detector, [37.0, 36.75, 36.70, 36.65])

        assert proposal.trigger == Trigger.OOT
        assert proposal.measurement.deviation == pytest.approx(-0.35)


class TestResolution:
    def test_unknown_id_is_ignored(self, detector):
        assert detector.notify_resolved("DEV-UNKNOWN") is False

    def test_resolving_oos_rearms(self, detector):
        (first,) = feed(detector, [38.0])

        assert detector.notify_resolved(first.deviation.id)
        assert detector.notify_resolved(first.deviation.id) is False
        assert len(feed(detector, [38.0])) == 1

    def test_counts(self, detector):
        for t in [37.0, 37.25, 37.30, 37.35]:
            detector.process_snapshot(
                make_snapshot(make_batch("B1", temperature=38.0), make_batch("B2", temperature=t))
            )

        assert detector.open_trigger_counts() == {"OOS": 1, "OOT": 1}
        assert detector.proposals_emitted == 2

    def test_retired_batch_state_is_dropped(self, detector):
        (oos,) = feed(detector, [38.0])
        feed(detector, [37.0, 37.25], batch_id="B2")
        assert detector.trend_counter("B2", "temperature") == 1

        feed(detector, [37.0], batch_id="B3")

        assert detector.open_trigger_counts() == {"OOS": 0, "OOT": 0}
        assert not detector.is_open("B1", "temperature", Trigger.OOS)
        assert detector.trend_counter("B2", "temperature") == 0
        assert detector.notify_resolved(oos.deviation.id) is False

    def test_replaced_batch_in_twin_leaves_no_triggers(self, detector, fixed_clock):
        state = TwinState(batches=[make_batch("B1", progress=99.99, temperature=38.0)], batch_sequence=3)
        twin = DigitalTwin(
            state=state,
            scheduler=ManualScheduler(),
            rng=random.Random(1),
            clock=fixed_clock,
            options=TwinOptions(sim_seconds_per_tick=3600),
        )
        detector.process_snapshot(twin.snapshot())
        assert detector.open_trigger_counts()["OOS"] == 1

        detector.attach(twin)
        twin.tick()

        assert not detector.is_open("B1", "temperature", Trigger.OOS)
        assert detector.trend_counter("B1", "temperature") == 0


class TestPublishing:
    def test_proposals_published_on_channel(self, channel, detector):
        received = []
        channel.subscribe(received.append)

        proposals = feed(detector, [38.0])

        assert received == proposals

    def test_failing_subscriber_does_not_stop_detection(self, channel, detector):
        received = []

        def broken(proposal):
            raise RuntimeError("consumer down")

        channel.subscribe(broken)
        channel.subscribe(received.append)

        feed(detector, [38.0])
        feed(detector, [37.0, 38.0], batch_id="B2")

        assert len(received) == 2

    def test_to_dict(self, detector):
        (proposal,) = feed(detector, [38.0])
        data = proposal.to_dict()

        assert data["trigger"] == "OOS"
        assert data["deviation"]["reported_date"] == "2024-03-01T12:00:00+00:00"
        assert data["suggestion"]["measurement"]["bounds"] == {"min": 36.5, "max": 37.5}

    def test_attached_to_twin(self, channel, detector, fixed_clock):
        received = []
        channel.subscribe(received.append)
        twin = DigitalTwin(scheduler=ManualScheduler(), rng=random.Random(1), clock=fixed_clock)
        detector.attach(twin)

        twin.start(TwinOptions(tick_ms=1000))
        twin.scheduler.advance(1)

        assert any(
            p.batch_id == "BTH-2024-003" and p.parameter == "temperature" and p.trigger == Trigger.OOS
            for p in received
        )


class TestHelpers:
    def test_oot_severity(self):
        assert determine_severity(Trigger.OOT, 0.35, 1.0) == "medium"
        assert determine_severity(Trigger.OOT, -0.7, 1.0) == "high"

    def test_zero_range(self):
        assert determine_severity(Trigger.OOS, 0.9, 0.0) == "critical"

    def test_assignee_fallback(self):
        assert recommended_assignee("conductivity") == "Quality Assurance"
