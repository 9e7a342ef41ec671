"""Tests for the stochastic process primitives."""

import math
import random
import statistics

import pytest

from pharma_twin_sim.stochastic import clamp, drift_step, normal

from conftest import ScriptedRandom


class TestNormal:
    """Tests for Box-Muller sampling."""

    def test_rejects_exact_zero(self):
        rng = ScriptedRandom([0.0, 0.5, 0.0, 0.25])
        # u=0 is rejected, u=0.5; v=0 is rejected, v=0.25 -> cos(pi/2) ~ 0
        assert normal(rng) == pytest.approx(0.0, abs=1e-9)

    def test_known_value(self):
        rng = ScriptedRandom([0.5, 1.0])
        # v=1.0 -> cos(2*pi) = 1
        assert normal(rng) == pytest.approx(math.sqrt(-2.0 * math.log(0.5)))

    def test_moments(self):
        rng = random.Random(7)
        samples = [normal(rng) for _ in range(20000)]

        assert statistics.mean(samples) == pytest.approx(0.0, abs=0.05)
        assert statistics.pstdev(samples) == pytest.approx(1.0, abs=0.05)

    def test_seeded_is_replayable(self):
        a = [normal(random.Random(3)) for _ in range(3)]
        b = [normal(random.Random(3)) for _ in range(3)]
        assert a == b


class TestDriftStep:
    """Tests for the mean-reverting step."""

    def test_pure_drift_without_noise(self):
        # 60 simulated seconds = 1 minute: 10 + 0.05 * (20 - 10) * 1
        assert drift_step(10.0, 20.0, 0.05, 0.0, 60, random.Random(1)) == pytest.approx(10.5)

    def test_drift_scales_with_dt(self):
        assert drift_step(10.0, 20.0, 0.05, 0.0, 120, random.Random(1)) == pytest.approx(11.0)

    def test_at_target_without_noise_stays(self):
        assert drift_step(5.0, 5.0, 0.3, 0.0, 60, random.Random(1)) == pytest.approx(5.0)

    def test_mean_reverts(self):
        rng = random.Random(11)
        value = 50.0
        for _ in range(500):
            value = drift_step(value, 37.0, 0.05, 0.06, 60, rng)
        assert value == pytest.approx(37.0, abs=1.0)


class TestClamp:
    def test_clamp(self):
        assert clamp(5, 0, 1) == 1
        assert clamp(-5, 0, 1) == 0
        assert clamp(0.5, 0, 1) == 0.5
