"""Stochastic process primitives for the digital twin.

Parameters wander around their targets as a discretized mean-reverting
(Ornstein-Uhlenbeck style) random walk, scaled to simulated minutes:

    next = current + k * (target - current) * (dt / 60)
                   + sigma * sqrt(dt / 60) * N(0, 1)

All functions take an explicit ``random.Random`` so that ticks can be
replayed from a seed.
"""

import math
import random


def normal(rng: random.Random) -> float:
    """Draw a standard normal sample using the Box-Muller transform."""
    u = 0.0
    v = 0.0
    while u == 0.0:
        u = rng.random()
    while v == 0.0:
        v = rng.random()
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)


def drift_step(
    current: float,
    target: float,
    k: float,
    sigma: float,
    dt_sec: float,
    rng: random.Random,
) -> float:
    """Advance a value one step toward its target with Gaussian noise."""
    minutes = dt_sec / 60
    drift = k * (target - current) * minutes
    noise = sigma * math.sqrt(minutes) * normal(rng)
    return current + drift + noise


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp value into [lo, hi]."""
    return max(lo, min(hi, value))
