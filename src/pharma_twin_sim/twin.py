"""Digital twin simulation loop.

Each tick advances simulated time by ``sim_seconds_per_tick``:

1. Batches progress, their CPPs drift toward target, and occasional
   transient shocks push a running batch into warning.
2. Completed batches are replaced by fresh batches templated from them.
3. Equipment vibration and thermal variance drift toward class baselines,
   with random vibration alerts that decay after a few ticks.
4. Every ``monitor_every_sim_seconds`` the current state is scored into the
   model monitor.
5. One detached snapshot is delivered to every subscriber.

The twin owns its ``TwinState``; nothing outside the tick mutates it. A
lock serialises the tick against ``snapshot()`` so readers on other threads
never see a half-applied step.
"""

import copy
import logging
import random
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .catalog import baseline_rms
from .models import (
    BatchState,
    BatchStatus,
    EquipmentTelemetryState,
    TimelineStatus,
    TwinSnapshot,
)
from .monitor import sample_and_record_predictions
from .scheduler import Scheduler, ThreadScheduler
from .seed import create_seed_batches, create_seed_equipment
from .stochastic import clamp, drift_step, normal

logger = logging.getLogger(__name__)

Listener = Callable[[TwinSnapshot], None]


# =============================================================================
# Tuning
# =============================================================================

# (k, sigma) per CPP for the mean-reverting drift
CPP_DRIFT = {
    "temperature": (0.05, 0.06),
    "pressure": (0.06, 0.02),
    "pH": (0.04, 0.015),
    "volume": (0.02, 0.5),
}

# Noise applied around target when a replacement batch starts
RESET_NOISE = {
    "temperature": 0.15,
    "pressure": 0.03,
    "pH": 0.05,
    "volume": 25.0,
}

TRANSIENT_EVENT_PROB = 0.006
WARNING_RECOVERY_PROB = 0.05
MIN_WARNING_TICKS = 2
MAX_WARNING_TICKS = 5

EQUIPMENT_DRIFT_K = 0.08
EQUIPMENT_DRIFT_SIGMA = 0.15
TEMP_VAR_SIGMA = 0.02
ALERT_PROB = 0.01
MIN_ALERT_TICKS = 3
MAX_ALERT_TICKS = 6

RMS_FLOOR = 0.4
RMS_BOUNDS = (0.5, 6.5)
TEMP_VAR_BOUNDS = (0.05, 0.8)


@dataclass
class TwinOptions:
    """Loop timing. ``tick_ms`` is real time; the others are simulated."""

    tick_ms: int = 2000
    sim_seconds_per_tick: float = 60
    monitor_every_sim_seconds: float = 30


@dataclass
class TwinState:
    """Mutable plant state owned by one simulation."""

    batches: List[BatchState] = field(default_factory=list)
    equipment: List[EquipmentTelemetryState] = field(default_factory=list)
    warning_decay: Dict[str, int] = field(default_factory=dict)
    alert_decay: Dict[str, int] = field(default_factory=dict)
    batch_sequence: int = 0

    @classmethod
    def from_seed(cls, rng: Optional[random.Random] = None) -> "TwinState":
        """Fresh state from the seed data.

        Units that start with an active alert get a decay drawn like any
        injected alert so they clear after a few ticks.
        """
        rng = rng or random.Random()
        batches = create_seed_batches()
        equipment = create_seed_equipment()
        alert_decay = {
            e.id: MIN_ALERT_TICKS + int(rng.random() * (MAX_ALERT_TICKS - MIN_ALERT_TICKS + 1))
            for e in equipment
            if e.vibration_alert
        }
        return cls(batches=batches, equipment=equipment, alert_decay=alert_decay, batch_sequence=len(batches))


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class DigitalTwin:
    """Tick-driven simulation of batches and equipment.

    Args:
        state: State to simulate; defaults to a fresh seed.
        scheduler: Timer driving ``tick``; defaults to a background thread.
        monitor: Receives periodic prediction samples, if given.
        registry: Trained logistic models used when sampling, if given.
        rng: Random source for every stochastic draw.
        clock: Wall clock used for timestamps and new batch ids.
    """

    def __init__(
        self,
        state: Optional[TwinState] = None,
        scheduler: Optional[Scheduler] = None,
        monitor=None,
        registry=None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _default_clock,
        options: Optional[TwinOptions] = None,
    ):
        self.rng = rng or random.Random()
        self.state = state or TwinState.from_seed(self.rng)
        self.scheduler = scheduler or ThreadScheduler()
        self.monitor = monitor
        self.registry = registry
        self.options = options or TwinOptions()
        self._clock = clock
        self._listeners: List[Listener] = []
        self._sim_accum = 0.0
        self._lock = threading.RLock()
        self.tick_count = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a snapshot listener. Returns a callable that removes it.

        Listeners of one tick share a single snapshot and must not modify it.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self, options: Optional[TwinOptions] = None, **overrides: Any) -> "DigitalTwin":
        """Merge options and start the timer. No-op if already running."""
        if options is not None:
            self.options = replace(options)
        if overrides:
            self.options = replace(self.options, **overrides)
        if self.is_running():
            return self
        self.scheduler.start(self.options.tick_ms / 1000, self.tick)
        logger.info(
            f"Digital twin started: tick {self.options.tick_ms}ms, "
            f"{self.options.sim_seconds_per_tick}s simulated per tick"
        )
        return self

    def stop(self) -> None:
        if not self.is_running():
            return
        self.scheduler.cancel()
        logger.info(f"Digital twin stopped after {self.tick_count} ticks")

    def is_running(self) -> bool:
        return self.scheduler.active

    def set_speed(self, sim_seconds_per_tick: float) -> None:
        """Change simulated seconds per tick; the timer keeps running."""
        self.options.sim_seconds_per_tick = max(1, sim_seconds_per_tick)

    def get_speed(self) -> float:
        return self.options.sim_seconds_per_tick

    def snapshot(self) -> TwinSnapshot:
        with self._lock:
            return TwinSnapshot.capture(self._clock(), self.state.batches, self.state.equipment)

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self) -> None:
        """Advance the simulation by one step and notify subscribers."""
        with self._lock:
            dt = self.options.sim_seconds_per_tick
            self.tick_count += 1

            self._advance_batches(dt)
            self._advance_equipment(dt)

            self._sim_accum += dt
            if self._sim_accum >= self.options.monitor_every_sim_seconds:
                self._sim_accum = 0.0
                self._sample_predictions()

            listeners = list(self._listeners)
            snapshot = self.snapshot() if listeners else None

        # Listeners run outside the lock so they may call back into the twin
        if snapshot is not None:
            for listener in listeners:
                try:
                    listener(snapshot)
                except Exception as e:
                    logger.error(f"Twin listener error: {e}")

    def _sample_predictions(self) -> None:
        if self.monitor is None:
            return
        try:
            sample_and_record_predictions(
                self.state.batches,
                self.state.equipment,
                self.monitor,
                registry=self.registry,
                clock=lambda: self._clock().timestamp() * 1000,
            )
        except Exception as e:
            logger.debug(f"Prediction sampling failed: {e}")

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def _advance_batches(self, dt: float) -> None:
        rng = self.rng
        completed: List[int] = []

        for i, batch in enumerate(self.state.batches):
            if batch.status in (BatchStatus.RUNNING, BatchStatus.WARNING):
                delta = (dt / 3600) * (0.5 + rng.random() * 0.8)
                batch.progress = clamp(batch.progress + delta, 0.0, 100.0)
                if batch.progress >= 100:
                    self._complete(batch)
                    completed.append(i)

            for name, (k, sigma) in CPP_DRIFT.items():
                reading = batch.parameters[name]
                reading.current = drift_step(reading.current, reading.target, k, sigma, dt, rng)

            self._apply_transient(batch)

        for i in completed:
            template = self.state.batches[i]
            self.state.warning_decay.pop(template.id, None)
            replacement = self._new_batch_from(template)
            self.state.batches[i] = replacement
            logger.info(f"Batch {template.id} complete, replaced by {replacement.id}")

    def _complete(self, batch: BatchState) -> None:
        batch.status = BatchStatus.COMPLETE
        active = batch.active_entry()
        if active and active.end_time is None:
            active.status = TimelineStatus.COMPLETE
            active.end_time = self._clock()

    def _apply_transient(self, batch: BatchState) -> None:
        rng = self.rng
        params = batch.parameters
        remaining = self.state.warning_decay.get(batch.id, 0)

        if rng.random() < TRANSIENT_EVENT_PROB:
            which = int(rng.random() * 3)
            if which == 0:
                params["temperature"].current += 0.3 + 0.15 * rng.random()
            elif which == 1:
                sign = -1 if rng.random() < 0.5 else 1
                params["pressure"].current += sign * (0.05 + 0.03 * rng.random())
            else:
                sign = -1 if rng.random() < 0.5 else 1
                params["pH"].current += sign * (0.1 + 0.04 * rng.random())
            if batch.status == BatchStatus.RUNNING:
                batch.status = BatchStatus.WARNING
                span = MAX_WARNING_TICKS - MIN_WARNING_TICKS + 1
                self.state.warning_decay[batch.id] = MIN_WARNING_TICKS + int(rng.random() * span)
        elif batch.status == BatchStatus.WARNING:
            if remaining > 0:
                self.state.warning_decay[batch.id] = remaining - 1
            elif rng.random() < WARNING_RECOVERY_PROB:
                batch.status = BatchStatus.RUNNING
                self.state.warning_decay.pop(batch.id, None)

    def _next_batch_id(self, now: datetime) -> str:
        self.state.batch_sequence += 1
        return f"BTH-{now.strftime('%Y%m%d%H%M')}-{self.state.batch_sequence:03d}"

    def _new_batch_from(self, template: BatchState) -> BatchState:
        rng = self.rng
        now = self._clock()
        batch = copy.deepcopy(template)

        for index, entry in enumerate(batch.timeline):
            entry.start_time = now + timedelta(hours=index)
            entry.end_time = None
            entry.status = TimelineStatus.ACTIVE if index == 0 else TimelineStatus.PENDING

        for name, sigma in RESET_NOISE.items():
            reading = batch.parameters[name]
            reading.current = reading.target + normal(rng) * sigma
        volume = batch.cpp_bounds["volume"]
        batch.parameters["volume"].current = clamp(batch.parameters["volume"].current, volume.min, volume.max)

        active = batch.active_entry()
        batch.id = self._next_batch_id(now)
        batch.stage = active.stage if active else template.stage
        batch.progress = rng.random() * 5
        batch.status = BatchStatus.RUNNING
        batch.start_time = now
        return batch

    # -------------------------------------------------------------------------
    # Equipment
    # -------------------------------------------------------------------------

    def _advance_equipment(self, dt: float) -> None:
        rng = self.rng
        decay = self.state.alert_decay

        for eq in self.state.equipment:
            base = baseline_rms(eq.id)
            eq.vibration_rms = max(
                RMS_FLOOR,
                eq.vibration_rms
                + EQUIPMENT_DRIFT_K * (base - eq.vibration_rms)
                + EQUIPMENT_DRIFT_SIGMA * normal(rng),
            )
            eq.temperature_var = max(TEMP_VAR_BOUNDS[0], eq.temperature_var + TEMP_VAR_SIGMA * normal(rng))
            eq.uptime_hours += dt / 3600

            if not eq.vibration_alert and rng.random() < ALERT_PROB:
                eq.vibration_alert = True
                span = MAX_ALERT_TICKS - MIN_ALERT_TICKS + 1
                decay[eq.id] = MIN_ALERT_TICKS + int(rng.random() * span)
                eq.vibration_rms += 1.2 + 0.6 * rng.random()
                logger.debug(f"Vibration alert raised on {eq.id}")
            elif eq.vibration_alert:
                decay[eq.id] = decay.get(eq.id, 0) - 1
                eq.vibration_rms += 0.2 + 0.4 * rng.random()
                if decay[eq.id] <= 0:
                    eq.vibration_alert = False
                    del decay[eq.id]

            eq.vibration_rms = clamp(eq.vibration_rms, *RMS_BOUNDS)
            eq.temperature_var = clamp(eq.temperature_var, *TEMP_VAR_BOUNDS)
