"""Command-line interface for the Pharma Twin Simulator."""

import json
import logging
import signal
import sys
import time
from pathlib import Path

import click

from . import __version__
from .catalog import derive_display_data, get_all_equipment
from .config import Config
from .scheduler import ManualScheduler
from .simulator import Simulator

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _load_config(config_path, seed=None, speed=None) -> Config:
    if config_path:
        cfg = Config.from_yaml(config_path)
    else:
        cfg = Config.from_env()
    if seed is not None:
        cfg.twin.random_seed = seed
    if speed is not None:
        cfg.twin.sim_seconds_per_tick = speed
    return cfg


@click.group()
@click.version_option(version=__version__)
def main():
    """Pharma Twin Simulator - digital twin of a pharmaceutical plant.

    Simulates production batches and equipment telemetry, raises OOS/OOT
    automation proposals, and monitors the calibration and discrimination
    of the predictive models scoring the plant.
    """
    pass


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config"),
    help="Output directory for config files",
)
def init(output):
    """Generate a sample configuration file."""
    output.mkdir(parents=True, exist_ok=True)

    cfg = Config.default()
    config_path = output / "config.yaml"
    cfg.to_yaml(config_path)

    click.echo(f"Created: {config_path}")
    click.echo()
    click.echo("Edit the config file to customize:")
    click.echo("  - MQTT forwarding (disabled by default)")
    click.echo("  - Tick interval and simulated seconds per tick")
    click.echo("  - Metrics sampling interval and retention")
    click.echo()
    click.echo(f"Run with: pharma-twin run --config {config_path}")


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (defaults to environment variables)",
)
@click.option("--broker", "-b", default=None, help="MQTT broker address (enables forwarding)")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option("--seed", type=int, default=None, help="Random seed for a replayable run")
@click.option("--speed", type=float, default=None, help="Simulated seconds per tick")
@click.option("--dry-run", is_flag=True, default=False, help="Log MQTT messages instead of publishing")
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
def run(config_path, broker, port, seed, speed, dry_run, duration):
    """Run the twin in real time until interrupted."""
    cfg = _load_config(config_path, seed, speed)
    if broker:
        cfg.mqtt.broker = broker
        cfg.mqtt.enabled = True
    if port:
        cfg.mqtt.port = port
    if dry_run:
        cfg.mqtt.enabled = True

    sim = Simulator(cfg)
    sim.subscribe_proposals(
        lambda p: click.echo(f"[{p.trigger.value}] {p.deviation.title} ({p.deviation.severity})")
    )

    def signal_handler(sig, frame):
        logger.info("Shutting down...")
        sim.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not sim.start(dry_run=dry_run):
        click.echo("Error: failed to start simulator", err=True)
        sys.exit(1)

    started = time.time()
    while sim.running:
        time.sleep(0.5)
        if duration is not None and time.time() - started >= duration:
            break

    sim.stop()
    click.echo()
    click.echo(sim.digest().summary)


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (defaults to environment variables)",
)
@click.option("--ticks", "-n", type=click.IntRange(min=1), default=720, help="Number of ticks to simulate")
@click.option("--seed", type=int, default=None, help="Random seed for a replayable run")
@click.option("--speed", type=float, default=None, help="Simulated seconds per tick")
@click.option("--train", is_flag=True, default=False, help="Train logistic models after the run")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the digest as JSON")
def simulate(config_path, ticks, seed, speed, train, as_json):
    """Step the twin offline as fast as possible and print a digest.

    No broker connection is made; ticks are driven directly.
    """
    cfg = _load_config(config_path, seed, speed)
    cfg.mqtt.enabled = False

    twin_scheduler = ManualScheduler()
    sim = Simulator(cfg, twin_scheduler=twin_scheduler, sampler_scheduler=ManualScheduler())

    try:
        sim.start(sample_metrics=False)
        twin_scheduler.advance(ticks)
        sim.sampler.sample()
        if train:
            trained = sim.train_models()
            if not trained:
                click.echo("Not enough data to train any model", err=True)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        sim.stop()

    digest = sim.digest()
    if as_json:
        click.echo(json.dumps(digest.to_dict(), indent=2, default=str))
        return

    click.echo(f"Simulated {ticks} ticks ({ticks * sim.twin.get_speed() / 3600:.1f} h)")
    click.echo("=" * 40)
    click.echo(digest.summary)
    click.echo()
    click.echo(f"Proposals emitted: {len(sim.proposals)}")
    for proposal in sim.proposals[-5:]:
        click.echo(f"  [{proposal.trigger.value}] {proposal.deviation.id} {proposal.deviation.severity}")


@main.command()
@click.option("--ticks", "-n", type=click.IntRange(min=0), default=0, help="Ticks to simulate first")
@click.option("--seed", type=int, default=None, help="Random seed")
def equipment(ticks, seed):
    """List equipment with telemetry-derived status."""
    cfg = Config.default()
    cfg.twin.random_seed = seed
    scheduler = ManualScheduler()
    sim = Simulator(cfg, twin_scheduler=scheduler, sampler_scheduler=ManualScheduler())
    sim.start(sample_metrics=False)
    scheduler.advance(ticks)
    sim.stop()

    telemetry = {e.id: e for e in sim.twin.snapshot().equipment_telemetry}
    for meta in get_all_equipment():
        if meta.id not in telemetry:
            continue
        data = derive_display_data(telemetry[meta.id])
        t = data["telemetry"]
        click.echo(
            f"{meta.id:<8} {meta.name:<24} {meta.process_area.value:<10} "
            f"{data['status']:<11} util {data['utilization']:>3}%  "
            f"RMS {t['vibration_rms']:.2f}{' ALERT' if t['vibration_alert'] else ''}"
        )


if __name__ == "__main__":
    main()
