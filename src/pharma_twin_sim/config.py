"""Configuration management for the digital twin."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass
class MQTTConfig:
    """MQTT broker configuration for forwarding proposals and metrics."""

    broker: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""
    client_id: str = "pharma-twin"
    qos: int = 1
    topic_prefix: str = "pharma-twin"
    enabled: bool = False


@dataclass
class TwinConfig:
    """Simulation loop parameters."""

    tick_ms: int = 2000
    sim_seconds_per_tick: float = 60
    monitor_every_sim_seconds: float = 30
    random_seed: Optional[int] = None


@dataclass
class MonitorConfig:
    """Metrics sampling and retention."""

    sample_interval_s: float = 30.0
    max_points: int = 500
    min_n: int = 10
    bins: int = 5


@dataclass
class Config:
    """Main configuration container."""

    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    twin: TwinConfig = field(default_factory=TwinConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not config_path.exists():
            return cls.default()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "Config":
        """Load configuration from environment variables.

        A ``.env`` file is loaded first when present; variables already set
        in the process environment win.
        """
        env_path = env_path or Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.info(f"Loaded environment from: {env_path}")

        config = cls.default()

        config.mqtt.broker = os.getenv("MQTT_BROKER", config.mqtt.broker)
        config.mqtt.port = int(os.getenv("MQTT_PORT", config.mqtt.port))
        config.mqtt.username = os.getenv("MQTT_USERNAME", config.mqtt.username)
        config.mqtt.password = os.getenv("MQTT_PASSWORD", config.mqtt.password)
        config.mqtt.client_id = os.getenv("MQTT_CLIENT_ID", config.mqtt.client_id)
        config.mqtt.topic_prefix = os.getenv("MQTT_TOPIC_PREFIX", config.mqtt.topic_prefix)
        enabled = os.getenv("MQTT_ENABLED")
        if enabled is not None:
            config.mqtt.enabled = enabled.lower() in ("1", "true", "yes")

        config.twin.tick_ms = int(os.getenv("TWIN_TICK_MS", config.twin.tick_ms))
        config.twin.sim_seconds_per_tick = float(
            os.getenv("TWIN_SIM_SECONDS_PER_TICK", config.twin.sim_seconds_per_tick)
        )
        config.twin.monitor_every_sim_seconds = float(
            os.getenv("TWIN_MONITOR_EVERY_SIM_SECONDS", config.twin.monitor_every_sim_seconds)
        )
        seed = os.getenv("TWIN_RANDOM_SEED")
        if seed:
            config.twin.random_seed = int(seed)

        return config

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        config = cls.default()

        if "mqtt" in data:
            mqtt_data = data["mqtt"] or {}
            config.mqtt = MQTTConfig(
                broker=mqtt_data.get("broker", config.mqtt.broker),
                port=mqtt_data.get("port", config.mqtt.port),
                username=mqtt_data.get("username", config.mqtt.username),
                password=mqtt_data.get("password", config.mqtt.password),
                client_id=mqtt_data.get("client_id", config.mqtt.client_id),
                qos=mqtt_data.get("qos", config.mqtt.qos),
                topic_prefix=mqtt_data.get("topic_prefix", config.mqtt.topic_prefix),
                enabled=mqtt_data.get("enabled", config.mqtt.enabled),
            )

        if "twin" in data:
            twin_data = data["twin"] or {}
            config.twin = TwinConfig(
                tick_ms=twin_data.get("tick_ms", config.twin.tick_ms),
                sim_seconds_per_tick=twin_data.get(
                    "sim_seconds_per_tick", config.twin.sim_seconds_per_tick
                ),
                monitor_every_sim_seconds=twin_data.get(
                    "monitor_every_sim_seconds", config.twin.monitor_every_sim_seconds
                ),
                random_seed=twin_data.get("random_seed"),
            )

        if "monitor" in data:
            monitor_data = data["monitor"] or {}
            config.monitor = MonitorConfig(
                sample_interval_s=monitor_data.get(
                    "sample_interval_s", config.monitor.sample_interval_s
                ),
                max_points=monitor_data.get("max_points", config.monitor.max_points),
                min_n=monitor_data.get("min_n", config.monitor.min_n),
                bins=monitor_data.get("bins", config.monitor.bins),
            )

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        data = {
            "mqtt": {
                "broker": self.mqtt.broker,
                "port": self.mqtt.port,
                "username": self.mqtt.username,
                "password": self.mqtt.password,
                "client_id": self.mqtt.client_id,
                "qos": self.mqtt.qos,
                "topic_prefix": self.mqtt.topic_prefix,
                "enabled": self.mqtt.enabled,
            },
            "twin": {
                "tick_ms": self.twin.tick_ms,
                "sim_seconds_per_tick": self.twin.sim_seconds_per_tick,
                "monitor_every_sim_seconds": self.twin.monitor_every_sim_seconds,
                "random_seed": self.twin.random_seed,
            },
            "monitor": {
                "sample_interval_s": self.monitor.sample_interval_s,
                "max_points": self.monitor.max_points,
                "min_n": self.monitor.min_n,
                "bins": self.monitor.bins,
            },
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
