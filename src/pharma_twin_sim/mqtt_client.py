"""Best-effort MQTT forwarding of automation proposals and metric points.

Messages are queued by the caller and published from a background thread,
so a slow or unavailable broker never blocks the twin tick. Snapshots are
not forwarded.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

import paho.mqtt.client as mqtt

from .config import MQTTConfig

if TYPE_CHECKING:
    from .detector import AutomationProposal
    from .sampler import MetricsPoint

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """MQTT message to be published."""

    topic: str
    payload: Dict[str, Any]
    retain: bool = False
    qos: int = 1


class MQTTForwarder:
    """MQTT publisher with a bounded buffer and a dry-run mode."""

    def __init__(self, mqtt_config: MQTTConfig, max_queue: int = 10000):
        self.mqtt_config = mqtt_config

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._publish_queue: "Queue[Message]" = Queue(maxsize=max_queue)
        self._publish_thread: Optional[threading.Thread] = None
        self._running = False
        self._dry_run = False

        # Stats
        self._messages_published = 0
        self._messages_dropped = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "messages_published": self._messages_published,
            "messages_dropped": self._messages_dropped,
            "queued": self._publish_queue.qsize(),
        }

    @property
    def status_topic(self) -> str:
        return f"{self.mqtt_config.topic_prefix}/status"

    def connect(self, dry_run: bool = False) -> bool:
        """Connect to the MQTT broker."""
        self._dry_run = dry_run

        if dry_run:
            logger.info("Dry run mode - not connecting to MQTT broker")
            self._connected = True
            self._start_publish_thread()
            return True

        try:
            self._client = mqtt.Client(
                client_id=self.mqtt_config.client_id,
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            )

            if self.mqtt_config.username:
                self._client.username_pw_set(self.mqtt_config.username, self.mqtt_config.password)

            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect

            logger.info(f"Connecting to MQTT broker {self.mqtt_config.broker}:{self.mqtt_config.port}")
            self._client.connect(self.mqtt_config.broker, self.mqtt_config.port)
            self._client.loop_start()

            # Wait for connection
            timeout = 10
            start = time.time()
            while not self._connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if self._connected:
                self._start_publish_thread()
                self.publish_status()

            return self._connected

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        self._running = False

        if self._publish_thread:
            self._publish_thread.join(timeout=2)

        if self._client and not self._dry_run:
            self._client.loop_stop()
            self._client.disconnect()

        self._connected = False
        logger.info("Disconnected from MQTT broker")

    # =========================================================================
    # Forwarding
    # =========================================================================

    def forward_proposal(self, proposal: "AutomationProposal") -> bool:
        """Queue a proposal under ``<prefix>/proposals/<trigger>/<batch>``."""
        topic = f"{self.mqtt_config.topic_prefix}/proposals/{proposal.trigger.value}/{proposal.batch_id}"
        return self.publish(topic, proposal.to_dict())

    def forward_metrics(self, points: Iterable["MetricsPoint"]) -> int:
        """Queue each point under ``<prefix>/metrics/<model>``. Returns the number queued."""
        queued = 0
        for point in points:
            topic = f"{self.mqtt_config.topic_prefix}/metrics/{point.model.value}"
            if self.publish(topic, point.to_dict()):
                queued += 1
        return queued

    def publish_status(self) -> None:
        status = {
            "messages_published": self._messages_published,
            "messages_dropped": self._messages_dropped,
            "timestamp_ms": int(time.time() * 1000),
        }
        self.publish(self.status_topic, status, retain=True)

    def publish(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> bool:
        """Queue a message. A full buffer drops the message."""
        msg = Message(topic=topic, payload=payload, retain=retain, qos=self.mqtt_config.qos)
        try:
            self._publish_queue.put_nowait(msg)
        except Full:
            self._messages_dropped += 1
            logger.warning(f"Publish buffer full, dropping message for {topic}")
            return False
        return True

    # =========================================================================
    # Publish thread
    # =========================================================================

    def _start_publish_thread(self) -> None:
        """Start the background publish thread."""
        self._running = True
        self._publish_thread = threading.Thread(target=self._publish_loop, name="mqtt-publish", daemon=True)
        self._publish_thread.start()

    def _publish_loop(self) -> None:
        """Background thread that publishes queued messages."""
        while self._running:
            try:
                msg = self._publish_queue.get(timeout=0.1)
                self._do_publish(msg)
            except Empty:
                continue

    def _do_publish(self, msg: Message) -> None:
        """Actually publish a message."""
        payload_str = json.dumps(msg.payload, default=str)

        if self._dry_run:
            logger.debug(f"[DRY RUN] {msg.topic}: {payload_str[:100]}")
            self._messages_published += 1
            return

        if self._client and self._connected:
            try:
                result = self._client.publish(msg.topic, payload_str, qos=msg.qos, retain=msg.retain)
                if result.rc == mqtt.MQTT_ERR_SUCCESS:
                    self._messages_published += 1
                else:
                    self._messages_dropped += 1
                    logger.warning(f"Failed to publish to {msg.topic}: {result.rc}")
            except Exception as e:
                self._messages_dropped += 1
                logger.error(f"Error publishing to {msg.topic}: {e}")
        else:
            self._messages_dropped += 1
            logger.warning(f"Not connected, dropping message for {msg.topic}")

    def _on_connect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle connection callback."""
        if rc == 0:
            self._connected = True
            logger.info("Connected to MQTT broker")
        else:
            logger.error(f"Connection failed with code {rc}")

    def _on_disconnect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle disconnection callback."""
        self._connected = False
        if rc != 0:
            logger.warning(f"Unexpected disconnection (rc={rc})")
