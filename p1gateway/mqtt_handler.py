"""
MQTT Handler
Async MQTT publishing of meter readings with Home Assistant discovery.
"""

import asyncio
import json
import time
from collections import deque
from decimal import Decimal
from typing import Any, Deque, Dict, Optional, Set
from dataclasses import dataclass
import paho.mqtt.client as mqtt
from tenacity import retry, stop_after_attempt, wait_exponential

from p1gateway.config import MQTTConfig, HomeAssistantConfig, GatewayConfig
from p1gateway.dsmr_fields import FIELDS_BY_NAME
from p1gateway.logger import get_logger

logger = get_logger(__name__)

# unit -> (device_class, state_class, icon)
UNIT_CLASSES = {
    "kWh": ("energy", "total_increasing", "mdi:lightning-bolt"),
    "kW": ("power", "measurement", "mdi:flash"),
    "V": ("voltage", "measurement", "mdi:sine-wave"),
    "A": ("current", "measurement", "mdi:current-ac"),
    "m3": ("gas", "total_increasing", "mdi:fire"),
}

HA_UNITS = {"m3": "m³"}


@dataclass
class MQTTMessage:
    """Represents an MQTT message."""
    topic: str
    payload: str
    qos: int = 1
    retain: bool = False


def format_value(value: Any) -> str:
    """State payload for a parsed field value."""
    if isinstance(value, tuple):
        # Timestamped values publish the value, not the timestamp
        value = value[-1]
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, float):
        return str(round(value, 4))
    return str(value)


def reading_to_states(values: Dict[str, Any]) -> Dict[str, str]:
    """Map field names to state payloads."""
    return {name: format_value(value) for name, value in values.items()}


class MQTTHandler:
    """
    Async MQTT handler with Home Assistant discovery support.
    Messages published while disconnected wait in a bounded queue.
    """

    def __init__(
        self,
        mqtt_config: MQTTConfig,
        ha_config: HomeAssistantConfig,
        gateway_config: Optional[GatewayConfig] = None
    ):
        """
        Initialize MQTT handler.

        Args:
            mqtt_config: MQTT configuration
            ha_config: Home Assistant configuration
            gateway_config: Device metadata for discovery
        """
        self.mqtt_config = mqtt_config
        self.ha_config = ha_config
        self.gateway_config = gateway_config or GatewayConfig()

        client_id = mqtt_config.client_id or f"p1_gateway_{int(time.time())}"
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self.connected = False
        self.ha_online = False
        self.discovery_sent: Set[str] = set()
        self.queue: Deque[MQTTMessage] = deque(maxlen=mqtt_config.max_queue_size)

        self._running = False
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._queue_processor_task: Optional[asyncio.Task] = None

        logger.info(
            "mqtt_handler_init",
            broker=mqtt_config.broker,
            port=mqtt_config.port,
            client_id=client_id
        )

    async def start(self) -> None:
        """Start MQTT handler and connect."""
        self._running = True

        if self.mqtt_config.username and self.mqtt_config.password:
            self.client.username_pw_set(
                self.mqtt_config.username,
                self.mqtt_config.password
            )

        # Last Will Testament
        self.client.will_set(
            self.ha_config.bridge_state_topic,
            "offline",
            qos=self.mqtt_config.qos,
            retain=True
        )

        await self._connect_with_retry()

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._queue_processor_task = asyncio.create_task(self._process_queue_loop())

        logger.info("mqtt_handler_started")

    async def stop(self) -> None:
        """Stop MQTT handler."""
        self._running = False

        for task in (self._heartbeat_task, self._queue_processor_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self.connected:
            await self.publish(
                self.ha_config.bridge_state_topic,
                "offline",
                retain=True
            )

        self.client.loop_stop()
        self.client.disconnect()

        logger.info("mqtt_handler_stopped")

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=60)
    )
    async def _connect_with_retry(self) -> None:
        """Connect to MQTT broker with exponential backoff."""
        try:
            logger.info("mqtt_connecting", broker=self.mqtt_config.broker)

            self.client.connect(
                self.mqtt_config.broker,
                self.mqtt_config.port,
                self.mqtt_config.keepalive
            )
            self.client.loop_start()

            for _ in range(50):
                if self.connected:
                    logger.info("mqtt_connected")
                    return
                await asyncio.sleep(0.1)

            raise ConnectionError("MQTT connection timeout")

        except Exception as e:
            logger.error("mqtt_connection_failed", error=str(e))
            raise

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Callback when connected to MQTT broker."""
        if not reason_code.is_failure:
            self.connected = True
            logger.info("mqtt_broker_connected")

            self.client.publish(
                self.ha_config.bridge_state_topic,
                "online",
                qos=self.mqtt_config.qos,
                retain=True
            )

            self.client.subscribe(f"{self.ha_config.discovery_prefix}/status")

            # Discovery is resent with the next reading
            self.discovery_sent.clear()
        else:
            self.connected = False
            logger.error("mqtt_connection_failed", reason_code=str(reason_code))

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        """Callback when disconnected from MQTT broker."""
        self.connected = False
        self.ha_online = False

        if not reason_code.is_failure:
            logger.info("mqtt_disconnected_clean")
        else:
            logger.warning("mqtt_disconnected_unexpected", reason_code=str(reason_code))

        self.discovery_sent.clear()

    def _on_message(self, client, userdata, msg):
        """Callback for received MQTT messages (runs in the paho thread)."""
        try:
            payload = msg.payload.decode('utf-8')

            if msg.topic == f"{self.ha_config.discovery_prefix}/status":
                self.ha_online = (payload == "online")
                logger.info("ha_status_changed", online=self.ha_online)

                if self.ha_online:
                    # Home Assistant restarted; rediscover with next reading
                    self.discovery_sent.clear()

        except UnicodeDecodeError as e:
            logger.error("message_callback_error", error=str(e))

    async def publish(
        self,
        topic: str,
        payload: str,
        qos: Optional[int] = None,
        retain: bool = False
    ) -> bool:
        """
        Publish MQTT message.

        Args:
            topic: MQTT topic
            payload: Message payload
            qos: Quality of Service (default from config)
            retain: Retain flag

        Returns:
            True if published, False if queued
        """
        if qos is None:
            qos = self.mqtt_config.qos

        message = MQTTMessage(topic, payload, qos, retain)

        if not self.connected:
            self._enqueue(message)
            logger.debug("message_queued", topic=topic)
            return False

        result = self.client.publish(topic, payload, qos=qos, retain=retain)

        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            logger.debug("message_published", topic=topic)
            return True

        self._enqueue(message)
        logger.warning("publish_failed_queued", topic=topic, rc=result.rc)
        return False

    def _enqueue(self, message: MQTTMessage) -> None:
        if len(self.queue) == self.queue.maxlen:
            logger.warning("queue_full_dropping_oldest", topic=self.queue[0].topic)
        self.queue.append(message)

    def state_topic(self, device_id: str, field_name: str) -> str:
        return f"{self.mqtt_config.topic_prefix}/{device_id}/{field_name}"

    async def publish_discovery(self, device_id: str, values: Dict[str, Any]) -> None:
        """
        Publish Home Assistant discovery configuration for the meter.

        Args:
            device_id: Unique device identifier
            values: Parsed field values, one entity per field
        """
        if not self.ha_config.enabled:
            return

        pending = [name for name in values if f"{device_id}_{name}" not in self.discovery_sent]
        if not pending:
            return

        logger.info("publishing_discovery", device_id=device_id, entities=len(pending))

        device_info = {
            "identifiers": [device_id],
            "name": self.gateway_config.name,
            "manufacturer": self.gateway_config.manufacturer,
            "model": self.gateway_config.model,
            "sw_version": self.gateway_config.version
        }

        for name in pending:
            object_id = f"{device_id}_{name}"
            config = self.discovery_config(device_id, name, device_info)
            topic = f"{self.ha_config.discovery_prefix}/sensor/{object_id}/config"
            await self.publish(topic, json.dumps(config), retain=True)
            self.discovery_sent.add(object_id)
            await asyncio.sleep(0.05)  # Rate limiting

        logger.info("discovery_published", device_id=device_id)

    def discovery_config(
        self,
        device_id: str,
        field_name: str,
        device_info: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Discovery payload for one field."""
        config = {
            "name": field_name.replace("_", " ").capitalize(),
            "unique_id": f"{device_id}_{field_name}",
            "state_topic": self.state_topic(device_id, field_name),
            "device": device_info,
            "availability": [
                {
                    "topic": self.ha_config.bridge_state_topic,
                    "payload_available": "online",
                    "payload_not_available": "offline"
                }
            ],
            "expire_after": self.ha_config.availability.expire_after
        }

        field = FIELDS_BY_NAME.get(field_name)
        unit = field.unit if field else ""
        if unit:
            config["unit_of_measurement"] = HA_UNITS.get(unit, unit)

        if unit in UNIT_CLASSES:
            device_class, state_class, icon = UNIT_CLASSES[unit]
            config["device_class"] = device_class
            config["state_class"] = state_class
            config["icon"] = icon
        else:
            config["icon"] = "mdi:gauge"

        return config

    async def publish_reading(self, device_id: str, values: Dict[str, Any]) -> None:
        """
        Publish discovery (once) and the state of every field.

        Args:
            device_id: Device identifier
            values: Parsed field values
        """
        await self.publish_discovery(device_id, values)

        for name, payload in reading_to_states(values).items():
            await self.publish(self.state_topic(device_id, name), payload, retain=True)

    async def _heartbeat_loop(self) -> None:
        """Background task for heartbeat."""
        while self._running:
            try:
                await asyncio.sleep(self.ha_config.availability.heartbeat_interval)

                if self.connected:
                    await self.publish(
                        self.ha_config.bridge_state_topic,
                        "online",
                        retain=True
                    )
                    logger.debug("heartbeat_sent")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("heartbeat_error", error=str(e))
                await asyncio.sleep(10)

    async def _process_queue_loop(self) -> None:
        """Background task to flush queued messages after reconnecting."""
        while self._running:
            try:
                await asyncio.sleep(10)
                await self.flush_queue()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("queue_loop_error", error=str(e))
                await asyncio.sleep(30)

    async def flush_queue(self) -> int:
        """
        Send queued messages while connected.

        Returns:
            Number of messages sent
        """
        if not self.connected or not self.queue:
            return 0

        logger.info("processing_queue", count=len(self.queue))

        sent = 0
        while self.queue and self.connected:
            msg = self.queue[0]
            result = self.client.publish(msg.topic, msg.payload, qos=msg.qos, retain=msg.retain)

            if result.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.warning("queued_message_failed", topic=msg.topic, rc=result.rc)
                break

            self.queue.popleft()
            sent += 1
            logger.debug("queued_message_sent", topic=msg.topic)

        return sent
