"""
P1 MQTT Gateway - Main Application
Reads telegrams from the P1 port and publishes them to MQTT.
"""

import asyncio
import signal
import sys
import time
import uuid
from typing import Any, Dict, Optional

from p1gateway.config import load_config, Config
from p1gateway.logger import setup_logging, get_logger
from p1gateway.mqtt_handler import MQTTHandler
from p1gateway.p1_reader import P1Reader, P1Reading

logger = get_logger(__name__)


def device_id_for(values: Dict[str, Any], fallback: str) -> str:
    """Stable device id: the meter's equipment id when it sends one."""
    equipment_id = str(values.get("equipment_id") or "")
    if equipment_id:
        return f"p1_meter_{equipment_id.lower()}"
    return fallback


class Gateway:
    """Main gateway application orchestrator."""

    def __init__(self, config: Config):
        """
        Initialize gateway.

        Args:
            config: Application configuration
        """
        self.config = config
        self.running = False
        self.start_time = time.time()
        self.telegrams = 0

        self.reader: Optional[P1Reader] = None
        self.mqtt: Optional[MQTTHandler] = None
        self._stopped = asyncio.Event()

        self.gateway_id = self._get_gateway_id()

        logger.info(
            "gateway_initialized",
            gateway_id=self.gateway_id,
            version=config.gateway.version
        )

    def _get_gateway_id(self) -> str:
        """Generate unique gateway ID from MAC address."""
        mac = uuid.getnode()
        mac_str = ':'.join(f'{(mac >> i) & 0xff:02x}' for i in range(40, -1, -8))
        return f"p1_gateway_{mac_str.replace(':', '')}"

    async def start(self) -> None:
        """Start all gateway components and run until stopped."""
        try:
            logger.info("gateway_starting")

            logger.info("initializing_mqtt")
            self.mqtt = MQTTHandler(
                self.config.mqtt,
                self.config.homeassistant,
                self.config.gateway
            )
            await self.mqtt.start()

            logger.info("initializing_p1_reader")
            self.reader = P1Reader(
                self.config.serial,
                self.config.parser,
                self.config.advanced.circuit_breaker
            )
            self.reader.on_reading = self._handle_reading
            await self.reader.start()

            self.running = True
            await self._stopped.wait()

        except Exception as e:
            logger.error("gateway_start_failed", error=str(e), exc_info=True)
            raise

    async def stop(self) -> None:
        """Stop all gateway components."""
        logger.info("gateway_stopping")
        self.running = False

        if self.reader:
            await self.reader.stop()

        if self.mqtt:
            await self.mqtt.stop()

        self._stopped.set()
        logger.info("gateway_stopped", telegrams=self.telegrams)

    async def _handle_reading(self, reading: P1Reading) -> None:
        """Publish one parsed telegram."""
        self.telegrams += 1
        device_id = device_id_for(reading.values, self.gateway_id)
        await self.mqtt.publish_reading(device_id, reading.values)
        logger.debug("reading_published", device_id=device_id, fields=len(reading.values))


async def main(config_path: Optional[str] = None) -> int:
    """Main entry point."""
    try:
        print("[INFO] Loading configuration...")
        config = load_config(config_path)
    except Exception as e:
        print(f"[FATAL] {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)
    logger.info("configuration_loaded", config_file=config_path or "default")

    gateway = Gateway(config)

    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info("signal_received", signal=sig.name)
        asyncio.create_task(gateway.stop())

    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await gateway.start()
    except KeyboardInterrupt:
        logger.info("interrupted_by_user")
        await gateway.stop()
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None)))
