"""
Configuration Management
Handles loading and validation of configuration from YAML/JSON files,
with environment variable overrides.
"""

import os
import json
from pathlib import Path
from typing import List, Optional
import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from p1gateway.dsmr_fields import select_fields


class SerialConfig(BaseModel):
    """P1 Serial Port Configuration"""
    port: str = "/dev/ttyUSB0"
    baudrate: int = Field(115200, ge=300)
    bytesize: int = Field(8, ge=7, le=8)
    parity: str = Field("N", pattern="^(N|E|O)$")
    stopbits: int = Field(1, ge=1, le=2)
    timeout: float = Field(11.0, ge=0.1)
    max_telegram_size: int = Field(8192, ge=64)
    max_retries: int = Field(3, ge=1)
    retry_delay: float = Field(2.0, ge=0.1)


class ParserConfig(BaseModel):
    """Telegram Parser Settings"""
    check_crc: bool = True
    unknown_error: bool = False
    fields: List[str] = []

    @field_validator("fields")
    @classmethod
    def validate_field_names(cls, v):
        """Reject names that are not known DSMR fields"""
        select_fields(v)
        return v


class MQTTReconnectConfig(BaseModel):
    """MQTT Reconnection settings"""
    min_delay: int = Field(1, ge=1)
    max_delay: int = Field(60, ge=1)
    attempts: int = Field(5, ge=1)


class MQTTConfig(BaseModel):
    """MQTT Broker Configuration"""
    broker: str = "localhost"
    port: int = Field(1883, ge=1, le=65535)
    username: str = ""
    password: str = ""
    client_id: str = ""
    topic_prefix: str = "p1"
    qos: int = Field(1, ge=0, le=2)
    keepalive: int = Field(60, ge=10)
    max_queue_size: int = Field(1000, ge=10)
    reconnect: MQTTReconnectConfig = MQTTReconnectConfig()


class AvailabilityConfig(BaseModel):
    """Home Assistant Availability Settings"""
    expire_after: int = Field(300, ge=60)
    heartbeat_interval: int = Field(60, ge=10)


class HomeAssistantConfig(BaseModel):
    """Home Assistant Integration"""
    enabled: bool = True
    discovery_prefix: str = "homeassistant"
    availability: AvailabilityConfig = AvailabilityConfig()
    bridge_state_topic: str = "p1/bridge/state"


class CircuitBreakerConfig(BaseModel):
    """Circuit Breaker Settings"""
    enabled: bool = True
    failure_threshold: int = Field(5, ge=1)
    timeout: int = Field(60, ge=1)


class AdvancedConfig(BaseModel):
    """Advanced Settings"""
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    graceful_shutdown_timeout: int = Field(30, ge=5)


class LoggingConfig(BaseModel):
    """Logging Configuration"""
    level: str = Field("INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field("text", pattern="^(text|json)$")
    file: str = ""
    max_size_mb: int = Field(50, ge=1)
    backup_count: int = Field(5, ge=0)
    error_file: str = ""


class GatewayConfig(BaseModel):
    """Gateway Metadata"""
    name: str = "P1 Smart Meter"
    manufacturer: str = "Custom"
    model: str = "P1 MQTT Gateway"
    version: str = "1.0.0"


class Config(BaseSettings):
    """
    Main Configuration.

    Values not set in the config file can come from the environment, e.g.
    ``P1_SERIAL__PORT=/dev/ttyAMA0`` or ``P1_MQTT__BROKER=broker.local``.
    """
    model_config = SettingsConfigDict(
        env_prefix="P1_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    serial: SerialConfig = SerialConfig()
    parser: ParserConfig = ParserConfig()
    mqtt: MQTTConfig = MQTTConfig()
    homeassistant: HomeAssistantConfig = HomeAssistantConfig()
    logging: LoggingConfig = LoggingConfig()
    gateway: GatewayConfig = GatewayConfig()
    advanced: AdvancedConfig = AdvancedConfig()

    @field_validator("logging")
    @classmethod
    def validate_logging_paths(cls, v):
        """Ensure log directory exists"""
        if v.file:
            log_path = Path(v.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
        if v.error_file:
            error_path = Path(v.error_file)
            error_path.parent.mkdir(parents=True, exist_ok=True)
        return v

    @classmethod
    def load_from_file(cls, config_path: str) -> "Config":
        """
        Load configuration from YAML or JSON file.

        Args:
            config_path: Path to config file (*.yaml, *.yml, or *.json)

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        path = Path(config_path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix in ['.yaml', '.yml']:
                data = yaml.safe_load(f)
            elif path.suffix == '.json':
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls(**(data or {}))

    def save_to_file(self, output_path: str) -> None:
        """
        Save configuration to file (YAML or JSON).

        Args:
            output_path: Output file path
        """
        path = Path(output_path)
        data = self.model_dump()

        with open(path, 'w', encoding='utf-8') as f:
            if path.suffix in ['.yaml', '.yml']:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            elif path.suffix == '.json':
                json.dump(data, f, indent=2)
            else:
                raise ValueError(f"Unsupported output format: {path.suffix}")


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file.

    Search order:
    1. Provided config_path
    2. Environment variable P1_CONFIG
    3. config.yaml in current directory
    4. /etc/p1-gateway/config.yaml

    Args:
        config_path: Optional explicit config path

    Returns:
        Config instance

    Raises:
        FileNotFoundError: If no config file found
    """
    # 1. Explicit path
    if config_path:
        return Config.load_from_file(config_path)

    # 2. Environment variable
    env_config = os.getenv("P1_CONFIG")
    if env_config and Path(env_config).exists():
        return Config.load_from_file(env_config)

    # 3. config.yaml in current directory
    if Path("config.yaml").exists():
        return Config.load_from_file("config.yaml")

    # 4. System config
    if Path("/etc/p1-gateway/config.yaml").exists():
        return Config.load_from_file("/etc/p1-gateway/config.yaml")

    raise FileNotFoundError(
        "No configuration file found. "
        "Please provide config.yaml or set P1_CONFIG environment variable."
    )
