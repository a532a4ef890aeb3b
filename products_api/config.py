"""
Products API - Configuration

Reads server and telemetry settings from the environment once at startup.
"""

import os
from dataclasses import dataclass, field


def _get_env(key: str, default: str) -> str:
    """Return the environment value, or the default when unset or empty."""
    value = os.getenv(key)
    if value:
        return value
    return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Parse a boolean flag. Only true, 1 and yes count as enabled."""
    value = os.getenv(key)
    if not value:
        return default
    return value.lower().strip() in ("true", "1", "yes")


def _get_env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {value!r}")


@dataclass
class ServerConfig:
    """HTTP listener settings."""
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class OTLPConfig:
    """Telemetry settings."""
    enabled: bool = True
    endpoint: str = "localhost:4317"
    service_name: str = "products-api"
    service_version: str = "1.0.0"
    environment: str = "development"
    shutdown_timeout_seconds: float = 5.0


@dataclass
class Config:
    """Complete service configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    otlp: OTLPConfig = field(default_factory=OTLPConfig)
    log_level: str = "DEBUG"


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Environment:
        SERVER_HOST, SERVER_PORT: listener address
        OTEL_ENABLED: export telemetry (default true)
        OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC collector endpoint
        OTEL_SERVICE_NAME, OTEL_ENVIRONMENT: resource attributes
        OTEL_SHUTDOWN_TIMEOUT: seconds allowed for exporter flush on exit
        LOG_LEVEL: root log level
    """
    port_raw = _get_env("SERVER_PORT", "8080")
    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"SERVER_PORT must be an integer, got {port_raw!r}")

    return Config(
        server=ServerConfig(
            host=_get_env("SERVER_HOST", "0.0.0.0"),
            port=port,
        ),
        otlp=OTLPConfig(
            enabled=_get_env_bool("OTEL_ENABLED", True),
            endpoint=_get_env("OTEL_EXPORTER_OTLP_ENDPOINT", "localhost:4317"),
            service_name=_get_env("OTEL_SERVICE_NAME", "products-api"),
            environment=_get_env("OTEL_ENVIRONMENT", "development"),
            shutdown_timeout_seconds=_get_env_float("OTEL_SHUTDOWN_TIMEOUT", 5.0),
        ),
        log_level=_get_env("LOG_LEVEL", "DEBUG").upper(),
    )

