"""Configuration management for camscout."""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.common import AuthMode, DiscoveryMode


class DiscoveryConfig(BaseModel):
    """Configuration for camera discovery (multicast and subnet scanning)."""

    enabled: bool = Field(default=False, description="Run the discovery loop on its own cadence.")
    discovery_mode: DiscoveryMode = Field(default=DiscoveryMode.BOTH, description="Which discovery mechanisms to run: netscan, multicast or both.")
    subnets: List[str] = Field(default_factory=list, description="CIDR subnets to scan (e.g. ['192.168.1.0/24']). A comma separated string is accepted too.")
    infer_subnets_from_interfaces: bool = Field(default=False, description="When no subnets are configured, scan the subnets of the active interfaces.")
    ethernet_interface: Optional[str] = Field(default=None, description="Interface used to send multicast probes (e.g. 'eth0'). If empty, the OS picks the route.")
    scan_ports: List[str] = Field(default_factory=lambda: ["3702"], description="Ports probed on every scanned host.")

    probe_timeout_millis: int = Field(default=2000, ge=10, le=60000, description="Per-dial timeout budget for one host:port, including reading responses.")
    probe_async_limit: int = Field(default=4000, ge=1, le=100000, description="Maximum number of concurrent dials during a scan.")
    max_discover_duration_seconds: int = Field(default=300, ge=0, le=3600, description="Upper bound for one discovery pass. 0 disables the bound.")
    multicast_listen_seconds: float = Field(default=2.0, gt=0, le=60, description="How long to collect responses to a multicast probe.")

    interval_seconds: int = Field(default=300, ge=1, description="Cadence of the discovery loop in seconds.")

    @field_validator("subnets", "scan_ports", mode="before")
    @classmethod
    def _split_comma_separated(cls, value):
        # Subnets are often delivered as one comma separated string by config stores
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def probe_timeout_seconds(self) -> float:
        return self.probe_timeout_millis / 1000.0


class HealthCheckConfig(BaseModel):
    """Configuration for the periodic reachability check."""

    enabled: bool = Field(default=True, description="Run the health-check loop.")
    interval_seconds: int = Field(default=30, ge=1, description="Cadence of the health-check loop in seconds.")
    request_timeout_seconds: float = Field(default=5.0, gt=0, le=120, description="Timeout for each tier test request.")
    transport_probe: str = Field(default="http", pattern="^(http|tcp)$", description="Bare reachability probe: a single HTTP GET or a TCP connect.")
    max_concurrent_checks: int = Field(default=4, ge=1, le=256, description="Devices checked concurrently during one pass.")


class SchedulerConfig(BaseModel):
    """Limits shared by every repeating loop."""

    max_interval_seconds: int = Field(default=300, ge=1, description="Upper bound any loop interval is clamped to.")


class CredentialsConfig(BaseModel):
    """Configuration for device credentials."""

    default_auth_mode: AuthMode = Field(default=AuthMode.USERNAME_TOKEN, description="Auth mode assigned to newly discovered devices.")
    default_secret_path: str = Field(default="credentials001", description="Secret path assigned to newly discovered devices.")
    retry_interval_seconds: float = Field(default=1.0, gt=0, description="Polling interval when waiting for credentials to appear.")
    retry_max_wait_seconds: float = Field(default=20.0, ge=0, description="Maximum time to wait for credentials before giving up.")
    keyring_service_name: str = Field(default="camscout", description="Service name for keyring storage.")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format ('json' or 'console')")


class Config(BaseSettings):
    """Main configuration for camscout. Loads from environment variables prefixed with CAMSCOUT_."""

    model_config = SettingsConfigDict(
        env_prefix='CAMSCOUT_',
        env_nested_delimiter='__', # e.g., CAMSCOUT_DISCOVERY__PROBE_TIMEOUT_MILLIS
        extra='ignore',
        env_file='.env',
        env_file_encoding='utf-8'
    )

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    service_name: str = Field(default="camscout", description="Name of the control-plane device, skipped by health checks and reconciliation.")

    @classmethod
    def from_file(cls, file_path: Path) -> "Config":
        """Create configuration strictly from a JSON file.
        This does not layer with environment variables.
        """
        with open(file_path) as f:
            config_data = json.load(f)
        return cls.model_validate(config_data)
