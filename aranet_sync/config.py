"""Configuration models using Pydantic for validation."""
from typing import Any, Dict, Literal, Optional
from urllib.parse import urlsplit
from pydantic import BaseModel, Field, field_validator
import os
import socket


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


class ServerConfig(BaseModel):
    """Status page / pairing web server."""
    host: str = "0.0.0.0"
    port: int = 9090


class PrometheusConfig(BaseModel):
    """Prometheus backend used for both queries and remote write."""
    url: str = "http://localhost:9090/"
    prefix: str = "aranet4_"
    job: str = "aranet4"
    instance: str = Field(default_factory=socket.gethostname)
    dry_run: bool = False
    # aranet4 stores data locally for up to 30 days.
    lookback_days: int = 30
    query_timeout_s: float = 30.0
    write_timeout_s: float = 30.0

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Reject endpoints that cannot be turned into API URLs."""
        if not v:
            raise ValueError("Prometheus URL is required")
        try:
            parts = urlsplit(v)
        except ValueError as e:
            raise ValueError(f"failed to parse URL {v!r}: {e}")
        if not parts.netloc:
            raise ValueError(f"URL {v!r} has no host")
        if not parts.scheme:
            raise ValueError(f"URL {v!r} has no scheme")
        return v


class DeviceConfig(BaseModel):
    """Device acquisition settings."""
    address: str = "F5:6C:BE:D5:61:47"
    acquirer: Optional[str] = None  # "package.module:ClassName"
    options: Dict[str, Any] = Field(default_factory=dict)
    read_timeout_s: float = 120.0


class RefreshConfig(BaseModel):
    """Refresh loop timing."""
    interval_s: float = 3600.0
    retry_backoff_s: float = 1.0
    cycle_timeout_s: float = 300.0

    @field_validator('interval_s', 'retry_backoff_s', 'cycle_timeout_s')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v


class PairingConfig(BaseModel):
    """Passkey handoff settings."""
    terminal_prompt: bool = True
    delivery_timeout_s: float = 5.0
    pairing_timeout_s: float = 120.0


class Config(BaseModel):
    """Root configuration model."""
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    server: ServerConfig = Field(default_factory=ServerConfig)
    prometheus: PrometheusConfig = Field(default_factory=PrometheusConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)

    model_config = {"populate_by_name": True}

    def series_labels(self) -> Dict[str, str]:
        """Identifying labels attached to every written series."""
        return {
            "job": self.prometheus.job,
            "instance": self.prometheus.instance,
            "device_addr": self.device.address,
        }


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate configuration from a YAML file (or defaults)."""
    import yaml

    raw_config: Dict[str, Any] = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_url := os.getenv('PROMETHEUS_URL'):
        raw_config.setdefault('prometheus', {})['url'] = env_url

    if env_dry_run := os.getenv('DRY_RUN'):
        raw_config.setdefault('prometheus', {})['dry_run'] = env_dry_run.lower() in ("1", "true", "yes")

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
