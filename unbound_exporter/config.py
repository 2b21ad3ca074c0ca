"""Environment-sourced configuration for the Unbound exporter."""

import re
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ('debug', 'info', 'warning', 'error', 'critical')
PREFIX_PATTERN = re.compile(r'^[a-zA-Z_:][a-zA-Z0-9_:]*$')
LOCAL_HOSTS = ('', '127.0.0.1', 'localhost')


class ExporterConfig(BaseSettings):
    """Exporter settings, read once at startup and passed to every component."""
    
    model_config = SettingsConfigDict(env_prefix='', case_sensitive=False, frozen=True, extra='ignore')
    
    # Unbound control channel
    unbound_control: str = Field(default='unbound-control', description='Path to unbound-control binary')
    unbound_host: str = Field(default='127.0.0.1', description='Unbound control host')
    unbound_port: int = Field(default=8953, ge=1, le=65535, description='Unbound control port')
    unbound_config: Optional[Path] = Field(default=None, description='unbound.conf passed to unbound-control -c')
    control_timeout: float = Field(default=10.0, gt=0, description='Timeout for each unbound-control call in seconds')
    
    # Exposition
    metrics_prefix: str = Field(default='unbound', description='Metrics name prefix')
    enable_histogram_metrics: bool = Field(default=True, description='Emit query duration histogram')
    enable_thread_metrics: bool = Field(default=True, description='Emit per-thread statistics')
    enable_memory_metrics: bool = Field(default=True, description='Emit memory statistics')
    
    # HTTP server
    listen_address: str = Field(default='0.0.0.0', description='HTTP server bind address')
    listen_port: int = Field(default=9167, ge=0, le=65535, description='HTTP server port (0 picks a free port)')
    max_connections: int = Field(default=10, ge=1, description='Maximum concurrent connections')
    timeout: float = Field(default=30.0, gt=0, description='Request timeout in seconds')
    pid_file: Optional[Path] = Field(default=None, description='Where the server records its pid')
    
    # Logging
    log_level: str = Field(default='info', description='Log level')
    
    @field_validator('metrics_prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not PREFIX_PATTERN.match(v):
            raise ValueError(f'invalid metrics prefix: {v!r}')
        return v
    
    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.lower()
        if v not in LOG_LEVELS:
            raise ValueError(f'log level must be one of {", ".join(LOG_LEVELS)}')
        return v
    
    @property
    def is_remote(self) -> bool:
        """Whether unbound-control must be pointed at an explicit server."""
        return self.unbound_host not in LOCAL_HOSTS


def load_config(**overrides) -> ExporterConfig:
    """Build the configuration from the environment, with optional overrides."""
    return ExporterConfig(**overrides)
