"""Configuration models.

A single :class:`UserPodsConfig` is built once at startup by
:func:`userpods.config.load_config` and handed to every component that
needs it.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class TimeoutConfig(BaseModel):
    """Upper bounds for provisioning waits, in seconds."""

    create_seconds: float = 90.0
    delete_seconds: float = 90.0


class ApiConfig(BaseModel):
    port: int = 8080


class LogConfig(BaseModel):
    level: str = "info"


class UserPodsConfig(BaseModel):
    """Root configuration object."""

    namespace: str = "sciencedata-dev"
    token_dir: Path = Path("/tmp/tokens")
    restart_policy: str = ""
    public_ip: str = ""
    whitelist_manifest_regex: str = ".*"
    token_byte_limit: int = 4096
    nfs_storage_root: str = "/tank/storage"
    storage_size: str = "10Gi"
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    log: LogConfig = Field(default_factory=LogConfig)
