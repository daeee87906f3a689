"""Environment variable loading and validation for :class:`UserPodsConfig`.

Every setting is read from a ``USERPODS_*`` variable. Numeric settings are
clamped to their allowed range; settings that cannot be clamped raise
``ValueError``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from userpods.models.config import ApiConfig, LogConfig, TimeoutConfig, UserPodsConfig

_PREFIX = "USERPODS_"

_VALID_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error"})
_VALID_RESTART_POLICIES: frozenset[str] = frozenset({"Always", "OnFailure", "Never", ""})
_IPV4_RE = re.compile(r"^(\d{1,3}[.]){3}\d{1,3}$")


def _env(name: str, default: str) -> str:
    return os.environ.get(_PREFIX + name, default)


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = _env(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_PREFIX}{name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _env_seconds(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = _env(name, str(default))
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid duration for {_PREFIX}{name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _validate_log_level(raw: str) -> str:
    level = raw.strip().lower()
    if level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {raw!r}")
    return level


def _validate_restart_policy(raw: str) -> str:
    if raw not in _VALID_RESTART_POLICIES:
        raise ValueError(f'Invalid restart policy {raw!r}. Must be "Always", "OnFailure", "Never", or empty')
    return raw


def _validate_public_ip(raw: str) -> str:
    if raw and not _IPV4_RE.match(raw):
        raise ValueError(f"Public IP {raw} not a valid ip address")
    return raw


def _validate_regex(raw: str) -> str:
    try:
        re.compile(raw)
    except re.error as exc:
        raise ValueError(f"Invalid whitelist manifest regex: {exc}") from exc
    return raw


def load_config() -> UserPodsConfig:
    """Build the configuration from ``USERPODS_*`` environment variables.

    Raises:
        ValueError: if a setting is malformed and cannot be clamped.
    """
    namespace = _env("NAMESPACE", "sciencedata-dev").strip()
    if not namespace:
        raise ValueError("Namespace must not be empty")

    return UserPodsConfig(
        namespace=namespace,
        token_dir=Path(_env("TOKEN_DIR", "/tmp/tokens")),
        restart_policy=_validate_restart_policy(_env("RESTART_POLICY", "")),
        public_ip=_validate_public_ip(_env("PUBLIC_IP", "")),
        whitelist_manifest_regex=_validate_regex(_env("WHITELIST_MANIFEST_REGEX", ".*")),
        token_byte_limit=_env_int("TOKEN_BYTE_LIMIT", 4096, 1, 65536),
        nfs_storage_root=_env("NFS_STORAGE_ROOT", "/tank/storage").rstrip("/") or "/",
        storage_size=_env("STORAGE_SIZE", "10Gi"),
        timeouts=TimeoutConfig(
            create_seconds=_env_seconds("TIMEOUT_CREATE", 90.0, 5.0, 600.0),
            delete_seconds=_env_seconds("TIMEOUT_DELETE", 90.0, 5.0, 600.0),
        ),
        api=ApiConfig(port=_env_int("API_PORT", 8080, 1024, 65535)),
        log=LogConfig(level=_validate_log_level(_env("LOG_LEVEL", "info"))),
    )
