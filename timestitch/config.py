"""Configuration loading for TimeStitch."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class RemoteConfig:
    url: str = "http://localhost:54321"
    anon_key: str = ""
    access_token: str | None = None
    bucket: str = "memories"
    timeout_seconds: float = 10.0


@dataclass
class StorageConfig:
    db_path: str = "~/.timestitch/local.db"


@dataclass
class SyncConfig:
    """Configuration for the background sync engine."""

    enabled: bool = True
    interval_seconds: float = 30.0
    call_timeout_seconds: float = 10.0


@dataclass
class ConnectivityConfig:
    """Configuration for the remote reachability probe."""

    probe_enabled: bool = True
    probe_interval_seconds: float = 15.0


@dataclass
class ImageConfig:
    max_width: int = 1920
    quality: int = 80
    max_file_size_mb: int = 10

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class SharingConfig:
    base_url: str = "http://localhost:8080"


@dataclass
class Config:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    images: ImageConfig = field(default_factory=ImageConfig)
    sharing: SharingConfig = field(default_factory=SharingConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TIMESTITCH_ prefix."""
    return os.environ.get(f"TIMESTITCH_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Remote overrides
    if url := _get_env("REMOTE_URL"):
        config.remote.url = url
    if anon_key := _get_env("REMOTE_ANON_KEY"):
        config.remote.anon_key = anon_key
    if access_token := _get_env("REMOTE_ACCESS_TOKEN"):
        config.remote.access_token = access_token
    if bucket := _get_env("REMOTE_BUCKET"):
        config.remote.bucket = bucket
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)

    # Storage overrides
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_seconds = float(sync_interval)
    if call_timeout := _get_env("SYNC_CALL_TIMEOUT"):
        config.sync.call_timeout_seconds = float(call_timeout)

    # Connectivity overrides
    if probe_enabled := _get_env("PROBE_ENABLED"):
        config.connectivity.probe_enabled = _is_true(probe_enabled)
    if probe_interval := _get_env("PROBE_INTERVAL"):
        config.connectivity.probe_interval_seconds = float(probe_interval)

    # Sharing overrides
    if share_base_url := _get_env("SHARE_BASE_URL"):
        config.sharing.base_url = share_base_url

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    url=remote_data.get("url", config.remote.url),
                    anon_key=remote_data.get("anon_key", config.remote.anon_key),
                    access_token=remote_data.get("access_token"),
                    bucket=remote_data.get("bucket", config.remote.bucket),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                )

            # Parse storage config
            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path)
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    interval_seconds=sync_data.get(
                        "interval_seconds", config.sync.interval_seconds
                    ),
                    call_timeout_seconds=sync_data.get(
                        "call_timeout_seconds", config.sync.call_timeout_seconds
                    ),
                )

            # Parse connectivity config
            if "connectivity" in data:
                conn_data = data["connectivity"]
                config.connectivity = ConnectivityConfig(
                    probe_enabled=conn_data.get(
                        "probe_enabled", config.connectivity.probe_enabled
                    ),
                    probe_interval_seconds=conn_data.get(
                        "probe_interval_seconds",
                        config.connectivity.probe_interval_seconds,
                    ),
                )

            # Parse image config
            if "images" in data:
                img_data = data["images"]
                config.images = ImageConfig(
                    max_width=img_data.get("max_width", config.images.max_width),
                    quality=img_data.get("quality", config.images.quality),
                    max_file_size_mb=img_data.get(
                        "max_file_size_mb", config.images.max_file_size_mb
                    ),
                )

            # Parse sharing config
            if "sharing" in data:
                config.sharing = SharingConfig(
                    base_url=data["sharing"].get("base_url", config.sharing.base_url)
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)
