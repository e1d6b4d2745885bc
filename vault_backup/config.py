"""Application configuration management."""

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Path of the YAML config file given on the command line, if any
_config_path: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from a YAML file and environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Vault
    vault_address: str = "http://127.0.0.1:8200"
    vault_app_role_id: str = ""
    vault_app_secret_id: str = ""
    vault_web_socket_event_base_url: str = "ws://127.0.0.1:8200"
    vault_listened_event_type: str = "kv-v2/data-write"
    vault_scheduled_snapshot_interval: str = "24h"
    vault_snapshot_folder: str = "/var/lib/vault-backup/snapshots"
    vault_request_timeout: float = 60.0

    # Event merger
    event_queue_size: int = 10

    # Push subscription reconnection (0 = a lost connection ends the source)
    push_max_reconnects: int = 0
    push_reconnect_base_delay: float = 1.0
    push_reconnect_max_delay: float = 60.0

    # Google Drive
    google_on_event_deploy_folder_id: str = ""
    google_scheduled_deploy_folder_id: str = ""
    google_service_account_file: Optional[str] = None
    google_service_account_kv_mount: str = "google_drive"
    google_service_account_kv_path: str = "service_account"
    google_backup_file_retention_days: int = 30

    # Retention sweep
    retention_sweep_interval: Optional[str] = None  # Defaults to the snapshot interval
    retention_max_concurrent_deletes: int = 4

    # Email notifications
    email_host: Optional[str] = None
    email_host_port: int = 587
    email_mailbox: str = ""
    email_notify_addresses: str = ""
    email_kv_mount: str = "secret"
    email_kv_path: str = "email"

    # Status server
    status_server_enabled: bool = False
    status_server_host: str = "0.0.0.0"
    status_server_port: int = 8080

    # Logging
    log_file_path: Optional[str] = None
    log_level: str = "info"

    # Seconds to wait for an in-flight backup on shutdown
    shutdown_timeout: float = 300.0

    @field_validator("email_notify_addresses", mode="before")
    @classmethod
    def _join_address_list(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return value

    @property
    def sweep_interval(self) -> str:
        """Interval expression for the retention sweep job."""
        return self.retention_sweep_interval or self.vault_scheduled_snapshot_interval

    @property
    def events_subscription_url(self) -> str:
        """Websocket URL of the Vault event subscription."""
        base = self.vault_web_socket_event_base_url.rstrip("/")
        return f"{base}/v1/sys/events/subscribe/{self.vault_listened_event_type}?json=true"


def _flatten(data: dict, prefix: str = "") -> dict:
    """Flatten nested YAML sections into ``section_key`` field names."""
    flat: dict = {}
    for key, value in data.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        else:
            flat[name] = value
    return flat


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Build settings from an optional YAML file plus the environment.

    Values from the file take precedence over plain environment variables,
    except ``VAULT_ADDR`` and ``APPROLE_SECRET_ID`` which always win.
    """
    values: dict = {}

    if config_path:
        path = Path(config_path)
        if not path.is_file():
            raise FileNotFoundError(f"Config file not found at {config_path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        values = _flatten(raw)

    if os.environ.get("VAULT_ADDR"):
        values["vault_address"] = os.environ["VAULT_ADDR"]
    if os.environ.get("APPROLE_SECRET_ID"):
        values["vault_app_secret_id"] = os.environ["APPROLE_SECRET_ID"]

    return Settings(**values)


def set_config_path(config_path: Optional[str]) -> None:
    """Point get_settings() at a YAML config file."""
    global _config_path
    _config_path = config_path
    get_settings.cache_clear()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings(_config_path)


def parse_address_list(raw: Optional[str]) -> list[str]:
    """Parse comma/newline/semicolon separated email addresses."""
    if not raw:
        return []

    addresses: list[str] = []
    for token in re.split(r"[,\n;]+", raw):
        email = token.strip()
        if email and email not in addresses:
            addresses.append(email)
    return addresses
