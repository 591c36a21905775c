"""Global configuration management.

Config is loaded at module import time and available globally via:
    from whatsrelay.config import config
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from instrukt_ai_logging import get_logger

from whatsrelay.constants import DEFAULT_LAB_NAME, DEFAULT_REMEDIATION_HINT, MAX_UPLOAD_BYTES
from whatsrelay.utils import expand_env_vars

logger = get_logger(__name__)

# Project root (relative to this file)
_project_root = Path(__file__).parent.parent.parent

# Load .env (allow override for tests)
_env_path = os.getenv("WHATSRELAY_ENV_PATH")
_dotenv_path = Path(_env_path).expanduser() if _env_path else _project_root / ".env"
if not _dotenv_path.is_absolute():
    _dotenv_path = (_project_root / _dotenv_path).resolve()

load_dotenv(_dotenv_path)


@dataclass
class FailoverConfig:
    """Orchestrator escalation ceiling and restart delay."""

    max_attempts: int = 2
    restart_delay_s: float = 2.0


@dataclass
class BridgeConfig:
    """Connection settings shared by the bridge-backed backends."""

    url: str = ""
    api_key: str | None = None
    session: str = "default"
    poll_interval_s: float = 2.0
    request_timeout_s: float = 15.0
    restart_delay_s: float = 2.0
    qr_timeout_s: float = 30.0
    reconnect_delay_s: float = 5.0


@dataclass
class WebBackendConfig(BridgeConfig):
    """Full-featured backend: retry/recreate policy and attachment handling."""

    init_retries: int = 3
    init_retry_delay_s: float = 5.0
    auth_retry_delay_s: float = 5.0
    auth_retries: int = 2
    auth_retry_interval_s: float = 3.0
    reconnect_delay_s: float = 10.0
    reconnect_retries: int = 2
    cleanup_attachments: bool = True
    attachment_cleanup_delay_s: float = 5.0


@dataclass
class SocketBackendConfig(BridgeConfig):
    """Lightweight backend: text only, single reconnect loop."""


@dataclass
class DegradedBackendConfig:
    settle_delay_s: float = 1.0
    restart_delay_s: float = 2.0
    remediation_hint: str = DEFAULT_REMEDIATION_HINT


@dataclass
class PhoneConfig:
    """Recipient normalization policy.

    An empty default_country_code disables the country code heuristic.
    """

    default_country_code: str = "1"
    national_number_length: int = 10


@dataclass
class MessagesConfig:
    log_limit: int = 1000
    lab_name: str = DEFAULT_LAB_NAME


@dataclass
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 3001
    uploads_dir: str = "uploads"
    max_upload_bytes: int = MAX_UPLOAD_BYTES


@dataclass
class Config:
    failover: FailoverConfig
    web: WebBackendConfig
    socket: SocketBackendConfig
    degraded: DegradedBackendConfig
    phone: PhoneConfig
    messages: MessagesConfig
    api: ApiConfig


# Default configuration values (single source of truth for user-configurable keys)
DEFAULT_CONFIG: dict[str, dict[str, object]] = {  # guard: loose-dict - YAML configuration structure
    "failover": {
        "max_attempts": 2,
        "restart_delay_s": 2.0,
    },
    "web": {
        "url": "",
        "api_key": None,
        "session": "default",
        "poll_interval_s": 2.0,
        "request_timeout_s": 15.0,
        "restart_delay_s": 2.0,
        "qr_timeout_s": 30.0,
        "init_retries": 3,
        "init_retry_delay_s": 5.0,
        "auth_retry_delay_s": 5.0,
        "auth_retries": 2,
        "auth_retry_interval_s": 3.0,
        "reconnect_delay_s": 10.0,
        "reconnect_retries": 2,
        "cleanup_attachments": True,
        "attachment_cleanup_delay_s": 5.0,
    },
    "socket": {
        "url": "",
        "api_key": None,
        "session": "default",
        "poll_interval_s": 2.0,
        "request_timeout_s": 15.0,
        "restart_delay_s": 2.0,
        "qr_timeout_s": 30.0,
        "reconnect_delay_s": 5.0,
    },
    "degraded": {
        "settle_delay_s": 1.0,
        "restart_delay_s": 2.0,
        "remediation_hint": DEFAULT_REMEDIATION_HINT,
    },
    "phone": {
        "default_country_code": "1",
        "national_number_length": 10,
    },
    "messages": {
        "log_limit": 1000,
        "lab_name": DEFAULT_LAB_NAME,
    },
    "api": {
        "host": "0.0.0.0",
        "port": 3001,
        "uploads_dir": "uploads",
        "max_upload_bytes": MAX_UPLOAD_BYTES,
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:  # guard: loose-dict - YAML config merge
    """Deep merge override dict into base dict.

    Args:
        base: Base dictionary with defaults
        override: Dictionary with overrides from user config

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _optional_str(value: object) -> str | None:
    return str(value) if value else None


def _build_bridge_kwargs(raw: dict[str, Any]) -> dict[str, Any]:  # guard: loose-dict - YAML section
    return {
        "url": str(raw.get("url") or "").rstrip("/"),
        "api_key": _optional_str(raw.get("api_key")),
        "session": str(raw.get("session") or "default"),
        "poll_interval_s": float(raw["poll_interval_s"]),
        "request_timeout_s": float(raw["request_timeout_s"]),
        "restart_delay_s": float(raw["restart_delay_s"]),
        "qr_timeout_s": float(raw["qr_timeout_s"]),
        "reconnect_delay_s": float(raw["reconnect_delay_s"]),
    }


def build_config(raw: dict[str, Any]) -> Config:  # guard: loose-dict - YAML deserialization input
    """Build typed Config from raw dict with proper type conversion."""
    unknown = set(raw) - set(DEFAULT_CONFIG)
    if unknown:
        logger.warning("Unknown config keys ignored: %s", sorted(unknown))

    failover_raw = raw["failover"]
    web_raw = raw["web"]
    socket_raw = raw["socket"]
    degraded_raw = raw["degraded"]
    phone_raw = raw["phone"]
    messages_raw = raw["messages"]
    api_raw = raw["api"]

    return Config(
        failover=FailoverConfig(
            max_attempts=int(failover_raw["max_attempts"]),
            restart_delay_s=float(failover_raw["restart_delay_s"]),
        ),
        web=WebBackendConfig(
            **_build_bridge_kwargs(web_raw),
            init_retries=int(web_raw["init_retries"]),
            init_retry_delay_s=float(web_raw["init_retry_delay_s"]),
            auth_retry_delay_s=float(web_raw["auth_retry_delay_s"]),
            auth_retries=int(web_raw["auth_retries"]),
            auth_retry_interval_s=float(web_raw["auth_retry_interval_s"]),
            reconnect_retries=int(web_raw["reconnect_retries"]),
            cleanup_attachments=bool(web_raw["cleanup_attachments"]),
            attachment_cleanup_delay_s=float(web_raw["attachment_cleanup_delay_s"]),
        ),
        socket=SocketBackendConfig(**_build_bridge_kwargs(socket_raw)),
        degraded=DegradedBackendConfig(
            settle_delay_s=float(degraded_raw["settle_delay_s"]),
            restart_delay_s=float(degraded_raw["restart_delay_s"]),
            remediation_hint=str(degraded_raw["remediation_hint"]),
        ),
        phone=PhoneConfig(
            default_country_code=str(phone_raw.get("default_country_code") or ""),
            national_number_length=int(phone_raw["national_number_length"]),
        ),
        messages=MessagesConfig(
            log_limit=int(messages_raw["log_limit"]),
            lab_name=str(messages_raw["lab_name"]),
        ),
        api=ApiConfig(
            host=str(api_raw["host"]),
            port=int(api_raw["port"]),
            uploads_dir=str(api_raw["uploads_dir"]),
            max_upload_bytes=int(api_raw["max_upload_bytes"]),
        ),
    )


def load_config(path: Path) -> Config:
    """Load config.yml, expand ${VAR} references and merge onto defaults.

    A missing file yields the defaults.
    """
    user_config: Any = {}
    if path.exists():
        with open(path, encoding="utf-8") as f:
            raw_user_config = yaml.safe_load(f)
        if isinstance(raw_user_config, dict):
            user_config = expand_env_vars(raw_user_config)
    return build_config(_deep_merge(DEFAULT_CONFIG, user_config))


# Load config.yml from project root (optional)
_config_env_path = os.getenv("WHATSRELAY_CONFIG_PATH")
_config_path = Path(_config_env_path).expanduser() if _config_env_path else _project_root / "config.yml"
if not _config_path.is_absolute():
    _config_path = (_project_root / _config_path).resolve()

config = load_config(_config_path)
