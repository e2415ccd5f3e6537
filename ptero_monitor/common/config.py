"""
Configuration Dataclasses

Type-safe configuration structures for the update monitor.
All configuration is read once at startup from a YAML file.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from .exceptions import ConfigError

DEFAULT_UPDATE_MESSAGE = "Server '{ServerName}' is updating!"
DEFAULT_CHECK_INTERVAL_S = 3600
DEFAULT_STATUS_PORT = 8090


@dataclass(frozen=True)
class TargetConfig:
    """One monitored game server and its panel endpoints"""
    name: str
    manifest_url: str
    server_url: str  # SS14 status/watchdog API base, e.g. http://1.2.3.4:1212
    pterodactyl_api_key: str
    pterodactyl_api_url: str
    pterodactyl_server_id: str
    check_interval_seconds: int = DEFAULT_CHECK_INTERVAL_S
    discord_webhook_url: str | None = None
    discord_update_message: str = DEFAULT_UPDATE_MESSAGE
    log_color: str | None = None

    def server_api_url(self, endpoint: str) -> str:
        """URL of an endpoint on the game server itself"""
        return _ensure_trailing_slash(self.server_url) + endpoint

    def panel_api_url(self, endpoint: str) -> str:
        """URL of a client API endpoint for this server on the panel"""
        return (
            _ensure_trailing_slash(self.pterodactyl_api_url)
            + f"api/client/servers/{self.pterodactyl_server_id}/{endpoint}"
        )

    @property
    def panel_origin(self) -> str:
        """Scheme and authority of the panel, used as websocket Origin"""
        parts = urlsplit(self.pterodactyl_api_url)
        return f"{parts.scheme}://{parts.netloc}"

    def render_update_message(self) -> str:
        return self.discord_update_message.replace("{ServerName}", self.name)


@dataclass(frozen=True)
class UpdateTimings:
    """Delays and ceilings used by the orchestrator (seconds)"""
    busy_backoff_s: float = 30.0
    cycle_timeout_s: float = 15 * 60.0
    kill_delay_s: float = 5.0
    reinstall_delay_s: float = 5.0
    start_delay_s: float = 15.0
    stop_grace_s: float = 5.0
    ws_reconnect_timeout_s: float = 30.0
    ws_error_reconnect_s: float = 30.0


@dataclass
class StatusSettings:
    """Local health/status HTTP server"""
    host: str = "127.0.0.1"
    port: int = DEFAULT_STATUS_PORT


@dataclass
class AppSettings:
    """Complete application settings"""
    servers: list[TargetConfig] = field(default_factory=list)
    timings: UpdateTimings = field(default_factory=UpdateTimings)
    status: StatusSettings = field(default_factory=StatusSettings)


def _ensure_trailing_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def validate_target(target: TargetConfig) -> list[str]:
    """
    Check that a target is complete enough to be monitored.

    Returns:
        List of problems; empty when the target is usable
    """
    errors: list[str] = []

    required = [
        ("name", target.name),
        ("manifest_url", target.manifest_url),
        ("server_url", target.server_url),
        ("pterodactyl_api_key", target.pterodactyl_api_key),
        ("pterodactyl_api_url", target.pterodactyl_api_url),
        ("pterodactyl_server_id", target.pterodactyl_server_id),
    ]
    for key, value in required:
        if _is_blank(value):
            errors.append(f"{key} is missing")

    if target.check_interval_seconds <= 0:
        errors.append("check_interval_seconds must be positive")

    return errors


def parse_target(data: dict[str, Any]) -> TargetConfig:
    """Build a TargetConfig from one entry of the `servers` list"""
    if not isinstance(data, dict):
        raise ConfigError(f"Server entry must be a mapping, got {type(data).__name__}")

    try:
        interval = int(data.get("check_interval_seconds", DEFAULT_CHECK_INTERVAL_S))
    except (TypeError, ValueError):
        raise ConfigError(
            f"check_interval_seconds for '{data.get('name')}' is not an integer"
        )

    return TargetConfig(
        name=str(data.get("name") or ""),
        manifest_url=str(data.get("manifest_url") or ""),
        server_url=str(data.get("server_url") or data.get("server_ip") or ""),
        pterodactyl_api_key=str(
            data.get("pterodactyl_api_key") or os.environ.get("PTERODACTYL_API_KEY", "")
        ),
        pterodactyl_api_url=str(
            data.get("pterodactyl_api_url") or os.environ.get("PTERODACTYL_API_URL", "")
        ),
        pterodactyl_server_id=str(data.get("pterodactyl_server_id") or ""),
        check_interval_seconds=interval,
        discord_webhook_url=data.get("discord_webhook_url") or None,
        discord_update_message=data.get("discord_update_message") or DEFAULT_UPDATE_MESSAGE,
        log_color=data.get("log_color") or None,
    )


def parse_timings(data: dict[str, Any] | None) -> UpdateTimings:
    """Build UpdateTimings, ignoring unknown keys"""
    if not data:
        return UpdateTimings()

    if not isinstance(data, dict):
        raise ConfigError(f"timings must be a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(UpdateTimings)}
    values = {}
    for key, value in data.items():
        if key not in known:
            continue
        try:
            values[key] = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"timings.{key} is not a number: {value!r}")
    return UpdateTimings(**values)


def parse_status(data: dict[str, Any] | None) -> StatusSettings:
    """Build StatusSettings; port 0 disables the status server"""
    if not data:
        return StatusSettings()
    if not isinstance(data, dict):
        raise ConfigError(f"status must be a mapping, got {type(data).__name__}")

    port = data.get("port", DEFAULT_STATUS_PORT)
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ConfigError(f"status.port is not an integer: {port!r}")

    return StatusSettings(host=str(data.get("host", "127.0.0.1")), port=port)


def parse_settings(raw: dict[str, Any]) -> AppSettings:
    """Build AppSettings from an already-decoded YAML document"""
    servers = raw.get("servers") or []
    if not isinstance(servers, list) or not servers:
        raise ConfigError("No servers configured")

    return AppSettings(
        servers=[parse_target(entry) for entry in servers],
        timings=parse_timings(raw.get("timings")),
        status=parse_status(raw.get("status")),
    )


def load_settings(config_path: str | Path) -> AppSettings:
    """
    Load settings from a YAML file.

    Args:
        config_path: Path to configuration file

    Raises:
        ConfigError: file missing, unreadable YAML or no servers
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing {path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")

    return parse_settings(raw)
