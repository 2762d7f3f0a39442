from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path

import yaml

from .errors import ConfigError
from .protocol import DEFAULT_TARGET_PORT
from .server import DEFAULT_HOST_PORT

APP_NAME = "fbisender"
ROUTE_PROBE = ("8.8.8.8", 53)


@dataclass(frozen=True, slots=True)
class Config:
    target_ip: str
    target_port: int = DEFAULT_TARGET_PORT
    host_ip: str = ""
    host_port: int = DEFAULT_HOST_PORT


def default_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME / "config.yaml"


def detect_host_ip() -> str:
    """Address of the interface outbound traffic leaves through. Nothing is sent."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(ROUTE_PROBE)
            return s.getsockname()[0]
    except OSError as exc:
        raise ConfigError("detecting host IP") from exc


def read_config_file(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"reading {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing {path}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping of settings")
    return data


def _setting(data: dict, key: str, default):
    # An empty YAML value means unset; 0 is passed on and rejected.
    value = data.get(key)
    return default if value is None or value == "" else value


def _port(value, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a port number, got {value!r}")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a port number, got {value!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"{key} must be between 1 and 65535, got {port}")
    return port


def load_config(
    path: str | Path | None = None,
    *,
    target_ip: str | None = None,
    target_port: int | None = None,
    host_ip: str | None = None,
    host_port: int | None = None,
) -> Config:
    """Resolve settings from the YAML file and command-line overrides.

    The default file may be absent when ``target_ip`` is passed directly; an
    explicitly named file must exist. An unset ``host_ip`` is auto-detected.
    """
    config_path = Path(path) if path is not None else default_config_path()
    if path is not None or config_path.exists() or target_ip is None:
        if not config_path.exists():
            raise ConfigError(f"{config_path}: no such file; set target_ip there or pass --target-ip")
        data = read_config_file(config_path)
    else:
        data = {}

    overrides = {
        "target_ip": target_ip,
        "target_port": target_port,
        "host_ip": host_ip,
        "host_port": host_port,
    }
    for key, value in overrides.items():
        if value is not None:
            data[key] = value

    resolved_target = str(data.get("target_ip") or "").strip()
    if not resolved_target:
        raise ConfigError(f"target_ip is required (set it in {config_path} or pass --target-ip)")

    resolved_host = str(data.get("host_ip") or "").strip()
    if not resolved_host:
        print("Detecting host IP...")
        resolved_host = detect_host_ip()

    return Config(
        target_ip=resolved_target,
        target_port=_port(_setting(data, "target_port", DEFAULT_TARGET_PORT), "target_port"),
        host_ip=resolved_host,
        host_port=_port(_setting(data, "host_port", DEFAULT_HOST_PORT), "host_port"),
    )
