from __future__ import annotations

import json
import logging
import os
from typing import Mapping

import yaml
from pydantic import ValidationError

from .models import (
    MetricsConfig,
    PeerProfileConfig,
    ServerConfig,
    ServiceConfig,
    WhoIsConfig,
)

__all__ = [
    "MetricsConfig",
    "PeerProfileConfig",
    "ServerConfig",
    "ServiceConfig",
    "ValidationError",
    "WhoIsConfig",
    "config_from_env",
    "load_config",
    "parse_config",
]

_LOGGER = logging.getLogger("peerhello.config")


def load_config(path: str) -> dict:
    if path.endswith(".json"):
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    if path.endswith(".yaml") or path.endswith(".yml"):
        with open(path, "r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}
    raise ValueError("Config file must be .json or .yaml")


def parse_config(data: Mapping[str, object]) -> ServiceConfig:
    return ServiceConfig.model_validate(data)


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        _LOGGER.warning("Invalid %s=%r; using %d", name, raw, default)
        return default


def _read_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        _LOGGER.warning("Invalid %s=%r; using %.2f", name, raw, default)
        return default
    if value <= 0.0:
        _LOGGER.warning("Invalid %s=%r; using %.2f", name, raw, default)
        return default
    return value


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    _LOGGER.warning("Invalid %s=%r; using %s", name, raw, default)
    return default


def config_from_env(base: ServiceConfig | None = None) -> ServiceConfig:
    """Build the service config from ``PEERHELLO_CONFIG`` plus ``PEERHELLO_*`` overrides."""
    if base is None:
        path = os.getenv("PEERHELLO_CONFIG")
        base = parse_config(load_config(path)) if path else ServiceConfig()

    data = base.model_dump()
    server = data["server"]
    whois = data["whois"]
    server["host"] = os.getenv("PEERHELLO_HOST", server["host"])
    server["port"] = _read_int("PEERHELLO_PORT", server["port"])
    server["dev"] = _read_bool("PEERHELLO_DEV", server["dev"])
    server["ui_dir"] = os.getenv("PEERHELLO_UI_DIR") or server["ui_dir"]
    whois["backend"] = os.getenv("PEERHELLO_WHOIS_BACKEND", whois["backend"]).strip().lower()
    whois["socket_path"] = os.getenv("PEERHELLO_WHOIS_SOCKET") or whois["socket_path"]
    whois["timeout_sec"] = _read_positive_float("PEERHELLO_WHOIS_TIMEOUT_SEC", whois["timeout_sec"])
    data["metrics"]["enabled"] = _read_bool("PEERHELLO_PROMETHEUS_ENABLED", data["metrics"]["enabled"])
    return parse_config(data)
