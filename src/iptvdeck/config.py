"""Configuration management for iptvdeck."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .logging_utils import get_logger

CONFIG_PATH = Path.home() / ".config" / "iptvdeck" / "config.yaml"
ENV_BASE_URL = "IPTVDECK_BASE_URL"

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_DISPLAY_LIMIT = 200
DEFAULT_REQUEST_TIMEOUT = 10.0

log = get_logger(__name__)


@dataclass(slots=True)
class PanelConfig:
    """Connection and display settings for the panel backend."""

    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    display_limit: int = DEFAULT_DISPLAY_LIMIT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    user_agent: Optional[str] = None


def normalize_base_url(value: str) -> str:
    """Return *value* with a scheme and without a trailing slash."""

    base = value.strip()
    if not base:
        raise ValueError("Backend base URL cannot be empty")
    if "://" not in base:
        base = f"http://{base}"
    return base.rstrip("/")


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _clean_scalar(value: str) -> str:
    value = value.strip()
    if value.startswith(("'", '"')) and value.endswith(("'", '"')):
        value = value[1:-1]
    return value


def _parse_config(raw: str) -> dict[str, object]:
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        pass
    else:
        return data if isinstance(data, dict) else {}

    result: dict[str, object] = {}
    for line in raw.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        key, sep, remainder = line.partition(":")
        if not sep:
            log.warning("Ignoring malformed configuration line: %s", line.strip())
            continue
        result[key.strip()] = _clean_scalar(remainder)
    return result


def _coerce_float(name: str, value: object, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        log.warning("Invalid %s value %r; using %s", name, value, default)
        return default
    if number <= 0:
        log.warning("Non-positive %s value %r; using %s", name, value, default)
        return default
    return number


def _coerce_int(name: str, value: object, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        log.warning("Invalid %s value %r; using %s", name, value, default)
        return default
    if number <= 0:
        log.warning("Non-positive %s value %r; using %s", name, value, default)
        return default
    return number


def _dump_config(config: PanelConfig) -> str:
    lines = [
        "base_url: " + config.base_url,
        f"poll_interval: {config.poll_interval:g}",
        f"display_limit: {config.display_limit}",
        f"request_timeout: {config.request_timeout:g}",
    ]
    if config.user_agent:
        lines.append("user_agent: " + config.user_agent)
    lines.append("")
    return "\n".join(lines)


def load_config(path: Optional[Path] = None) -> PanelConfig:
    """Load configuration from *path* or return the defaults."""

    config_path = path or CONFIG_PATH
    if not config_path.exists():
        log.info("Configuration file missing at %s; using defaults", config_path)
        return PanelConfig()
    log.debug("Loading configuration from %s", config_path)
    data = _parse_config(config_path.read_text(encoding="utf8"))

    base_url = DEFAULT_BASE_URL
    base_raw = data.get("base_url")
    if isinstance(base_raw, str) and base_raw.strip():
        try:
            base_url = normalize_base_url(base_raw)
        except ValueError:
            log.warning("Invalid base_url %r; using %s", base_raw, DEFAULT_BASE_URL)

    user_agent_raw = data.get("user_agent")
    user_agent = (
        user_agent_raw.strip()
        if isinstance(user_agent_raw, str) and user_agent_raw.strip()
        else None
    )
    config = PanelConfig(
        base_url=base_url,
        poll_interval=_coerce_float(
            "poll_interval", data.get("poll_interval"), DEFAULT_POLL_INTERVAL
        ),
        display_limit=_coerce_int(
            "display_limit", data.get("display_limit"), DEFAULT_DISPLAY_LIMIT
        ),
        request_timeout=_coerce_float(
            "request_timeout", data.get("request_timeout"), DEFAULT_REQUEST_TIMEOUT
        ),
        user_agent=user_agent,
    )
    log.info("Loaded configuration for backend %s from %s", config.base_url, config_path)
    return config


def apply_environment(config: PanelConfig) -> PanelConfig:
    """Override *config* with values from the process environment."""

    override = os.getenv(ENV_BASE_URL)
    if override:
        try:
            config.base_url = normalize_base_url(override)
        except ValueError:
            log.warning("Ignoring empty %s override", ENV_BASE_URL)
        else:
            log.debug("Backend base URL overridden from environment: %s", config.base_url)
    return config


def save_config(config: PanelConfig, path: Optional[Path] = None) -> None:
    """Persist *config* to disk at *path*."""

    config_path = path or CONFIG_PATH
    _ensure_parent(config_path)
    config_path.write_text(_dump_config(config), encoding="utf8")
    log.info("Configuration saved to %s", config_path)


__all__ = [
    "CONFIG_PATH",
    "DEFAULT_DISPLAY_LIMIT",
    "DEFAULT_POLL_INTERVAL",
    "ENV_BASE_URL",
    "PanelConfig",
    "apply_environment",
    "load_config",
    "normalize_base_url",
    "save_config",
]
