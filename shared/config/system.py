from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.config.system")

_CONFIG_PATH = Path(__file__).parent / "system.json"


@dataclass
class FeedApiConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class PollingConfig:
    initial_seconds: float = 5.0
    min_seconds: float = 3.0
    max_seconds: float = 30.0
    hidden_seconds: float = 10.0
    max_consecutive_failures: int = 10
    request_timeout: float = 15.0
    session_ttl_seconds: float = 900.0


@dataclass
class SnapshotConfig:
    state_path: str = "shared/state/runtime_snapshot.json"
    interval_seconds: int = 30


@dataclass
class SystemConfig:
    retention: int = 100
    max_message_length: int = 300
    fetch_community_emotes: bool = True
    feed_api: FeedApiConfig = field(default_factory=FeedApiConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.debug(f"system.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load system.json ({e}); using defaults")
        return {}


def _coerce(raw: Any, default: Any, name: str) -> Any:
    """Cast `raw` to the type of `default`; warn and fall back on mismatch."""
    if raw is None:
        return default

    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        log.warning(f"{name} must be boolean; defaulting to {default}")
        return default

    try:
        return type(default)(raw)
    except (TypeError, ValueError):
        log.warning(f"{name} has invalid value {raw!r}; defaulting to {default}")
        return default


def _load_section(raw: Any, cls, prefix: str):
    defaults = cls()
    if not isinstance(raw, dict):
        return defaults

    values = {}
    for name, default in vars(defaults).items():
        values[name] = _coerce(raw.get(name), default, f"{prefix}.{name}")
    return cls(**values)


def load_system_config(raw: Optional[Dict[str, Any]] = None) -> SystemConfig:
    raw = raw if raw is not None else _load_json(_CONFIG_PATH)
    if not isinstance(raw, dict):
        raw = {}

    defaults = SystemConfig()
    retention = _coerce(raw.get("retention"), defaults.retention, "retention")
    if retention < 1:
        log.warning("retention must be positive; defaulting to 100")
        retention = defaults.retention

    max_length = _coerce(
        raw.get("max_message_length"), defaults.max_message_length, "max_message_length"
    )
    if max_length < 1:
        log.warning("max_message_length must be positive; defaulting to 300")
        max_length = defaults.max_message_length

    polling = _load_section(raw.get("polling"), PollingConfig, "polling")
    if polling.min_seconds > polling.max_seconds:
        log.warning("polling.min_seconds exceeds max_seconds; using defaults")
        polling = PollingConfig()

    return SystemConfig(
        retention=retention,
        max_message_length=max_length,
        fetch_community_emotes=_coerce(
            raw.get("fetch_community_emotes"),
            defaults.fetch_community_emotes,
            "fetch_community_emotes",
        ),
        feed_api=_load_section(raw.get("feed_api"), FeedApiConfig, "feed_api"),
        polling=polling,
        snapshot=_load_section(raw.get("snapshot"), SnapshotConfig, "snapshot"),
    )
