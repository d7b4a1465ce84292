"""
Configuration validation script.

Checks the channel configuration and runtime settings before a deploy.
The runtime itself only warns on schema problems; this script fails.

Design rules:
- No side effects on import
- No runtime startup
- Validation only (no mutation)
- Forward-compatible: unknown fields are ignored
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config_loader import CHANNELS_SCHEMA  # noqa: E402

# ------------------------------------------------------------
# Paths
# ------------------------------------------------------------

CONFIG_DIR = ROOT / "shared" / "config"

_SYSTEM_TYPES = {
    "retention": int,
    "max_message_length": int,
    "fetch_community_emotes": bool,
    "feed_api": dict,
    "polling": dict,
    "snapshot": dict,
}


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ValueError(f"{path.name}: invalid JSON ({e})") from e

    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: root JSON value must be an object")
    return data


def _error(msg: str):
    print(f"[CONFIG ERROR] {msg}", file=sys.stderr)


# ------------------------------------------------------------
# Validators
# ------------------------------------------------------------

def channel_config_errors(data: Dict[str, Any]) -> List[str]:
    validator = Draft7Validator(CHANNELS_SCHEMA)
    errors = []
    for err in sorted(validator.iter_errors(data), key=lambda e: list(e.path)):
        loc = "/".join(str(p) for p in err.path) or "<root>"
        errors.append(f"{loc}: {err.message}")
    return errors


def system_config_errors(data: Dict[str, Any]) -> List[str]:
    errors = []
    for key, expected in _SYSTEM_TYPES.items():
        value = data.get(key)
        if value is None:
            continue
        # bool is an int subclass; keep the two apart
        if expected is int and isinstance(value, bool):
            errors.append(f"{key}: must be an integer")
        elif not isinstance(value, expected):
            errors.append(f"{key}: must be {expected.__name__}")
        elif expected is int and value < 1:
            errors.append(f"{key}: must be positive")

    polling = data.get("polling")
    if isinstance(polling, dict):
        low, high = polling.get("min_seconds"), polling.get("max_seconds")
        if isinstance(low, (int, float)) and isinstance(high, (int, float)) and low > high:
            errors.append("polling: min_seconds exceeds max_seconds")
    return errors


def validate_file(path: Path, check) -> bool:
    """
    Validate one JSON file with `check`.

    A missing file is allowed (defaults apply).
    """
    try:
        data = _load_json(path)
    except ValueError as e:
        _error(str(e))
        return False

    if data is None:
        return True

    errors = check(data)
    for message in errors:
        _error(f"{path.name}: {message}")
    return not errors


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    channels_path = Path(args[0]) if args else CONFIG_DIR / "channels.json"

    ok = validate_file(channels_path, channel_config_errors)
    ok = validate_file(CONFIG_DIR / "system.json", system_config_errors) and ok

    if not ok:
        print("Configuration validation failed.", file=sys.stderr)
        return 1

    print("Configuration validation passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
