"""Global configuration for EventHub.

Values are layered: built-in defaults, then ``eventhub.toml`` (or the file
named by ``EVENTHUB_CONFIG``), then ``EVENTHUB_<KEY>`` environment variables.
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

ENV_PREFIX = "EVENTHUB_"
CONFIG_FILENAME = "eventhub.toml"
MASKED_VALUE = "********"

DEFAULTS: dict[str, Any] = {
    "database_url": "",
    "admin_invite_key": "",
    "frontend_url": "http://localhost:3000",
    "allow_localhost_origins": True,
    "app_host": "0.0.0.0",
    "app_port": 5001,
    "log_level": "info",
    "seed_users": 8,
    "seed_events": 6,
    "seed_rsvps_per_event": 5,
}

TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


def _parse_bool(value: Any) -> bool:
    if isinstance(value, (bool, int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")


TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "database_url": str,
    "admin_invite_key": str,
    "frontend_url": str,
    "allow_localhost_origins": _parse_bool,
    "app_host": str,
    "app_port": int,
    "log_level": lambda value: str(value).lower(),
    "seed_users": int,
    "seed_events": int,
    "seed_rsvps_per_event": int,
}

SECRET_KEYS = frozenset({"admin_invite_key"})


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_url: str
    admin_invite_key: str
    frontend_url: str
    allow_localhost_origins: bool
    app_host: str
    app_port: int
    log_level: str
    seed_users: int
    seed_events: int
    seed_rsvps_per_event: int
    config_path: Path

    @property
    def invite_key_configured(self) -> bool:
        """Admin signups are only possible when an invite key is set."""
        return bool(self.admin_invite_key.strip())

    @property
    def normalized_frontend_url(self) -> str:
        return self.frontend_url.rstrip("/")


def _coerce(key: str, value: Any) -> Any:
    caster = TYPE_CASTERS.get(key)
    return caster(value) if caster else value


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid configuration file {path}: {exc}") from exc


def _lookup(key: str, file_values: dict[str, Any]) -> Any:
    env_value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
    if env_value is not None:
        return _coerce(key, env_value)
    if key in file_values:
        return _coerce(key, file_values[key])
    return DEFAULTS[key]


def _data_dir(base_dir: Path, configured: str | Path | None) -> Path:
    path = Path(configured) if configured else Path("data")
    return path if path.is_absolute() else base_dir / path


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.environ.get(f"{ENV_PREFIX}BASE_DIR") or Path.cwd())
    config_path = Path(
        config_override
        or os.environ.get(f"{ENV_PREFIX}CONFIG")
        or base_dir / CONFIG_FILENAME
    )
    file_values = _read_toml(config_path)
    data_dir = _data_dir(
        base_dir, os.environ.get(f"{ENV_PREFIX}DATA_DIR") or file_values.get("data_dir")
    )

    values = {key: _lookup(key, file_values) for key in DEFAULTS}
    if not values["database_url"]:
        data_dir.mkdir(parents=True, exist_ok=True)
        values["database_url"] = f"sqlite:///{data_dir / 'eventhub.db'}"

    return Settings(
        base_dir=base_dir,
        data_dir=data_dir,
        config_path=config_path,
        **values,
    )


def settings_as_dict(settings: Settings, *, mask_secrets: bool = True) -> dict[str, Any]:
    values: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
    }
    for key in DEFAULTS:
        value = getattr(settings, key)
        if mask_secrets and key in SECRET_KEYS and value:
            value = MASKED_VALUE
        values[key] = value
    return values


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return repr(value)
    # JSON string escapes are valid TOML basic-string escapes.
    return json.dumps(str(value))


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    body = "".join(f"{key} = {_toml_value(config[key])}\n" for key in sorted(config))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"# EventHub configuration\n{body}", encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    """Merge ``updates`` into the config file and reload the global settings.

    Unknown keys are ignored; keys already in the file are kept.
    """
    global settings

    target = path or settings.config_path
    merged = _read_toml(target)
    merged.update(
        {key: _coerce(key, value) for key, value in updates.items() if key in DEFAULTS}
    )
    write_config_file(merged, path=target)
    settings = load_settings(target)
    return settings


settings = load_settings()
