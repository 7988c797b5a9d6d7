from __future__ import annotations

import json
import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_DIR = Path("~/.honcho-claudis").expanduser()
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.json"

DEFAULT_BASE_URL = "https://api.honcho.dev"

# File keys are camelCase (shared with the installer); dataclass fields are snake_case.
CONFIG_FILE_KEYS = {
    "peerName": "peer_name",
    "apiKey": "api_key",
    "workspace": "workspace",
    "claudePeer": "claude_peer",
    "saveMessages": "save_messages",
    "sessions": "sessions",
    "baseUrl": "base_url",
    "requestTimeoutS": "request_timeout_s",
    "contextStaleAfterS": "context_stale_after_s",
    "refreshEveryMessages": "refresh_every_messages",
    "dialecticOnPrompt": "dialectic_on_prompt",
    "uploadJoinTimeoutS": "upload_join_timeout_s",
    "cachePath": "cache_path",
    "hookLog": "hook_log",
}

CONFIG_ENV_OVERRIDES = {
    "api_key": "HONCHO_CLAUDIS_API_KEY",
    "base_url": "HONCHO_CLAUDIS_BASE_URL",
    "request_timeout_s": "HONCHO_CLAUDIS_REQUEST_TIMEOUT_S",
    "context_stale_after_s": "HONCHO_CLAUDIS_CONTEXT_STALE_AFTER_S",
    "refresh_every_messages": "HONCHO_CLAUDIS_REFRESH_EVERY_MESSAGES",
    "dialectic_on_prompt": "HONCHO_CLAUDIS_DIALECTIC_ON_PROMPT",
    "upload_join_timeout_s": "HONCHO_CLAUDIS_UPLOAD_JOIN_TIMEOUT_S",
    "cache_path": "HONCHO_CLAUDIS_CACHE_PATH",
    "hook_log": "HONCHO_CLAUDIS_HOOK_LOG",
}

REQUIRED_FIELDS = ("peer_name", "api_key", "workspace")


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("HONCHO_CLAUDIS_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class HonchoClaudisConfig:
    peer_name: str = ""
    api_key: str = ""
    workspace: str = ""
    claude_peer: str = "claudis"
    save_messages: bool = True
    sessions: dict[str, str] = field(default_factory=dict)
    base_url: str = DEFAULT_BASE_URL
    request_timeout_s: float = 10.0
    context_stale_after_s: int = 60
    refresh_every_messages: int = 10
    dialectic_on_prompt: bool = False
    upload_join_timeout_s: float = 15.0
    cache_path: str = str(DEFAULT_CONFIG_DIR / "cache.sqlite")
    hook_log: str | None = str(DEFAULT_CONFIG_DIR / "hook.log")

    def is_complete(self) -> bool:
        return all(str(getattr(self, name) or "").strip() for name in REQUIRED_FIELDS)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_sessions(value: object) -> dict[str, str] | None:
    if not isinstance(value, dict):
        return None
    sessions: dict[str, str] = {}
    for path, name in value.items():
        if isinstance(path, str) and isinstance(name, str) and name.strip():
            sessions[path] = name.strip()
    return sessions


def load_config(path: Path | None = None) -> HonchoClaudisConfig | None:
    """Load the config, or None when the hook should do nothing."""

    config_path = get_config_path(path)
    if not config_path.exists():
        return None
    try:
        data = read_config_file(config_path)
    except (OSError, ValueError):
        return None
    cfg = _apply_dict(HonchoClaudisConfig(), data)
    cfg = _apply_env(cfg)
    if not cfg.is_complete():
        return None
    return cfg


def _apply_dict(cfg: HonchoClaudisConfig, data: dict[str, Any]) -> HonchoClaudisConfig:
    for file_key, value in data.items():
        key = CONFIG_FILE_KEYS.get(file_key, file_key)
        if not hasattr(cfg, key):
            continue
        if key in {"context_stale_after_s", "refresh_every_messages"}:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in {"request_timeout_s", "upload_join_timeout_s"}:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in {"save_messages", "dialectic_on_prompt"}:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key == "sessions":
            parsed = _coerce_sessions(value)
            if parsed is not None:
                cfg.sessions = parsed
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: HonchoClaudisConfig) -> HonchoClaudisConfig:
    # Env values are strings; _apply_dict coerces them like file values.
    return _apply_dict(cfg, get_env_overrides())


def save_config(cfg: HonchoClaudisConfig, path: Path | None = None) -> Path:
    reverse = {field_name: file_key for file_key, field_name in CONFIG_FILE_KEYS.items()}
    data = {reverse[name]: getattr(cfg, name) for name in reverse}
    return write_config_file(data, path)


# Session mapping helpers. These read the raw file so that partially filled
# configs (no api key yet) can still be edited from the CLI.


def get_session_for_path(cwd: str, path: Path | None = None) -> str | None:
    try:
        data = read_config_file(path)
    except (OSError, ValueError):
        return None
    sessions = _coerce_sessions(data.get("sessions")) or {}
    return sessions.get(cwd)


def get_all_sessions(path: Path | None = None) -> dict[str, str]:
    try:
        data = read_config_file(path)
    except (OSError, ValueError):
        return {}
    return _coerce_sessions(data.get("sessions")) or {}


def set_session_for_path(cwd: str, session_name: str, path: Path | None = None) -> None:
    data = read_config_file(path)
    sessions = _coerce_sessions(data.get("sessions")) or {}
    sessions[cwd] = session_name
    data["sessions"] = sessions
    write_config_file(data, path)


def remove_session_for_path(cwd: str, path: Path | None = None) -> bool:
    data = read_config_file(path)
    sessions = _coerce_sessions(data.get("sessions")) or {}
    if cwd not in sessions:
        return False
    del sessions[cwd]
    data["sessions"] = sessions
    write_config_file(data, path)
    return True


_SESSION_NAME_RE = re.compile(r"[^a-z0-9_-]")


def session_name_for_path(cwd: str, configured: str | None = None) -> str:
    if configured:
        return configured
    dir_name = _SESSION_NAME_RE.sub("-", Path(cwd).name.lower())
    return f"project-{dir_name}"
