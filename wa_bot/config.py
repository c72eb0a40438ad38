from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yaml"

DEFAULTS: Dict[str, Any] = {
    "bot": {
        "name": "WA Command Bot",
        "prefix": "!",
        "keyword_replies": True,
    },
    "selection": {
        "ttl_seconds": 600,
        "max_entries": 10000,
    },
    "database": {
        "db_path": "data/commands.db",
        "timeout_seconds": 5,
        "message_log": True,
    },
    "inbound": {
        "workers": 4,
        "idle_interval_seconds": 60,
    },
    "whatsapp": {
        "transport": "console",
        "api_base_url": "https://graph.facebook.com/v19.0",
        "phone_number_id": "",
        "token_env_var": "WHATSAPP_TOKEN",
        "timeout_seconds": 20,
    },
    "logging": {
        "level": "INFO",
        "json_format": False,
    },
    "paths": {
        "log_file": "logs/wa-bot.log",
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    db_path = os.getenv("WA_BOT_DB_PATH")
    if db_path:
        overrides.setdefault("database", {})["db_path"] = db_path

    prefix = os.getenv("WA_BOT_PREFIX", "").strip()
    if prefix:
        overrides.setdefault("bot", {})["prefix"] = prefix

    ttl = os.getenv("WA_BOT_SELECTION_TTL", "").strip()
    if ttl:
        try:
            overrides.setdefault("selection", {})["ttl_seconds"] = int(ttl)
        except ValueError:
            pass

    phone_number_id = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "").strip()
    if phone_number_id:
        overrides.setdefault("whatsapp", {})["phone_number_id"] = phone_number_id

    return overrides


def resolve_path(path_value: str, *, base_dir: Optional[Path] = None) -> Path:
    candidate = Path(path_value)
    if not candidate.is_absolute():
        candidate = (base_dir or BASE_DIR) / candidate
    return candidate.resolve()


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    # Load .env once through a single interface.
    load_dotenv(dotenv_path=BASE_DIR / ".env")

    config_path = os.getenv("WA_BOT_CONFIG")
    path = resolve_path(config_path, base_dir=Path.cwd()) if config_path else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded

    return _deep_merge(_deep_merge(DEFAULTS, data), _env_overrides())


def reload_config() -> Dict[str, Any]:
    load_config.cache_clear()
    return load_config()


def get_db_path(config: Optional[Dict[str, Any]] = None) -> Path:
    cfg = config or load_config()
    db_path = str(cfg.get("database", {}).get("db_path", "data/commands.db"))
    return resolve_path(db_path)


def get_log_path(config: Optional[Dict[str, Any]] = None) -> Path:
    cfg = config or load_config()
    log_path = str(cfg.get("paths", {}).get("log_file", "logs/wa-bot.log"))
    return resolve_path(log_path)


def get_prefix(config: Optional[Dict[str, Any]] = None) -> str:
    cfg = config or load_config()
    prefix = str(cfg.get("bot", {}).get("prefix") or "!").strip()
    return prefix or "!"


def get_selection_ttl(config: Optional[Dict[str, Any]] = None) -> float:
    cfg = config or load_config()
    try:
        ttl = float(cfg.get("selection", {}).get("ttl_seconds", 600))
    except (TypeError, ValueError):
        ttl = 600.0
    return ttl if ttl > 0 else 600.0
