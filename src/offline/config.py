"""Configuration loader for the offline cache host adapter."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_PRECACHE_MANIFEST = (
    "/",
    "/favicon-96x96.png",
    "/web-app-manifest-192x192.png",
    "/web-app-manifest-512x512.png",
    "/apple-touch-icon.png",
)


@dataclass(frozen=True)
class NotificationConfig:
    icon: str
    badge: str


@dataclass(frozen=True)
class OfflineConfig:
    app_name: str
    origin: str
    version: str
    cache_prefix: str
    precache_manifest: Tuple[str, ...]
    bypass_paths: Tuple[str, ...]
    db_path: Path
    fetch_timeout_sec: Optional[float]
    revalidate_workers: int
    notification: NotificationConfig

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfflineConfig":
        notif = data.get("notification", {}) or {}
        timeout = data.get("fetch_timeout_sec")
        return cls(
            app_name=data.get("app_name", "StudentStore"),
            origin=data.get("origin", "http://localhost:3000"),
            version=str(data.get("version", "1.0.0")),
            cache_prefix=data.get("cache_prefix", "studentstore"),
            precache_manifest=tuple(data.get("precache_manifest") or DEFAULT_PRECACHE_MANIFEST),
            bypass_paths=tuple(data.get("bypass_paths") or ()),
            db_path=Path(os.path.expanduser(data.get("db_path", "~/.studentstore/offline/cache.db"))),
            fetch_timeout_sec=float(timeout) if timeout is not None else None,
            revalidate_workers=int(data.get("revalidate_workers", 4)),
            notification=NotificationConfig(
                icon=notif.get("icon", "/web-app-manifest-192x192.png"),
                badge=notif.get("badge", "/favicon-96x96.png"),
            ),
        )


ENV_MAP = {
    "app_name": "OFFLINE_APP_NAME",
    "origin": "OFFLINE_ORIGIN",
    "version": "OFFLINE_VERSION",
    "cache_prefix": "OFFLINE_CACHE_PREFIX",
    "db_path": "OFFLINE_DB_PATH",
    "fetch_timeout_sec": "OFFLINE_FETCH_TIMEOUT_SEC",
    "revalidate_workers": "OFFLINE_REVALIDATE_WORKERS",
    "notification.icon": "OFFLINE_NOTIFICATION_ICON",
    "notification.badge": "OFFLINE_NOTIFICATION_BADGE",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(config_data))  # deep copy via json

    for dotted_key, env_name in ENV_MAP.items():
        if env_name not in os.environ:
            continue
        value: Any = os.environ[env_name]
        target = merged
        parts = dotted_key.split(".")
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        last = parts[-1]
        if last == "revalidate_workers":
            value = int(value)
        elif last == "fetch_timeout_sec":
            value = float(value) if value.strip() else None
        target[last] = value

    return merged


def load_config(config_path: str | Path = "config/offline.defaults.yml") -> OfflineConfig:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = load_yaml(path)
    data = merge_env_overrides(data)
    return OfflineConfig.from_dict(data)
