"""Sync server configuration.

Read from ``.cork/sync/config.json`` when present.  Client-side settings
(remote URL, reconciliation policy, grace window) live in the main
``config.json``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SYNC_HOST = "127.0.0.1"
DEFAULT_SYNC_PORT = 9810


def default_sync_config() -> dict:
    """Return default sync configuration."""
    return {
        "listen": {
            "host": DEFAULT_SYNC_HOST,
            "port": DEFAULT_SYNC_PORT,
        },
    }


def load_sync_config(cork_dir: Path) -> dict:
    """Load sync configuration, falling back to defaults if missing or unreadable."""
    config = default_sync_config()
    config_path = cork_dir / "sync" / "config.json"
    if not config_path.exists():
        return config

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable sync config %s: %s", config_path, exc)
        return config

    listen = data.get("listen") if isinstance(data, dict) else None
    if not isinstance(listen, dict):
        logger.warning("Ignoring sync config %s without a 'listen' object", config_path)
        return config
    if isinstance(listen.get("host"), str) and listen["host"]:
        config["listen"]["host"] = listen["host"]
    port = listen.get("port")
    if isinstance(port, int) and not isinstance(port, bool) and 0 <= port <= 65535:
        config["listen"]["port"] = port
    return config
