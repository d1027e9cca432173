"""Default config generation and validation."""

from __future__ import annotations

import copy
import json
from typing import TypedDict

from cork.core.merge import VALID_POLICIES

VALID_PROVIDERS: tuple[str, ...] = ("openai", "stub")

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024
DEFAULT_GRACE_SECONDS = 1.5


class CacheConfig(TypedDict, total=False):
    quota_bytes: int


class RemoteConfig(TypedDict, total=False):
    url: str | None
    policy: str
    grace_seconds: float
    timeout_seconds: float


class RecognitionConfig(TypedDict, total=False):
    provider: str
    endpoint: str
    model: str
    api_key_env: str
    timeout_seconds: float


class ImageSearchConfig(TypedDict, total=False):
    endpoint: str
    api_key_env: str
    engine_id: str | None
    attempt_timeout_seconds: float
    max_candidates: int


class CorkConfig(TypedDict, total=False):
    schema_version: int
    cache: CacheConfig
    remote: RemoteConfig
    recognition: RecognitionConfig
    image_search: ImageSearchConfig


def default_config() -> CorkConfig:
    """Return the default cork configuration.

    The returned dict, when serialized with
    ``json.dumps(data, sort_keys=True, indent=2) + "\\n"``,
    produces the canonical default config.json.
    """
    return {
        "schema_version": 1,
        "cache": {
            "quota_bytes": DEFAULT_QUOTA_BYTES,
        },
        "remote": {
            "url": None,
            "policy": "union",
            "grace_seconds": DEFAULT_GRACE_SECONDS,
            "timeout_seconds": 10.0,
        },
        "recognition": {
            "provider": "stub",
            "endpoint": "https://api.openai.com/v1/chat/completions",
            "model": "gpt-4o",
            "api_key_env": "OPENAI_API_KEY",
            "timeout_seconds": 30.0,
        },
        "image_search": {
            "endpoint": "https://www.googleapis.com/customsearch/v1",
            "api_key_env": "GOOGLE_API_KEY",
            "engine_id": None,
            "attempt_timeout_seconds": 8.0,
            "max_candidates": 5,
        },
    }


def serialize_config(config: CorkConfig | dict[str, object]) -> str:
    """Serialize a config dict to the canonical JSON format."""
    return json.dumps(config, sort_keys=True, indent=2) + "\n"


def load_config(raw: str) -> dict:
    """Parse a JSON config string, filling missing sections from defaults.

    This is a pure function (no I/O).  The CLI layer reads the file
    and passes the raw string here.
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("config.json must contain a JSON object")
    merged: dict = copy.deepcopy(dict(default_config()))
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def validate_config(config: dict) -> list[str]:
    """Return a list of configuration problems (empty when valid)."""
    problems: list[str] = []

    remote = config.get("remote", {})
    if remote.get("policy") not in VALID_POLICIES:
        problems.append(f"remote.policy must be one of: {', '.join(VALID_POLICIES)}")
    grace = remote.get("grace_seconds")
    if not isinstance(grace, (int, float)) or isinstance(grace, bool) or grace < 0:
        problems.append("remote.grace_seconds must be a non-negative number")
    url = remote.get("url")
    if url is not None and not (isinstance(url, str) and url.startswith(("ws://", "wss://"))):
        problems.append("remote.url must be a ws:// or wss:// URL, or null")

    quota = config.get("cache", {}).get("quota_bytes")
    if not isinstance(quota, int) or isinstance(quota, bool) or quota <= 0:
        problems.append("cache.quota_bytes must be a positive integer")

    provider = config.get("recognition", {}).get("provider")
    if provider not in VALID_PROVIDERS:
        problems.append(f"recognition.provider must be one of: {', '.join(VALID_PROVIDERS)}")

    return problems


def get_value(config: dict, dotted_key: str) -> object:
    """Look up ``section.key`` in *config*.  Raises ``KeyError`` when absent."""
    node: object = config
    for part in dotted_key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(dotted_key)
        node = node[part]
    return node


def set_value(config: dict, dotted_key: str, value: object) -> dict:
    """Return a copy of *config* with ``section.key`` set to *value*.

    Only existing keys may be set, so typos fail loudly instead of
    silently adding dead settings.
    """
    updated = copy.deepcopy(config)
    parts = dotted_key.split(".")
    node = updated
    for part in parts[:-1]:
        if not isinstance(node.get(part), dict):
            raise KeyError(dotted_key)
        node = node[part]
    if parts[-1] not in node:
        raise KeyError(dotted_key)
    node[parts[-1]] = value
    return updated


def parse_config_value(raw: str) -> object:
    """Interpret a command-line value as JSON when possible, else as a string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw
