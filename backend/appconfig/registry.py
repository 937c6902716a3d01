from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

import yaml

from appconfig.settings import config_path, overpass_endpoints_override, user_agent_override
from appconfig.types import AppConfig


log = logging.getLogger(__name__)


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config yaml root: {path}")
    return data


def load_config(path: Path | None = None) -> AppConfig:
    """
    Load and validate the app config.

    A missing file yields model defaults; a malformed one raises (pydantic
    ValidationError / ValueError) so misconfiguration fails at startup.
    """
    p = path or config_path()
    data = _load_yaml(p) if p.exists() else {}
    if not data:
        log.info("no config at %s, using defaults", p)

    cfg = AppConfig.model_validate(data)

    updates: dict = {}
    endpoints = overpass_endpoints_override()
    if endpoints:
        updates["overpassEndpoints"] = endpoints
    ua = user_agent_override()
    if ua:
        updates["userAgent"] = ua
    if updates:
        cfg = cfg.model_copy(update=updates)
    return cfg


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return load_config()


def clear_config_cache() -> None:
    """
    Drop the cached config.

    Useful in tests and during development: YAML/env changes are otherwise not
    picked up until the process restarts.
    """
    get_config.cache_clear()
