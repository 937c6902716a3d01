from __future__ import annotations

import os
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def config_path() -> Path:
    return Path(os.getenv("OFM_CONFIG_PATH") or (_repo_root() / "config" / "ofm.yaml"))


def state_path() -> Path:
    # Last viewport etc. Stays local to the checkout unless overridden.
    return Path(os.getenv("OFM_STATE_PATH") or (_repo_root() / "data" / "state.json"))


def overpass_endpoints_override() -> list[str] | None:
    raw = (os.getenv("OFM_OVERPASS_ENDPOINTS") or "").strip()
    if not raw:
        return None
    out = [p.strip() for p in raw.split(",") if p.strip()]
    return out or None


def user_agent_override() -> str | None:
    return (os.getenv("OFM_USER_AGENT") or "").strip() or None


def log_level() -> str:
    return (os.getenv("OFM_LOG_LEVEL") or "INFO").strip().upper()
