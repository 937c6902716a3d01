from __future__ import annotations

import os
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def telemetry_path() -> Path:
    # Store under repo so it's easy to query locally.
    return Path(
        os.getenv("OFM_TELEMETRY_PATH")
        or (_repo_root() / "data" / "telemetry" / "telemetry.duckdb")
    )


def telemetry_enabled() -> bool:
    # Off unless explicitly requested; trace events still go to the log.
    v = (os.getenv("OFM_TELEMETRY") or "0").strip().lower()
    return v not in {"0", "false", "no", "off", ""}
