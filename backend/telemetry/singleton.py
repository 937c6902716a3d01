from __future__ import annotations

import logging
import threading
from pathlib import Path

import duckdb

from telemetry.config import telemetry_enabled, telemetry_path
from telemetry.store import TelemetryStore


log = logging.getLogger(__name__)

_guard = threading.Lock()
_open_store: TelemetryStore | None = None


def _open(path: Path) -> TelemetryStore:
    path.parent.mkdir(parents=True, exist_ok=True)
    store = TelemetryStore(path, duckdb.connect(str(path)))
    store.ensure_schema()
    store.start()
    log.info("telemetry store opened at %s", path)
    return store


def get_store() -> TelemetryStore | None:
    """The process-wide store, or None while OFM_TELEMETRY is off."""
    global _open_store
    if not telemetry_enabled():
        return None
    path = telemetry_path()
    with _guard:
        current = _open_store
        if current is not None and current.path.resolve() != path.resolve():
            # OFM_TELEMETRY_PATH moved (tests do this); drop the old file handle.
            current.close()
            current = None
        if current is None:
            current = _open(path)
        _open_store = current
        return current


def reset_store() -> None:
    global _open_store
    with _guard:
        store, _open_store = _open_store, None
    if store is not None:
        store.reset()
    else:
        telemetry_path().unlink(missing_ok=True)


def close_store() -> None:
    global _open_store
    with _guard:
        store, _open_store = _open_store, None
    if store is not None:
        store.close()
