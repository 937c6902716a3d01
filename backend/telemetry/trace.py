from __future__ import annotations

import itertools
import logging
from typing import Any

from telemetry.singleton import get_store


log = logging.getLogger("telemetry.trace")

_REQ_SEQ = itertools.count(1)


def next_req_id() -> int:
    return next(_REQ_SEQ)


def emit(source: str, phase: str, **fields: Any) -> None:
    """
    Record one pipeline trace event (sync phases, export states).

    Always logged at DEBUG; persisted to DuckDB only when telemetry is enabled.
    """
    log.debug("%s.%s", source, phase, extra={"extra": dict(fields)})

    store = get_store()
    if store is None:
        return
    store.record(
        source=source,
        phase=phase,
        req_id=fields.pop("req_id", None),
        zoom=fields.pop("zoom", None),
        endpoint=fields.pop("endpoint", None),
        duration_ms=fields.pop("ms", None),
        detail=fields,
    )
