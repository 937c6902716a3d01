from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from telemetry.sql import (
    CREATE_EVENTS_TABLE_SQL,
    ENDPOINT_ERRORS_SQL_TEMPLATE,
    INSERT_EVENTS_SQL,
    SUMMARY_SQL_TEMPLATE,
)


log = logging.getLogger(__name__)

BATCH_SIZE = 250
FLUSH_INTERVAL_S = 0.5
MAX_PENDING = 10_000


def _num(v) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class TraceEvent:
    source: str
    phase: str
    req_id: int | None = None
    zoom: float | None = None
    endpoint: str | None = None
    duration_ms: float | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    ts_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def as_row(self) -> tuple:
        return (
            self.ts_ms,
            self.source,
            self.phase,
            self.req_id,
            self.zoom,
            self.endpoint,
            self.duration_ms,
            json.dumps(self.detail, ensure_ascii=False, default=str),
        )


class TelemetryStore:
    """
    Append-only DuckDB log of sync/export trace events.

    `record()` never blocks the event loop: events go to a bounded queue and a
    daemon thread writes them in batches (by size or age). When the queue is
    full the event is dropped and counted in `dropped`.
    """

    def __init__(self, path: Path, conn: duckdb.DuckDBPyConnection) -> None:
        self.path = path
        self.conn = conn
        self.dropped = 0
        self._lock = threading.RLock()
        self._pending: queue.Queue[TraceEvent | threading.Event] = queue.Queue(maxsize=MAX_PENDING)
        self._stop = threading.Event()
        self._writer: threading.Thread | None = None

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_EVENTS_TABLE_SQL)

    def start(self) -> None:
        if self._writer is not None:
            return
        self._stop.clear()
        self._writer = threading.Thread(target=self._write_loop, name="ofm-telemetry", daemon=True)
        self._writer.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        """Stop the writer; whatever is still queued is written first."""
        self._stop.set()
        w = self._writer
        if w is not None and w.is_alive():
            w.join(timeout=timeout_s)
        self._writer = None

    def record(
        self,
        *,
        source: str,
        phase: str,
        req_id: int | None = None,
        zoom: float | None = None,
        endpoint: str | None = None,
        duration_ms: float | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.start()
        event = TraceEvent(
            source=str(source),
            phase=str(phase),
            req_id=int(req_id) if req_id is not None else None,
            zoom=_num(zoom),
            endpoint=endpoint,
            duration_ms=_num(duration_ms),
            detail=dict(detail or {}),
        )
        try:
            self._pending.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 1000 == 0:
                log.warning("telemetry queue full, %d events dropped", self.dropped)

    def flush(self, *, timeout_s: float = 2.0) -> bool:
        """Block until everything recorded so far is written; False on timeout."""
        if self._writer is None:
            return True
        marker = threading.Event()
        try:
            self._pending.put(marker, timeout=timeout_s)
        except queue.Full:
            return False
        return marker.wait(timeout_s)

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        # Same connection as the writer: DuckDB locks the file for other processes.
        with self._lock:
            return self.conn.execute(sql, params or []).fetchall()

    def summary(
        self,
        *,
        source: str | None = None,
        since_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        """Count and latency percentiles per (source, phase)."""
        clauses: list[str] = []
        params: list[Any] = []
        if source:
            clauses.append("source = ?")
            params.append(source)
        if since_ms is not None:
            clauses.append("ts_ms >= ?")
            params.append(int(since_ms))
        where_sql = "WHERE " + " AND ".join(clauses) if clauses else ""

        return [
            {
                "source": src,
                "phase": phase,
                "n": int(n),
                "avgMs": _num(avg_ms),
                "p50Ms": _num(p50),
                "p95Ms": _num(p95),
            }
            for src, phase, n, avg_ms, p50, p95 in self.query(
                SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params
            )
        ]

    def endpoint_health(self, *, since_ms: int | None = None) -> list[dict[str, Any]]:
        """Successes, failures and rate limits per Overpass endpoint."""
        params: list[Any] = []
        and_where_sql = ""
        if since_ms is not None:
            and_where_sql = "AND ts_ms >= ?"
            params.append(int(since_ms))
        rows = self.query(ENDPOINT_ERRORS_SQL_TEMPLATE.format(and_where_sql=and_where_sql), params)
        return [
            {"endpoint": ep, "ok": int(ok), "err": int(err), "rateLimited": int(rl)}
            for ep, ok, err, rl in rows
        ]

    def close(self) -> None:
        self.stop(timeout_s=2.0)
        with self._lock:
            self.conn.close()

    def reset(self) -> None:
        """Close and delete the database file."""
        self.close()
        self.path.unlink(missing_ok=True)

    def _write(self, batch: list[TraceEvent]) -> None:
        if not batch:
            return
        with self._lock:
            self.conn.executemany(INSERT_EVENTS_SQL, [e.as_row() for e in batch])
            self.conn.execute("CHECKPOINT;")

    def _write_loop(self) -> None:
        self.ensure_schema()
        batch: list[TraceEvent] = []
        oldest: float | None = None

        while True:
            stopping = self._stop.is_set()
            try:
                item = self._pending.get(timeout=0.05 if not stopping else 0)
            except queue.Empty:
                item = None

            if isinstance(item, threading.Event):
                self._write(batch)
                batch, oldest = [], None
                item.set()
            elif item is not None:
                batch.append(item)
                oldest = oldest or time.monotonic()

            aged = oldest is not None and time.monotonic() - oldest >= FLUSH_INTERVAL_S
            if len(batch) >= BATCH_SIZE or aged:
                self._write(batch)
                batch, oldest = [], None

            if stopping and item is None:
                self._write(batch)
                return
