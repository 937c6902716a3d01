from __future__ import annotations

EVENT_COLUMNS = (
    ("ts_ms", "BIGINT"),
    ("source", "TEXT"),
    ("phase", "TEXT"),
    ("req_id", "BIGINT"),
    ("zoom", "DOUBLE"),
    ("endpoint", "TEXT"),
    ("duration_ms", "DOUBLE"),
    ("detail_json", "TEXT"),
)

CREATE_EVENTS_TABLE_SQL = "CREATE TABLE IF NOT EXISTS events ({});".format(
    ", ".join(f"{name} {kind}" for name, kind in EVENT_COLUMNS)
)

INSERT_EVENTS_SQL = "INSERT INTO events ({}) VALUES ({})".format(
    ", ".join(name for name, _ in EVENT_COLUMNS),
    ", ".join("?" for _ in EVENT_COLUMNS),
)

# Latency per pipeline phase; rows without duration still count towards n.
SUMMARY_SQL_TEMPLATE = """
SELECT source, phase, COUNT(*),
       AVG(duration_ms),
       quantile_cont(duration_ms, 0.50),
       quantile_cont(duration_ms, 0.95)
FROM events
{where_sql}
GROUP BY source, phase
ORDER BY source, phase
"""

# Phases emitted by sync.client per Overpass attempt.
ENDPOINT_ERRORS_SQL_TEMPLATE = """
SELECT endpoint,
       COUNT(*) FILTER (WHERE phase = 'net_ok'),
       COUNT(*) FILTER (WHERE phase = 'net_err'),
       COUNT(*) FILTER (WHERE phase = 'ratelimit')
FROM events
WHERE endpoint IS NOT NULL {and_where_sql}
GROUP BY endpoint
ORDER BY endpoint
"""
