from __future__ import annotations

import json
import logging
import logging.config

from appconfig.settings import log_level


_HANDLER_NAME = "ofm-json"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, e.g.

        {"t": 1700000000000, "lvl": "INFO", "name": "sync.client", "msg": "...", "extra": {...}}

    `t` is the record's creation time in epoch ms. Trace fields travel in
    `extra={"extra": {...}}` and are emitted as-is.
    """

    def format(self, record: logging.LogRecord) -> str:
        out: dict = {
            "t": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        fields = record.__dict__.get("extra")
        if isinstance(fields, dict) and fields:
            out["extra"] = fields
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        elif record.stack_info:
            out["stack"] = self.formatStack(record.stack_info)
        return json.dumps(out, ensure_ascii=False, default=str)


def _level(name: str) -> str:
    name = name.strip().upper()
    if name == "WARN":
        name = "WARNING"
    return name if isinstance(logging.getLevelName(name), int) else "INFO"


def setup_logging(level: str | None = None) -> None:
    """Install the JSON stdout handler on the root logger; later calls are no-ops."""
    if any(h.get_name() == _HANDLER_NAME for h in logging.getLogger().handlers):
        return

    logging.config.dictConfig(
        {
            "version": 1,
            # Module loggers are created at import time, before this runs.
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": JsonFormatter}},
            "handlers": {
                _HANDLER_NAME: {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "formatter": "json",
                }
            },
            "root": {"level": _level(level or log_level()), "handlers": [_HANDLER_NAME]},
        }
    )
