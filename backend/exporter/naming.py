from __future__ import annotations

import re
from datetime import datetime


_UNSAFE = re.compile(r"[\s.:/]")


def safe_title(title: str, fallback: str = "OpenFireMap_Export") -> str:
    return _UNSAFE.sub("_", title or fallback)


def export_filename(title: str, zoom: int, *, now: datetime | None = None, ext: str = "") -> str:
    """`YYYY-MM-DD_HH-mm_Z{zoom}_{safeTitle}` plus an optional extension."""
    now = now or datetime.now()
    stem = f"{now.strftime('%Y-%m-%d_%H-%M')}_Z{int(zoom)}_{safe_title(title)}"
    return f"{stem}.{ext}" if ext else stem
