from __future__ import annotations

import re
from datetime import datetime, timezone

from dateutil import parser as date_parser


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = date_parser.parse(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        # Shifting year 1 or year 9999 values to UTC can leave the datetime range.
        return parsed.astimezone(timezone.utc)
    except (ValueError, TypeError, OverflowError):
        return None
