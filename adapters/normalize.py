from __future__ import annotations

import base64
import json
import math
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Optional, Sequence
from uuid import UUID


def _format_timedelta(value: timedelta) -> str:
    total_us = value.days * 86_400_000_000 + value.seconds * 1_000_000 + value.microseconds
    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)
    seconds, micros = divmod(total_us, 1_000_000)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    text = f"{sign}{hours}:{minutes:02d}:{seconds:02d}"
    if micros:
        text += f".{micros:06d}"
    return text


def normalize_value(value: Any) -> Any:
    """Convert one driver value into something json.dumps accepts unchanged."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    # datetime is a subclass of date, so it has to come first.
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return _format_timedelta(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {str(key): normalize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_value(item) for item in value]
    try:
        return str(value)
    except Exception:
        return repr(value)


# MySQL hands JSON columns back as text; the protocol type code tells them apart.
MYSQL_JSON_TYPE_CODE = 245


def mysql_json(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return normalize_value(json.loads(value))
        except ValueError:
            return value
    return normalize_value(value)


ColumnConverter = Callable[[Any], Any]


def mysql_converters(description: Optional[Sequence[Sequence[Any]]]) -> List[ColumnConverter]:
    if not description:
        return []
    return [mysql_json if col[1] == MYSQL_JSON_TYPE_CODE else normalize_value for col in description]


def normalize_rows(
    rows: Sequence[Sequence[Any]],
    converters: Optional[List[ColumnConverter]] = None,
) -> List[List[Any]]:
    if not converters:
        return [[normalize_value(value) for value in row] for row in rows]
    return [[convert(value) for convert, value in zip(converters, row)] for row in rows]


def column_names(description: Optional[Sequence[Sequence[Any]]]) -> List[str]:
    if not description:
        return []
    names: List[str] = []
    for col in description:
        name = col[0]
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="replace")
        names.append(str(name))
    return names


def as_text(value: Any) -> Optional[str]:
    """Catalog cells may come back as bytes on some servers; flatten them to str."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)
