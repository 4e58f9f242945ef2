"""Scalar parsing helpers shared by the remote record parsers."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from exchange_sync.sync.errors import TransformError


def parse_decimal(value: Any) -> float | None:
    """
    Parse a currency-ish value into a float.

    Commas and dollar signs are stripped. Empty or unparseable input yields
    ``None``, never ``0`` and never an error.

    >>> parse_decimal("$1,250,000.00")
    1250000.0
    >>> parse_decimal("N/A") is None
    True
    """

    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace(",", "").replace("$", "").strip()
    if not cleaned:
        return None
    try:
        parsed = float(cleaned)
    except ValueError:
        return None
    if parsed != parsed:  # NaN
        return None
    return parsed


def parse_datetime(value: Any, *, field_name: str = "value") -> datetime | None:
    """Parse an ISO-8601 timestamp or date into an aware UTC datetime.

    Missing or empty values return ``None``; a present but unparseable value
    raises ``TransformError``.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise TransformError(f"Invalid {field_name}: {value!r}") from exc
    else:
        raise TransformError(f"Invalid {field_name}: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def external_id(payload: Any) -> str:
    """Return the remote ``id`` as a string, raising ``TransformError`` when it is missing."""

    if not isinstance(payload, dict):
        raise TransformError(f"Expected a JSON object, got {type(payload).__name__}")
    raw = payload.get("id")
    if raw is None or str(raw).strip() == "":
        raise TransformError("Record is missing an id")
    return str(raw).strip()


def nested_id(payload: dict, key: str) -> str | None:
    nested = payload.get(key)
    if isinstance(nested, dict):
        return coerce_str(nested.get("id"))
    return None
