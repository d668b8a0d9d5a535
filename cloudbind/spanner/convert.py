"""Conversion between Python values and the Spanner JSON value encoding.

Spanner's REST API encodes INT64 as strings, BYTES as base64, TIMESTAMP as
RFC 3339 strings with nanosecond precision, and non-finite FLOAT64 values as
the strings ``"NaN"``, ``"Infinity"`` and ``"-Infinity"``.
"""

from __future__ import annotations

import base64
import datetime
import decimal
import json
import math
from typing import Any, Mapping, Optional, Sequence

from cloudbind.spanner.range import KeyRange

_UTC = datetime.timezone.utc


# ---------------------------------------------------------------------------
# Python -> JSON
# ---------------------------------------------------------------------------


def type_for(value: Any) -> Optional[dict[str, Any]]:
    """Infer the Spanner type of a Python value (``None`` when untyped)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return {"code": "BOOL"}
    if isinstance(value, int):
        return {"code": "INT64"}
    if isinstance(value, float):
        return {"code": "FLOAT64"}
    if isinstance(value, decimal.Decimal):
        return {"code": "NUMERIC"}
    if isinstance(value, str):
        return {"code": "STRING"}
    if isinstance(value, (bytes, bytearray)):
        return {"code": "BYTES"}
    if isinstance(value, datetime.datetime):
        return {"code": "TIMESTAMP"}
    if isinstance(value, datetime.date):
        return {"code": "DATE"}
    if isinstance(value, Mapping):
        return {
            "code": "STRUCT",
            "structType": {
                "fields": [
                    {"name": str(k), "type": type_for(v) or {"code": "STRING"}}
                    for k, v in value.items()
                ]
            },
        }
    if isinstance(value, (list, tuple)):
        element = next((type_for(v) for v in value if v is not None), None)
        return {"code": "ARRAY", "arrayElementType": element or {"code": "STRING"}}
    raise TypeError(f"Cannot convert {type(value).__name__} to a Spanner value")


def encode_value(value: Any) -> Any:
    """Encode a Python value into its JSON wire form."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        return value
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, datetime.datetime):
        return format_timestamp(value)
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return [encode_value(v) for v in value.values()]
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    raise TypeError(f"Cannot convert {type(value).__name__} to a Spanner value")


def encode_params(
    params: Optional[Mapping[str, Any]],
    types: Optional[Mapping[str, Any]] = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return ``(params, paramTypes)`` for an executeSql request.

    Explicit ``types`` entries may be a type code string (``"INT64"``) or a
    full type dict and win over inference.
    """
    if not params:
        return {}, {}
    types = types or {}
    encoded: dict[str, Any] = {}
    param_types: dict[str, Any] = {}
    for name, value in params.items():
        encoded[name] = encode_value(value)
        explicit = types.get(name)
        if isinstance(explicit, str):
            param_types[name] = {"code": explicit.upper()}
        elif explicit is not None:
            param_types[name] = explicit
        else:
            inferred = type_for(value)
            if inferred is not None:
                param_types[name] = inferred
    return encoded, param_types


def encode_key(key: Any) -> list[Any]:
    if isinstance(key, (list, tuple)):
        return [encode_value(k) for k in key]
    return [encode_value(key)]


def key_set(keys: Any = None) -> dict[str, Any]:
    """Build a KeySet from ``None`` (all rows), a key, a range, or a list of them."""
    if keys is None:
        return {"all": True}
    if isinstance(keys, KeyRange):
        return {"ranges": [encode_range(keys)]}
    if not isinstance(keys, list):
        keys = [keys]
    result: dict[str, Any] = {}
    for key in keys:
        if isinstance(key, KeyRange):
            result.setdefault("ranges", []).append(encode_range(key))
        else:
            result.setdefault("keys", []).append(encode_key(key))
    return result


def encode_range(key_range: KeyRange) -> dict[str, Any]:
    start = "startClosed" if key_range.begin_closed else "startOpen"
    end = "endClosed" if key_range.end_closed else "endOpen"
    return {start: encode_key(key_range.begin), end: encode_key(key_range.end)}


def mutation(op: str, table: str, rows: Any) -> dict[str, Any]:
    """Build an insert/update/insertOrUpdate/replace mutation from row dicts."""
    if isinstance(rows, Mapping):
        rows = [rows]
    rows = list(rows)
    if not rows:
        raise ValueError("At least one row is required")
    columns = list(rows[0].keys())
    values = [[encode_value(row.get(col)) for col in columns] for row in rows]
    return {op: {"table": table, "columns": columns, "values": values}}


def delete_mutation(table: str, keys: Any = None) -> dict[str, Any]:
    return {"delete": {"table": table, "keySet": key_set(keys)}}


def format_timestamp(value: datetime.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=_UTC)
    value = value.astimezone(_UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# ---------------------------------------------------------------------------
# JSON -> Python
# ---------------------------------------------------------------------------


def parse_timestamp(value: str) -> datetime.datetime:
    """Parse an RFC 3339 timestamp, truncating nanoseconds to microseconds."""
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # Split off the offset so the fraction can be trimmed.
    offset = ""
    for sep in ("+", "-"):
        idx = text.rfind(sep)
        if idx > text.find("T"):
            text, offset = text[:idx], text[idx:]
            break
    if "." in text:
        base, frac = text.split(".", 1)
        text = f"{base}.{frac[:6].ljust(6, '0')}"
    return datetime.datetime.fromisoformat(text + offset)


def decode_value(value: Any, type_: Mapping[str, Any]) -> Any:
    """Decode a JSON wire value of the given Spanner type."""
    if value is None:
        return None
    code = type_.get("code")
    if code == "INT64":
        return int(value)
    if code == "FLOAT64":
        return float(value)
    if code == "BOOL":
        return bool(value)
    if code == "BYTES":
        return base64.b64decode(value)
    if code == "TIMESTAMP":
        return parse_timestamp(value)
    if code == "DATE":
        return datetime.date.fromisoformat(value)
    if code == "NUMERIC":
        return decimal.Decimal(value)
    if code == "JSON":
        return json.loads(value)
    if code == "ARRAY":
        element = type_.get("arrayElementType") or {}
        return [decode_value(v, element) for v in value]
    if code == "STRUCT":
        fields = (type_.get("structType") or {}).get("fields") or []
        return decode_row(value, fields)
    return value


def decode_row(values: Sequence[Any], fields: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Decode one row into a dict keyed by field name (or position when unnamed)."""
    row: dict[str, Any] = {}
    for idx, (field, value) in enumerate(zip(fields, values)):
        key = field.get("name") or idx
        row[key] = decode_value(value, field.get("type") or {})
    return row
