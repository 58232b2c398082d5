"""String encoding for ledger arguments and results.

The ledger only accepts ordered string arguments, so structured values
(lists, maps) travel as canonical JSON text and numbers are rendered the way
the chaincode parses them.
"""

import json
from datetime import datetime
from typing import Any


def canonical_json(data: Any) -> str:
    """Produce a deterministic JSON string (sorted keys, no whitespace)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_json_default)


def _json_default(obj: Any) -> str:
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def format_number(value: float | int) -> str:
    """Render a number without a trailing ``.0`` for integral values.

    ``48000.0`` becomes ``"48000"`` and ``0.5`` stays ``"0.5"``.
    """
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def encode_arg(value: Any) -> str:
    """Encode one positional ledger argument as a string."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return canonical_json(value)


def encode_args(values: list[Any] | tuple[Any, ...]) -> list[str]:
    return [encode_arg(v) for v in values]


def decode_result(raw: Any) -> Any:
    """Decode a ledger result that may arrive as JSON text or already parsed.

    Empty payloads decode to ``None``. Text that is not JSON is returned as-is.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw
