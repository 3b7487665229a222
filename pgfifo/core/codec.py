"""
Codec — serialize and deserialize item payloads to/from JSON text.

Pydantic-core handles the conversion, so payloads may be anything it knows
how to dump:
  - dict / list / str / int / float / bool / None
  - datetime, date, UUID, Decimal, Enum (dumped to their JSON forms)
  - Pydantic models and dataclasses (dumped as JSON objects)

Encoded text must also be storable as Postgres jsonb, so two things
pydantic-core would happily emit are rejected with SerializationError:
  - NaN / Infinity (not valid JSON)
  - the NUL character, escaped as \\u0000 (jsonb cannot hold it)

Decoding always yields plain JSON values; the original Python types of
non-JSON inputs are not restored.
"""
from __future__ import annotations

import re
from typing import Any

from pydantic import JsonValue
from pydantic_core import from_json, to_json

from pgfifo.domain.errors import SerializationError

# \u0000 preceded by an even number of backslashes, i.e. a real escape
_NUL_ESCAPE = re.compile(r"(?<!\\)(?:\\\\)*\\u0000")


def encode(item: Any) -> str:
    """Serialize a payload to JSON text. Raises SerializationError."""
    try:
        data = to_json(item).decode("utf-8")
        # to_json writes NaN/Infinity literals; strict parsing catches them
        from_json(data, allow_inf_nan=False)
    except ValueError as exc:
        # PydanticSerializationError is a ValueError, as is circular-reference detection
        raise SerializationError("Payload is not JSON-serializable", exc) from exc
    if _NUL_ESCAPE.search(data):
        raise SerializationError(
            "Payload is not JSON-serializable",
            ValueError("strings must not contain the NUL character"),
        )
    return data


def decode(data: str | bytes) -> JsonValue:
    """Deserialize JSON text back to a plain payload value."""
    try:
        return from_json(data)
    except ValueError as exc:
        raise SerializationError("Stored payload is not valid JSON", exc) from exc
