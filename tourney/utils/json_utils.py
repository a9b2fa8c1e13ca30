"""JSON utilities using orjson.

Usage:
    from tourney.utils.json_utils import json_dumps, json_loads, ORJSONResponse

    json_str = json_dumps({"key": "value"})
    return ORJSONResponse(content={"status": "ok"})
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import orjson
from fastapi.responses import JSONResponse


def _default_serializer(obj: Any) -> Any:
    """Custom serializer for types not natively supported by orjson."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(data: Any, *, pretty: bool = False) -> str:
    """Serialize data to JSON string using orjson."""
    options = orjson.OPT_UTC_Z
    if pretty:
        options |= orjson.OPT_INDENT_2

    return orjson.dumps(data, default=_default_serializer, option=options).decode("utf-8")


def json_loads(data: str | bytes) -> Any:
    """Deserialize JSON string using orjson."""
    return orjson.loads(data)


class ORJSONResponse(JSONResponse):
    """FastAPI response class backed by orjson."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return orjson.dumps(
            content,
            default=_default_serializer,
            option=orjson.OPT_UTC_Z,
        )
