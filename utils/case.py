"""
camelCase keys for API responses, matching the CamelModel aliases on the way in.
Uses Pydantic's alias_generators so schemas and hand-built responses agree.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic.alias_generators import to_camel


def to_camel_key(s: str) -> str:
    return to_camel(s)


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def dict_keys_to_camel(obj: Any) -> Any:
    """Recursively camelCase dict keys for API responses; dates become ISO strings."""
    if isinstance(obj, dict):
        return {to_camel_key(k) if isinstance(k, str) else k: dict_keys_to_camel(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [dict_keys_to_camel(x) for x in obj]
    return _plain(obj)
