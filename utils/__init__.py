"""Shared utilities for the backend."""
from utils.case import dict_keys_to_camel, to_camel_key
from utils.dates import age_on, ensure_utc, iso_date, parse_date, utc_now

__all__ = [
    "to_camel_key",
    "dict_keys_to_camel",
    "age_on",
    "ensure_utc",
    "iso_date",
    "parse_date",
    "utc_now",
]
