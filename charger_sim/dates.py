"""Timestamp conversion for OCPP payloads.

Outbound messages carry ``datetime`` values which are rendered as
``YYYY-MM-DDTHH:MM:SS.sssZ``. Inbound messages may carry timestamps with or
without milliseconds; both are turned back into aware UTC datetimes.
Both functions walk dicts and lists recursively and return new structures,
leaving the input untouched.
"""

import re
from datetime import datetime, timezone
from typing import Any

ISO8601 = re.compile(r"^\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z$")
ISO8601_SECS = re.compile(r"^\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ$")


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def is_timestamp(value: str) -> bool:
    return bool(ISO8601.match(value) or ISO8601_SECS.match(value))


def parse_timestamp(value: str) -> datetime:
    fmt = "%Y-%m-%dT%H:%M:%S.%fZ" if ISO8601.match(value) else "%Y-%m-%dT%H:%M:%SZ"
    return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)


def to_wire(message: Any) -> Any:
    if isinstance(message, datetime):
        return format_timestamp(message)
    if isinstance(message, dict):
        return {key: to_wire(value) for key, value in message.items()}
    if isinstance(message, (list, tuple)):
        return [to_wire(item) for item in message]
    return message


def from_wire(message: Any) -> Any:
    if isinstance(message, str):
        if not is_timestamp(message):
            return message
        try:
            return parse_timestamp(message)
        except ValueError:
            # shaped like a timestamp but not a calendar date, e.g. hour 25
            return message
    if isinstance(message, dict):
        return {key: from_wire(value) for key, value in message.items()}
    if isinstance(message, (list, tuple)):
        return [from_wire(item) for item in message]
    return message
