import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


def json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(payload) -> str:
    return json.dumps(payload, sort_keys=True, default=json_default)


def payload_hash(payload: dict) -> str:
    return hashlib.sha256(dumps(payload).encode()).hexdigest()
