"""Shared column helpers for models."""
import uuid
from datetime import datetime
from decimal import Decimal


def new_id():
    """Application-generated identity, stable across both stores."""
    return str(uuid.uuid4())


def serialize_value(value):
    """Make a column value JSON-safe (Decimal -> str, datetime -> ISO)."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
