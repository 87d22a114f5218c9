from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from marketchat.core.exceptions import InvalidCursor


def utcnow() -> datetime:
    # BSON dates carry millisecond precision; truncate so in-memory and stored values agree
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for `value`, or None if it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def encode_cursor(timestamp: datetime, oid: Any) -> str:
    # Cursor format: timestamp_ms:object_id_hex
    return f"{int(as_utc(timestamp).timestamp() * 1000)}:{oid}"


def decode_cursor(cursor: str) -> Tuple[datetime, ObjectId]:
    try:
        ts_str, oid_hex = cursor.split(":", 1)
        ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        raise InvalidCursor()
    oid = parse_object_id(oid_hex)
    if oid is None:
        raise InvalidCursor()
    return ts, oid
