"""
Message decoding for the AuditSync consumer.

This module provides:
- JSON decoding of raw stream records into AuditEvent instances
- Case-insensitive field name matching (``SqlText``, ``sqlText``,
  ``sql_text`` all map to the same attribute)
- Type conversion for integer and timestamp fields
- Deterministic event id synthesis when the record has none
"""

import json
import logging
import re
from dataclasses import fields
from datetime import datetime, timezone
from json import JSONDecodeError
from typing import Dict, Any, Optional, Union

from ..core.events import AuditEvent

logger = logging.getLogger(__name__)


class TransformationError(Exception):
    """Raised when message transformation fails."""
    pass


class DecodeError(TransformationError):
    """Raised when a record can never be decoded; such records are skipped."""
    pass


# integer field -> largest value its column can hold
_INT_FIELDS = {
    "session_id": 2 ** 63 - 1,
    "entry_id": 2 ** 31 - 1,
    "statement": 2 ** 31 - 1,
    "action": 2 ** 31 - 1,
    "return_code": 2 ** 31 - 1,
}
_DATETIME_FIELDS = {"timestamp", "produced_at"}
_OPTIONAL_FIELDS = {"privilege_used"}
_FRACTION = re.compile(r"\.(\d+)")

# normalized JSON key -> AuditEvent attribute
_FIELD_KEYS = {f.name.replace("_", ""): f.name for f in fields(AuditEvent)}


def _normalize_key(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


def _reject_constant(name: str):
    raise DecodeError(f"Non-finite number {name} is not allowed")


class AuditEventDecoder:
    """
    Decoder for audit event records.

    Turns the JSON value of a stream record into an immutable AuditEvent.
    Unknown keys are ignored; missing integer fields default to 0 and
    missing text fields to an empty string.
    """

    def decode(self, message) -> AuditEvent:
        """
        Decode a stream record.

        Args:
            message: Record exposing ``value()``, ``topic()``,
                ``partition()`` and ``offset()``

        Returns:
            AuditEvent instance

        Raises:
            DecodeError: If the record is not a valid audit event
        """
        try:
            payload = self._parse_message_value(message.value())
            return self.from_dict(payload)
        except DecodeError as e:
            logger.warning(
                f"Failed to decode message from "
                f"{message.topic()}:{message.partition()}:{message.offset()}: {e}"
            )
            raise

    def from_dict(self, payload: Dict[str, Any]) -> AuditEvent:
        """Build an AuditEvent from an already parsed JSON object."""
        values: Dict[str, Any] = {}

        for key, raw in payload.items():
            attribute = _FIELD_KEYS.get(_normalize_key(str(key)))
            if attribute is None:
                continue
            values[attribute] = self._convert(attribute, raw)

        if not values.get("id"):
            values["id"] = AuditEvent.derive_id(
                values.get("session_id", 0),
                values.get("entry_id", 0),
                values.get("statement", 0),
            )

        return AuditEvent(**values)

    def _parse_message_value(self, message_value: Optional[bytes]) -> Dict[str, Any]:
        """Parse the message value from bytes to dict."""
        if message_value is None:
            raise DecodeError("Message value is None")

        try:
            if isinstance(message_value, bytes):
                message_value = message_value.decode("utf-8")
            data = json.loads(message_value, parse_constant=_reject_constant)
        except (UnicodeDecodeError, JSONDecodeError) as e:
            raise DecodeError(f"Failed to parse message value: {e}") from e

        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")

        return data

    def _convert(self, attribute: str, value: Any) -> Any:
        if attribute in _INT_FIELDS:
            return self._convert_int(attribute, value)
        if attribute in _DATETIME_FIELDS:
            return self._convert_timestamp(attribute, value)
        if value is None:
            return None if attribute in _OPTIONAL_FIELDS else ""
        return value if isinstance(value, str) else str(value)

    @staticmethod
    def _convert_int(attribute: str, value: Any) -> int:
        if value is None or value == "":
            return 0
        if isinstance(value, bool):
            raise DecodeError(f"Invalid integer for {attribute}: {value!r}")
        try:
            number = int(value)
        except (TypeError, ValueError, OverflowError) as e:
            raise DecodeError(f"Invalid integer for {attribute}: {value!r}") from e

        limit = _INT_FIELDS[attribute]
        if not -limit - 1 <= number <= limit:
            raise DecodeError(f"Integer out of range for {attribute}: {value!r}")
        return number

    @staticmethod
    def _convert_timestamp(attribute: str, value: Union[str, int, float, None]) -> Optional[datetime]:
        """Convert an ISO-8601 string or epoch milliseconds to datetime."""
        if value is None or value == "":
            return None

        try:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
            text = str(value).strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            # fromisoformat only accepts microsecond precision
            text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
            return datetime.fromisoformat(text)
        except (ValueError, OverflowError, OSError) as e:
            raise DecodeError(f"Invalid timestamp for {attribute}: {value!r}") from e
