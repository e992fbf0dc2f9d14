"""
Inbound message schema.

Messages arrive from the chat gateway as JSON. Keys are accepted in
snake_case or camelCase (bodyKind, messageId).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Suffix the gateway appends to chat ids
GATEWAY_PHONE_SUFFIX = "@s.whatsapp.net"


class BodyKind(str, Enum):
    """Supported message body kinds."""

    AUDIO = "audio"
    TEXT = "text"


def normalize_phone(phone: str) -> str:
    """Strip the gateway suffix and whitespace from a sender id."""
    value = (phone or "").strip()
    if value.endswith(GATEWAY_PHONE_SUFFIX):
        value = value[: -len(GATEWAY_PHONE_SUFFIX)]
    return value.replace(" ", "")


def phone_variants(phone: str) -> list[str]:
    """Return the phone with and without a leading '+'."""
    value = normalize_phone(phone)
    bare = value.lstrip("+")
    if not bare:
        return []
    return [f"+{bare}", bare]


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an event timestamp into an aware UTC datetime.

    Accepts datetimes, epoch seconds and ISO 8601 strings (with 'Z').
    Naive values are taken as UTC.
    """
    if value is None or value == "":
        raise ValueError("timestamp is required")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.isdigit():
            dt = datetime.fromtimestamp(int(text), tz=timezone.utc)
        else:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class InboundMessage:
    """A message received from the chat gateway.

    body_kind is kept as received; ingestion rejects unknown kinds.
    """

    sender: str
    body_kind: str
    payload: str
    message_id: str | None
    timestamp: datetime
    origin: str = "whatsapp"

    @classmethod
    def from_dict(cls, data: dict) -> "InboundMessage":
        """Build from a gateway payload.

        Raises:
            ValueError: If sender or timestamp is missing or malformed.
        """
        sender = data.get("sender") or data.get("from")
        if not sender:
            raise ValueError("sender is required")

        return cls(
            sender=normalize_phone(sender),
            body_kind=str(data.get("body_kind", data.get("bodyKind", ""))).lower(),
            payload=data.get("payload") or "",
            message_id=data.get("message_id", data.get("messageId")),
            timestamp=parse_timestamp(data.get("timestamp")),
            origin=data.get("origin", "whatsapp"),
        )

    def to_dict(self) -> dict:
        return {
            "sender": self.sender,
            "body_kind": self.body_kind,
            "payload": self.payload,
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat(),
            "origin": self.origin,
        }
