"""
Inbound message id handling (CRITICAL).

This module defines THE id scheme used for idempotent ingestion.
This is the ONLY way to derive stored message ids in the system.

Stored id formats:
1. Single-record message: {message_id}
   - group id is NULL

2. Multi-record message: {message_id}:{ordinal}
   - ordinal is 1-based, in extraction order
   - group id = {message_id}

A dedupe lookup for {message_id} matches either the stored id or the
group id, so a retried multi-record message is recognized as a whole.
"""

from dataclasses import dataclass

# Separator between the gateway message id and the ordinal
MEMBER_ID_SEPARATOR = ":"


@dataclass
class StoredMessageId:
    """Ids persisted on one prediction row."""

    message_id: str | None
    group_id: str | None

    @property
    def is_grouped(self) -> bool:
        return self.group_id is not None


def member_message_id(message_id: str, ordinal: int) -> str:
    """
    Build the stored id of one row of a multi-record message.

    Args:
        message_id: Gateway message id
        ordinal: 1-based position in the extraction output

    Raises:
        ValueError: If message_id is empty or ordinal < 1
    """
    if not message_id:
        raise ValueError("message_id is required")
    if ordinal < 1:
        raise ValueError(f"ordinal must be >= 1, got {ordinal}")
    return f"{message_id}{MEMBER_ID_SEPARATOR}{ordinal}"


def assign_message_ids(message_id: str | None, count: int) -> list[StoredMessageId]:
    """
    Assign stored ids for the rows produced by one inbound message.

    A message without an id (e.g. app-originated) gets no ids and no group,
    which also disables dedupe for it.
    """
    if count < 1:
        raise ValueError("count must be >= 1")
    if not message_id:
        return [StoredMessageId(message_id=None, group_id=None) for _ in range(count)]
    if count == 1:
        return [StoredMessageId(message_id=message_id, group_id=None)]
    return [
        StoredMessageId(message_id=member_message_id(message_id, i), group_id=message_id)
        for i in range(1, count + 1)
    ]
