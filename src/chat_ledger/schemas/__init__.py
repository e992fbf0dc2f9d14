"""
Canonical schemas shared by every module of the pipeline.

Inbound messages, candidate transactions and stored message ids are
defined once here; services and the store import them from this package.
"""

from .dedupe import (
    MEMBER_ID_SEPARATOR,
    StoredMessageId,
    assign_message_ids,
    member_message_id,
)
from .message import (
    GATEWAY_PHONE_SUFFIX,
    BodyKind,
    InboundMessage,
    normalize_phone,
    parse_timestamp,
    phone_variants,
)
from .transaction import (
    EDITABLE_FIELDS,
    VERIFIED_ORIGINS,
    CandidateTransaction,
    Direction,
    FeedbackOrigin,
    ResolutionMethod,
    parse_amount,
    parse_direction,
)

__all__ = [
    # Dedupe
    "MEMBER_ID_SEPARATOR",
    "StoredMessageId",
    "assign_message_ids",
    "member_message_id",
    # Message
    "GATEWAY_PHONE_SUFFIX",
    "BodyKind",
    "InboundMessage",
    "normalize_phone",
    "parse_timestamp",
    "phone_variants",
    # Transaction
    "EDITABLE_FIELDS",
    "VERIFIED_ORIGINS",
    "CandidateTransaction",
    "Direction",
    "FeedbackOrigin",
    "ResolutionMethod",
    "parse_amount",
    "parse_direction",
]
