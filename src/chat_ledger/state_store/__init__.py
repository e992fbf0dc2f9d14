"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Registered users and invitations
- Predictions and pending confirmations
- Feedback entries and per-cohort confirmation policies
- Committed transactions

Enforces uniqueness on inbound message id and on the committed
transaction per prediction.
"""

from .sqlite_store import (
    CommittedTransactionRecord,
    FeedbackRecord,
    PendingRecord,
    PolicyRecord,
    PredictionDraft,
    PredictionRecord,
    StateStore,
    UserRecord,
    parse_iso,
    utc_iso,
)

__all__ = [
    "StateStore",
    "CommittedTransactionRecord",
    "FeedbackRecord",
    "PendingRecord",
    "PolicyRecord",
    "PredictionDraft",
    "PredictionRecord",
    "UserRecord",
    "parse_iso",
    "utc_iso",
]
