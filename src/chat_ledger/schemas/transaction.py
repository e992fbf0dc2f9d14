"""
Canonical candidate transaction (SSOT).

This is the single shape for extracted transaction fields. The extraction
client maps into it, predictions store it as JSON, and committed
transactions are materialized from it.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class Direction(str, Enum):
    """Money direction from the user's point of view."""

    DEBIT = "debit"  # expense
    CREDIT = "credit"  # income


class ResolutionMethod(str, Enum):
    """How a prediction left the pending state."""

    NONE = "none"
    REACTION = "reaction"
    EDIT = "edit"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    AUTO = "auto"  # cohort did not require confirmation


class FeedbackOrigin(str, Enum):
    """Source of a correctness signal."""

    REACTION = "reaction"
    EDIT = "edit"
    TIMEOUT = "timeout"
    REJECTION = "rejection"


# Origins that represent an active human decision
VERIFIED_ORIGINS = (FeedbackOrigin.REACTION, FeedbackOrigin.EDIT, FeedbackOrigin.REJECTION)

_DIRECTION_ALIASES = {
    "debit": Direction.DEBIT,
    "expense": Direction.DEBIT,
    "withdrawal": Direction.DEBIT,
    "gasto": Direction.DEBIT,
    "egreso": Direction.DEBIT,
    "credit": Direction.CREDIT,
    "income": Direction.CREDIT,
    "deposit": Direction.CREDIT,
    "ingreso": Direction.CREDIT,
}

# Content fields that an edit may overwrite
EDITABLE_FIELDS = (
    "amount",
    "direction",
    "category",
    "description",
    "payment_method",
    "currency",
)


def parse_direction(value: Any) -> Direction:
    """Map a free-form direction label to Direction (defaults to DEBIT)."""
    if isinstance(value, Direction):
        return value
    if not value:
        return Direction.DEBIT
    return _DIRECTION_ALIASES.get(str(value).strip().lower(), Direction.DEBIT)


def parse_amount(value: Any) -> Decimal:
    """
    Parse an amount into a positive Decimal.

    Accepts numbers and strings with a comma decimal separator.

    Raises:
        ValueError: If the value is missing, not numeric, or not positive.
    """
    if value is None or value == "":
        raise ValueError("Amount is missing")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).replace(",", ".").strip())
    except InvalidOperation as e:
        raise ValueError(f"Amount is not numeric: {value!r}") from e
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"Amount must be positive: {value!r}")
    return amount


@dataclass
class CandidateTransaction:
    """One transaction extracted from a message."""

    amount: Decimal
    direction: Direction = Direction.DEBIT
    category: str | None = None
    description: str | None = None
    payment_method: str | None = None
    currency: str | None = None

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "amount": str(self.amount),
            "direction": self.direction.value,
            "category": self.category,
            "description": self.description,
            "payment_method": self.payment_method,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CandidateTransaction":
        """Deserialize from dictionary."""
        return cls(
            amount=parse_amount(data["amount"]),
            direction=parse_direction(data.get("direction")),
            category=data.get("category"),
            description=data.get("description"),
            payment_method=data.get("payment_method"),
            currency=data.get("currency"),
        )

    def with_changes(self, fields: dict) -> "CandidateTransaction":
        """Return a copy with the given content fields replaced.

        Raises:
            ValueError: On unknown fields, an invalid amount or an unknown
                direction label.
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        if "direction" in fields and not isinstance(fields["direction"], Direction):
            label = str(fields["direction"] or "").strip().lower()
            if label not in _DIRECTION_ALIASES:
                raise ValueError(f"Unknown direction: {fields['direction']!r}")

        data = self.to_dict()
        data.update(fields)
        if "currency" in fields and fields["currency"]:
            data["currency"] = str(fields["currency"]).upper()
        return CandidateTransaction.from_dict(data)
