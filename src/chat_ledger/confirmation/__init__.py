"""Confirmation reply handling."""

from .intent import ConfirmationIntent, IntentKind, parse_confirmation

__all__ = ["ConfirmationIntent", "IntentKind", "parse_confirmation"]
