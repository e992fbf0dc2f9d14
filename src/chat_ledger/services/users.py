"""Registered sender lookup and registration."""

import logging

from chat_ledger.schemas.message import normalize_phone, phone_variants
from chat_ledger.state_store import StateStore, UserRecord

logger = logging.getLogger(__name__)


class UserDirectory:
    """Maps gateway sender ids to registered users."""

    def __init__(self, store: StateStore, default_cohort: str = "BOL"):
        self.store = store
        self.default_cohort = default_cohort

    def register(
        self, phone: str, cohort: str | None = None, display_name: str | None = None
    ) -> UserRecord:
        """Register (or update) a sender.

        Raises:
            ValueError: If the phone is empty
        """
        normalized = normalize_phone(phone)
        if not normalized.lstrip("+"):
            raise ValueError("phone is required")
        user = self.store.register_user(
            normalized,
            cohort=(cohort or self.default_cohort).upper(),
            display_name=display_name,
        )
        logger.info("Registered user %d (cohort %s)", user.id, user.cohort)
        return user

    def find(self, sender: str) -> UserRecord | None:
        """Look up a sender, tolerating a missing or extra leading '+'."""
        return self.store.get_user_by_phone(phone_variants(sender))
