"""Test fixtures and utilities."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from chat_ledger.config import Config
from chat_ledger.extraction.client import ExtractionResult
from chat_ledger.schemas.message import InboundMessage
from chat_ledger.schemas.transaction import CandidateTransaction, Direction
from chat_ledger.services import IngestionService, PendingTracker, UserDirectory
from chat_ledger.state_store import StateStore

T0 = datetime(2025, 3, 10, 14, 0, 0, tzinfo=timezone.utc)

SAMPLE_PHONE = "59171234567"


class FakeClock:
    """Settable clock for services."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeExtractor:
    """Extractor returning canned transactions and recording calls."""

    def __init__(self, transactions: list[CandidateTransaction] | None = None):
        self.transactions = transactions or []
        self.calls: list[tuple[str, str]] = []

    def extract(self, transcript: str, cohort: str) -> ExtractionResult:
        self.calls.append((transcript, cohort))
        return ExtractionResult(transactions=list(self.transactions), model="fake")


def txn(amount: str, description: str = "", category: str | None = None) -> CandidateTransaction:
    """Shorthand for a debit candidate in BOB."""
    return CandidateTransaction(
        amount=Decimal(amount),
        direction=Direction.DEBIT,
        category=category,
        description=description or None,
        payment_method="efectivo",
        currency="BOB",
    )


def text_message(
    payload: str,
    message_id: str | None = "m1",
    sender: str = SAMPLE_PHONE,
    timestamp: datetime = T0,
) -> InboundMessage:
    return InboundMessage(
        sender=sender,
        body_kind="text",
        payload=payload,
        message_id=message_id,
        timestamp=timestamp,
    )


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def config(temp_db) -> Config:
    """Default configuration pointing at the temporary database."""
    return Config(state_db_path=temp_db)


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(store, config, clock) -> PendingTracker:
    return PendingTracker(store, config, clock=clock)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor([txn("20", "comida", "comida"), txn("5", "transporte", "transporte")])


@pytest.fixture
def ingestion(store, config, extractor, tracker, clock) -> IngestionService:
    return IngestionService(store, config, extractor=extractor, tracker=tracker, clock=clock)


@pytest.fixture
def user(store):
    """Registered user in cohort BOL."""
    return UserDirectory(store).register(SAMPLE_PHONE, cohort="BOL", display_name="Ana")
