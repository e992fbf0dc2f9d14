"""Pipeline services: ingestion, confirmation tracking, accuracy and policy."""

from chat_ledger.services.accuracy import AccuracyRecalculator, compute_accuracy
from chat_ledger.services.dedupe_cache import DedupeCache, StoredResult
from chat_ledger.services.ingestion import IngestionService, IngestResult, IngestStatus
from chat_ledger.services.policy import ConfirmationPolicyService, PolicyDecision
from chat_ledger.services.predictions import InsertOutcome, PredictionStore
from chat_ledger.services.sweeper import ExpirySweeper, SweepResult
from chat_ledger.services.tracker import PendingTracker, ResolutionResult, ResolutionStatus
from chat_ledger.services.users import UserDirectory

__all__ = [
    "AccuracyRecalculator",
    "compute_accuracy",
    "ConfirmationPolicyService",
    "DedupeCache",
    "ExpirySweeper",
    "IngestionService",
    "IngestResult",
    "IngestStatus",
    "InsertOutcome",
    "PendingTracker",
    "PolicyDecision",
    "PredictionStore",
    "ResolutionResult",
    "ResolutionStatus",
    "StoredResult",
    "UserDirectory",
    "SweepResult",
]
