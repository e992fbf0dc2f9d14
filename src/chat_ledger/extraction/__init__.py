"""Extraction adapter: LLM transaction extraction and audio transcription."""

from .client import ExtractionClient, ExtractionError, ExtractionResult
from .prompts import PROMPT_VERSION, ExtractionPrompt
from .transcriber import Transcriber

__all__ = [
    "ExtractionClient",
    "ExtractionError",
    "ExtractionResult",
    "ExtractionPrompt",
    "PROMPT_VERSION",
    "Transcriber",
]
