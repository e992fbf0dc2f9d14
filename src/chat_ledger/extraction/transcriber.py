"""Audio transcription client (OpenAI-compatible /audio/transcriptions)."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING

import httpx

from .client import ExtractionError

if TYPE_CHECKING:
    from ..config import ExtractionConfig

logger = logging.getLogger(__name__)

# Voice notes from the gateway are Opus in an Ogg container
AUDIO_FILENAME = "audio.ogg"
AUDIO_CONTENT_TYPE = "audio/ogg"


class Transcriber:
    """Transcribes base64 voice notes to text."""

    def __init__(self, config: ExtractionConfig) -> None:
        self.config = config
        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
        )

    def transcribe(self, audio_base64: str) -> str:
        """Transcribe a base64-encoded audio payload.

        Raises:
            ExtractionError: If the payload is not base64 or the call fails.
        """
        try:
            audio = base64.b64decode(audio_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ExtractionError("Audio payload is not valid base64") from e
        if not audio:
            raise ExtractionError("Audio payload is empty")

        if not self.config.api_key:
            raise ExtractionError("Extraction API key is not configured")

        url = f"{self.config.base_url.rstrip('/')}/audio/transcriptions"
        logger.debug("Transcribing %d bytes with %s", len(audio), self.config.transcription_model)

        try:
            response = self._client.post(
                url,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                data={
                    "model": self.config.transcription_model,
                    "language": self.config.language,
                    "response_format": "json",
                },
                files={"file": (AUDIO_FILENAME, audio, AUDIO_CONTENT_TYPE)},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ExtractionError("Transcription request timed out", retryable=True) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Transcription API error %s", status)
            raise ExtractionError(
                f"Transcription API error: {status}",
                retryable=status == 429 or status >= 500,
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            raise ExtractionError(f"Transcription request failed: {e}", retryable=True) from e
        except ValueError as e:
            raise ExtractionError("Transcription API returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ExtractionError("Transcription API returned an unexpected response body")

        text = (data.get("text") or "").strip()
        logger.debug("Transcription: %s", text)
        return text

    def close(self) -> None:
        self._client.close()
