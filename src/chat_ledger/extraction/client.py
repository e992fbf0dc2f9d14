"""Extraction client: transcript -> candidate transactions.

Calls an OpenAI-compatible chat completions endpoint (Groq by default) and
maps the model output onto CandidateTransaction.

Privacy constraints:
- Never log transcripts or raw model output at INFO level
- The API key is only sent as a bearer header
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from ..schemas.transaction import CandidateTransaction, parse_amount, parse_direction
from .prompts import PROMPT_VERSION, ExtractionPrompt

if TYPE_CHECKING:
    from ..config import ExtractionConfig

logger = logging.getLogger(__name__)

# Model output key -> CandidateTransaction field
FIELD_ALIASES = {
    "monto": "amount",
    "amount": "amount",
    "tipo": "direction",
    "type": "direction",
    "direction": "direction",
    "categoria": "category",
    "category": "category",
    "descripcion": "description",
    "description": "description",
    "metodoPago": "payment_method",
    "metodo_pago": "payment_method",
    "payment_method": "payment_method",
    "moneda": "currency",
    "currency": "currency",
}

# Keys that may wrap a list of transactions
LIST_KEYS = ("transactions", "transacciones", "items")


class ExtractionError(Exception):
    """Extraction service call failed."""

    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


@dataclass
class ExtractionResult:
    """Candidates extracted from one transcript."""

    transactions: list[CandidateTransaction] = field(default_factory=list)
    model: str | None = None
    prompt_version: str = PROMPT_VERSION

    @property
    def is_multiple(self) -> bool:
        return len(self.transactions) > 1


class ExtractionClient:
    """Client for the extraction (chat completions) service."""

    def __init__(self, config: ExtractionConfig, default_currency: str = "BOB") -> None:
        """Initialize the client.

        Args:
            config: Extraction configuration.
            default_currency: Currency used when the model omits it.
        """
        self.config = config
        self.default_currency = default_currency
        self._prompt = ExtractionPrompt()
        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
        )

    def extract(self, transcript: str, cohort: str) -> ExtractionResult:
        """Extract candidate transactions from a transcript.

        Args:
            transcript: Message text (or audio transcription).
            cohort: Cohort code giving country/currency context.

        Returns:
            ExtractionResult, possibly with zero transactions.

        Raises:
            ExtractionError: If the service call fails.
        """
        if not transcript or not transcript.strip():
            return ExtractionResult(model=self.config.model)

        user_message = self._prompt.format_user_message(
            transcript, cohort, self.default_currency
        )
        content = self._call_api(self._prompt.system_prompt, user_message)

        try:
            parsed = self._parse_json_response(content)
        except json.JSONDecodeError:
            logger.warning("Extraction returned unparseable output (%d chars)", len(content))
            logger.debug("Unparseable extraction output: %s", content)
            return ExtractionResult(model=self.config.model)

        transactions = []
        for item in self._iter_items(parsed):
            candidate = self._to_candidate(item)
            if candidate is not None:
                transactions.append(candidate)

        logger.info(
            "Extracted %d transaction(s) for cohort %s with %s",
            len(transactions),
            cohort,
            self.config.model,
        )
        return ExtractionResult(transactions=transactions, model=self.config.model)

    def _call_api(self, system_prompt: str, user_message: str) -> str:
        """Call the chat completions endpoint and return the message content.

        Raises:
            ExtractionError: On missing credentials, timeouts or HTTP errors.
        """
        if not self.config.api_key:
            raise ExtractionError("Extraction API key is not configured")

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        headers = {"Authorization": f"Bearer {self.config.api_key}"}

        logger.debug("Calling extraction model %s at %s", self.config.model, self.config.base_url)

        try:
            response = self._client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Extraction request timed out after %ds", self.config.timeout_seconds)
            raise ExtractionError("Extraction request timed out", retryable=True) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Extraction API error %s for model '%s'", status, self.config.model)
            raise ExtractionError(
                f"Extraction API error: {status}",
                retryable=status == 429 or status >= 500,
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            logger.error("Extraction request failed: %s", e)
            raise ExtractionError(f"Extraction request failed: {e}", retryable=True) from e
        except ValueError as e:
            raise ExtractionError("Extraction API returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ExtractionError("Extraction API returned an unexpected response body")

        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message") or {}
        return (message.get("content") or "").strip()

    def _parse_json_response(self, content: str) -> Any:
        """Parse JSON from model output.

        Handles:
        - Markdown code blocks (```json ... ```)
        - JSON embedded in surrounding text
        - A list or a single object

        Raises:
            json.JSONDecodeError: If no JSON value can be recovered.
        """
        if not content:
            raise json.JSONDecodeError("Empty response", "", 0)

        content = content.strip()
        if content.startswith("```json"):
            content = content[7:]
        elif content.startswith("```"):
            content = content[3:]
        if content.endswith("```"):
            content = content[:-3]
        content = content.strip()

        try:
            return json.loads(content)
        except json.JSONDecodeError:
            pass

        # Outermost object first: it may wrap a list
        for pattern in (r"\{[\s\S]*\}", r"\[[\s\S]*\]"):
            match = re.search(pattern, content)
            if match:
                try:
                    return json.loads(match.group())
                except json.JSONDecodeError:
                    continue

        raise json.JSONDecodeError("No JSON found in response", content, 0)

    def _iter_items(self, parsed: Any) -> list[dict]:
        """Flatten the accepted output shapes into a list of objects."""
        if isinstance(parsed, list):
            return [item for item in parsed if isinstance(item, dict)]
        if isinstance(parsed, dict):
            for key in LIST_KEYS:
                if isinstance(parsed.get(key), list):
                    return [item for item in parsed[key] if isinstance(item, dict)]
            return [parsed]
        return []

    def _to_candidate(self, item: dict) -> CandidateTransaction | None:
        """Map one output object to a candidate; None if it has no usable amount."""
        data: dict[str, Any] = {}
        for key, value in item.items():
            target = FIELD_ALIASES.get(key)
            if target and target not in data:
                data[target] = value

        try:
            amount = parse_amount(data.get("amount"))
        except ValueError as e:
            logger.debug("Skipping extracted item: %s", e)
            return None

        currency = data.get("currency") or self.default_currency
        return CandidateTransaction(
            amount=amount,
            direction=parse_direction(data.get("direction")),
            category=data.get("category") or None,
            description=data.get("description") or None,
            payment_method=data.get("payment_method") or None,
            currency=str(currency).upper(),
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> ExtractionClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()
