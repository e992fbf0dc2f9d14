"""
Reply intent classification for pending confirmations.

Emojis are checked first (least ambiguous), then rejection words
(whole-word), then confirmation words (substring).
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class IntentKind(str, Enum):
    """Classified meaning of a reply."""

    CONFIRM = "confirm"
    REJECT = "reject"
    UNCLEAR = "unclear"
    EMPTY = "empty"


CONFIRM_EMOJIS = ("✅", "👍", "✔️", "🆗", "👌")
REJECT_EMOJIS = ("❌", "👎", "✖️", "🚫")

CONFIRM_WORDS = (
    "si", "sí", "ok", "okey", "está bien", "esta bien",
    "perfecto", "correcto", "yes", "yep", "ya", "listo",
    "bueno", "vale", "excelente", "genial", "bien",
    "confirmado", "aprobado", "aceptado", "ok gracias",
    "si gracias", "está correcto", "esta correcto", "claro",
    "dale", "va", "vaya", "oki",
)

REJECT_WORDS = (
    "no", "nop", "nope", "incorrecto", "mal", "está mal", "esta mal",
    "equivocado", "error", "cancelar", "cancela", "rechazar", "rechazado",
    "borrar", "borra", "eliminar", "elimina", "wrong",
)

EMOJI_CONFIDENCE = 0.95
WORD_CONFIDENCE = 0.85

_REJECT_PATTERN = re.compile(
    r"(?<!\w)(" + "|".join(re.escape(w) for w in sorted(REJECT_WORDS, key=len, reverse=True)) + r")(?!\w)"
)


@dataclass
class ConfirmationIntent:
    """Result of classifying a reply."""

    kind: IntentKind
    confidence: float

    @property
    def is_actionable(self) -> bool:
        return self.kind in (IntentKind.CONFIRM, IntentKind.REJECT)


def parse_confirmation(text: str | None) -> ConfirmationIntent:
    """Classify a free-text or emoji reply."""
    if not text or not text.strip():
        return ConfirmationIntent(IntentKind.EMPTY, 0.0)

    for emoji in CONFIRM_EMOJIS:
        if emoji in text:
            return ConfirmationIntent(IntentKind.CONFIRM, EMOJI_CONFIDENCE)
    for emoji in REJECT_EMOJIS:
        if emoji in text:
            return ConfirmationIntent(IntentKind.REJECT, EMOJI_CONFIDENCE)

    lowered = text.lower().strip()

    if _REJECT_PATTERN.search(lowered):
        return ConfirmationIntent(IntentKind.REJECT, WORD_CONFIDENCE)

    for word in CONFIRM_WORDS:
        if word in lowered:
            return ConfirmationIntent(IntentKind.CONFIRM, WORD_CONFIDENCE)

    logger.debug("Unrecognized reply: %r", text)
    return ConfirmationIntent(IntentKind.UNCLEAR, 0.0)
